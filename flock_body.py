from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import flock_brain as brain
from flock_brain import Topology
from flock_constants import (
    EYE_CELLS,
    FOOD_COUNT,
    FOOD_EAT_RADIUS,
    FOOD_GOAL,
    FOOD_RESPAWN_POOL,
    FOV_ANGLE,
    FOV_RANGE,
    ROTATION_ACCEL,
    SPEED_ACCEL,
    SPEED_MAX,
    SPEED_MIN,
    STALL_SPEED,
    STALL_TICKS,
    START_POSITION,
    START_SPEED,
    TIMESTEP,
)
from flock_errors import ConfigurationError, NumericFault

Point = tuple[float, float]


class Status(str, Enum):
    RUNNING = "running"
    TIME_LIMIT_REACHED = "time-limit-reached"
    OUT_OF_BOUNDS = "out-of-bounds"
    GOAL_REACHED = "goal-reached"
    STALLED = "stalled"
    FAULTED = "faulted"


@dataclass(frozen=True)
class World:
    """Read-only arena shared by every evaluation of a generation."""

    seed: int
    food: tuple[Point, ...]
    respawn: tuple[Point, ...]

    @classmethod
    def generate(cls, seed: int, food_count: int = FOOD_COUNT, respawn_pool: int = FOOD_RESPAWN_POOL) -> World:
        if food_count < 1:
            raise ConfigurationError(f"world needs at least one food item, got {food_count}")
        rng = random.Random(seed)
        food = tuple((rng.random(), rng.random()) for _ in range(food_count))
        respawn = tuple((rng.random(), rng.random()) for _ in range(max(1, respawn_pool)))
        return cls(seed=seed, food=food, respawn=respawn)


@dataclass(frozen=True)
class Eye:
    cells: int = EYE_CELLS
    fov_range: float = FOV_RANGE
    fov_angle: float = FOV_ANGLE

    def process_vision(self, position: Point, rotation: float, food: Sequence[Point]) -> list[float]:
        cells = [0.0] * self.cells
        x, y = position
        half_fov = self.fov_angle / 2.0

        for fx, fy in food:
            dx = fx - x
            dy = fy - y
            dist = math.hypot(dx, dy)
            if dist >= self.fov_range:
                continue

            angle = wrap_angle(math.atan2(dy, dx) - rotation)
            if angle < -half_fov or angle > half_fov:
                continue

            cell = int((angle + half_fov) / self.fov_angle * self.cells)
            cell = min(cell, self.cells - 1)
            cells[cell] += (self.fov_range - dist) / self.fov_range

        return cells


def wrap_angle(angle: float) -> float:
    return (angle + math.pi) % (2.0 * math.pi) - math.pi


@dataclass
class Agent:
    """One bird during one fitness evaluation.

    Termination predicates are checked after every tick in a fixed order:
    out-of-bounds, stalled, goal reached, then time limit.
    """

    genome: tuple[float, ...]
    topology: Topology
    world: World
    max_ticks: int
    eye: Eye = field(default_factory=Eye)
    x: float = START_POSITION[0]
    y: float = START_POSITION[1]
    rotation: float = 0.0
    speed: float = START_SPEED
    food: list[Point] = field(default_factory=list)
    food_eaten: int = 0
    ticks: int = 0
    slow_ticks: int = 0
    distance: float = 0.0
    respawned: int = 0
    status: Status = Status.RUNNING

    def __post_init__(self) -> None:
        if self.eye.cells != self.topology.inputs:
            raise ConfigurationError(
                f"eye has {self.eye.cells} cells but the topology expects {self.topology.inputs} inputs"
            )
        if self.topology.outputs != 2:
            raise ConfigurationError(f"the body is driven by 2 motor outputs, topology has {self.topology.outputs}")
        if self.max_ticks < 1:
            raise ConfigurationError(f"max_ticks must be positive, got {self.max_ticks}")
        if not self.food:
            self.food = list(self.world.food)

    @classmethod
    def spawn(
        cls,
        genome: tuple[float, ...],
        topology: Topology,
        world: World,
        max_ticks: int,
        rng: random.Random | None = None,
        randomized_start: bool = False,
    ) -> Agent:
        agent = cls(genome=genome, topology=topology, world=world, max_ticks=max_ticks, eye=Eye(cells=topology.inputs))
        if randomized_start and rng is not None:
            agent.rotation = rng.uniform(-math.pi, math.pi)
        return agent

    @property
    def running(self) -> bool:
        return self.status is Status.RUNNING

    @property
    def position(self) -> Point:
        return self.x, self.y

    def sense(self) -> list[float]:
        return self.eye.process_vision(self.position, self.rotation, self.food)

    def tick(self) -> Status:
        if not self.running:
            return self.status

        speed_signal, rotation_signal = brain.evaluate(self.genome, self.topology, self.sense())
        if not (math.isfinite(speed_signal) and math.isfinite(rotation_signal)):
            raise NumericFault(f"non-finite motor output at tick {self.ticks}")

        self.integrate(speed_signal, rotation_signal)
        self.eat()
        self.ticks += 1
        self.status = self.check_termination()
        return self.status

    def integrate(self, speed_signal: float, rotation_signal: float) -> None:
        speed_delta = max(-SPEED_ACCEL, min(SPEED_ACCEL, speed_signal * SPEED_ACCEL))
        rotation_delta = max(-ROTATION_ACCEL, min(ROTATION_ACCEL, rotation_signal * ROTATION_ACCEL))

        self.speed = max(SPEED_MIN, min(SPEED_MAX, self.speed + speed_delta))
        self.rotation = wrap_angle(self.rotation + rotation_delta)
        step = self.speed * TIMESTEP
        self.x += math.cos(self.rotation) * step
        self.y += math.sin(self.rotation) * step
        self.distance += step

        if not all(math.isfinite(value) for value in (self.x, self.y, self.rotation, self.speed)):
            raise NumericFault(f"non-finite body state at tick {self.ticks}")

        self.slow_ticks = self.slow_ticks + 1 if self.speed < STALL_SPEED else 0

    def eat(self) -> None:
        for index, (fx, fy) in enumerate(self.food):
            if math.hypot(fx - self.x, fy - self.y) <= FOOD_EAT_RADIUS:
                self.food_eaten += 1
                self.food[index] = self.world.respawn[self.respawned % len(self.world.respawn)]
                self.respawned += 1

    def check_termination(self) -> Status:
        if not (0.0 <= self.x <= 1.0 and 0.0 <= self.y <= 1.0):
            return Status.OUT_OF_BOUNDS
        if self.slow_ticks >= STALL_TICKS:
            return Status.STALLED
        if self.food_eaten >= FOOD_GOAL:
            return Status.GOAL_REACHED
        if self.ticks >= self.max_ticks:
            return Status.TIME_LIMIT_REACHED
        return Status.RUNNING
