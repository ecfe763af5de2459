from __future__ import annotations

import math
import random
from dataclasses import dataclass

from flock_body import Agent, Status, World
from flock_brain import Topology
from flock_constants import FOOD_REWARD, GOAL_BONUS, SURVIVAL_REWARD, WORST_FITNESS
from flock_errors import NumericFault
from flock_genome import Genome, validate_genome


@dataclass(frozen=True)
class AgentFrame:
    tick: int
    agent: int
    x: float
    y: float
    rotation: float
    speed: float
    distance: float
    food_eaten: int
    status: str


@dataclass(frozen=True)
class FitnessRecord:
    genome: Genome
    index: int = 0
    fitness: float | None = None
    status: str = Status.RUNNING.value
    food_eaten: int = 0
    ticks: int = 0
    distance: float = 0.0
    faulted: bool = False
    trace: tuple[AgentFrame, ...] = ()

    @property
    def scored(self) -> bool:
        return self.fitness is not None


def score_agent(agent: Agent) -> float:
    """Food dominates; survival and an early-goal bonus break ties.

    The result lies in [0, FOOD_REWARD * FOOD_GOAL + SURVIVAL_REWARD + GOAL_BONUS].
    """
    goal_reached = agent.status is Status.GOAL_REACHED
    elapsed = min(1.0, agent.ticks / agent.max_ticks)
    survival = 1.0 if goal_reached else elapsed
    fitness = FOOD_REWARD * agent.food_eaten + SURVIVAL_REWARD * survival
    if goal_reached:
        fitness += GOAL_BONUS * (1.0 - elapsed)
    return fitness


def _frame(agent: Agent, index: int) -> AgentFrame:
    return AgentFrame(
        tick=agent.ticks,
        agent=index,
        x=agent.x,
        y=agent.y,
        rotation=agent.rotation,
        speed=agent.speed,
        distance=agent.distance,
        food_eaten=agent.food_eaten,
        status=agent.status.value,
    )


def evaluate_agent(
    genome: Genome,
    topology: Topology,
    max_ticks: int,
    world: World,
    rng: random.Random | None = None,
    index: int = 0,
    randomized_start: bool = False,
    record_trace: bool = False,
) -> FitnessRecord:
    validate_genome(genome, topology)
    agent = Agent.spawn(genome, topology, world, max_ticks, rng=rng, randomized_start=randomized_start)
    trace: list[AgentFrame] = [_frame(agent, index)] if record_trace else []

    try:
        while agent.running:
            agent.tick()
            if record_trace:
                trace.append(_frame(agent, index))
        fitness = score_agent(agent)
        if not math.isfinite(fitness):
            raise NumericFault(f"non-finite fitness {fitness!r}")
    except (NumericFault, ArithmeticError):
        return FitnessRecord(
            genome=genome,
            index=index,
            fitness=WORST_FITNESS,
            status=Status.FAULTED.value,
            food_eaten=agent.food_eaten,
            ticks=agent.ticks,
            distance=agent.distance if math.isfinite(agent.distance) else 0.0,
            faulted=True,
            trace=tuple(trace),
        )

    return FitnessRecord(
        genome=genome,
        index=index,
        fitness=fitness,
        status=agent.status.value,
        food_eaten=agent.food_eaten,
        ticks=agent.ticks,
        distance=agent.distance,
        trace=tuple(trace),
    )


def agent_rng(generation_seed: int, index: int) -> random.Random:
    return random.Random(f"{generation_seed}:{index}")
