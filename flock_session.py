from __future__ import annotations

import contextlib
import json
import random
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterator

from flock_body import World
from flock_brain import Topology
from flock_constants import (
    CROSSOVER_METHOD,
    ELITE_COUNT,
    FOOD_COUNT,
    MAX_TICKS,
    MUTATION_RATE,
    MUTATION_STRENGTH,
    POPULATION_SIZE,
    RANDOMIZED_STARTS,
    SEED,
    SELECTION_METHOD,
    TOURNAMENT_SIZE,
    VARY_WORLD_PER_GENERATION,
    WORKERS,
)
from flock_errors import ConfigurationError, SessionBusy
from flock_evolution import (
    GenerationStats,
    GeneticAlgorithm,
    Population,
    evaluate_population,
    population_from_genomes,
    rank_population,
    selection_by_name,
)
from flock_fitness import AgentFrame
from flock_genome import CROSSOVER_METHODS, Genome, create_random
from flock_report import format_generation_line, safe_print

SAVE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class TrainingConfig:
    seed: int = SEED
    population_size: int = POPULATION_SIZE
    elite_count: int = ELITE_COUNT
    mutation_rate: float = MUTATION_RATE
    mutation_strength: float = MUTATION_STRENGTH
    selection: str = SELECTION_METHOD
    tournament_size: int = TOURNAMENT_SIZE
    crossover: str = CROSSOVER_METHOD
    topology: Topology = field(default_factory=Topology.default)
    max_ticks: int = MAX_TICKS
    food_count: int = FOOD_COUNT
    vary_world_per_generation: bool = VARY_WORLD_PER_GENERATION
    randomized_starts: bool = RANDOMIZED_STARTS
    workers: int = WORKERS

    def validate(self) -> None:
        if self.population_size < 1:
            raise ConfigurationError(f"population size must be positive, got {self.population_size}")
        if self.elite_count < 0 or self.elite_count >= self.population_size:
            raise ConfigurationError(
                f"elite count must be within [0, {self.population_size - 1}], got {self.elite_count}"
            )
        if not 0.0 <= self.mutation_rate <= 1.0:
            raise ConfigurationError(f"mutation rate must be within [0, 1], got {self.mutation_rate}")
        if self.mutation_strength < 0.0:
            raise ConfigurationError(f"mutation strength must not be negative, got {self.mutation_strength}")
        if self.crossover not in CROSSOVER_METHODS:
            raise ConfigurationError(f"unknown crossover method {self.crossover!r}")
        selection_by_name(self.selection, self.tournament_size)
        if self.topology.outputs != 2:
            raise ConfigurationError(f"birds are driven by 2 motor outputs, topology has {self.topology.outputs}")
        if self.max_ticks < 1:
            raise ConfigurationError(f"max_ticks must be positive, got {self.max_ticks}")
        if self.food_count < 1:
            raise ConfigurationError(f"food count must be positive, got {self.food_count}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be positive, got {self.workers}")

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["topology"] = self.topology.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> TrainingConfig:
        values = dict(payload)
        if "topology" in values:
            values["topology"] = Topology.from_dict(values["topology"])
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in values.items() if key in known})


@dataclass(frozen=True)
class Snapshot:
    generation: int
    population_size: int
    best_fitness: float | None
    average_fitness: float | None
    worst_fitness: float | None
    best_fitness_ever: float | None
    numeric_faults: int = 0
    trace: tuple[tuple[AgentFrame, ...], ...] = ()

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["trace"] = [[asdict(frame) for frame in tick] for tick in self.trace]
        return payload


class TrainingSession:
    """Owns one training run: population, generation counter and rng.

    Every mutation goes through ``start_or_resume``, ``advance`` or ``reset``,
    which refuse to run concurrently with each other and raise ``SessionBusy``.
    """

    def __init__(self, config: TrainingConfig | None = None, verbose: bool = False) -> None:
        self.config = config or TrainingConfig()
        self.config.validate()
        self.verbose = verbose
        self._lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._initialize()

    def _initialize(self) -> None:
        self.algorithm = GeneticAlgorithm(
            selection=selection_by_name(self.config.selection, self.config.tournament_size),
            crossover_method=self.config.crossover,
            mutation_rate=self.config.mutation_rate,
            mutation_strength=self.config.mutation_strength,
            elite_count=self.config.elite_count,
        )
        self.rng = random.Random(self.config.seed)
        self.generation = 1
        self.population: Population = ()
        self.last_evaluated: Population = ()
        self.world: World | None = None
        self.history: list[GenerationStats] = []
        self.best_fitness_ever: float | None = None
        self.best_genome_ever: Genome | None = None
        # (evaluated, world, generation seed) of the last generation, swapped as one value
        self._replay: tuple[Population, World, int] | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SessionBusy("an advance() call is already in progress")
        try:
            yield
        finally:
            self._lock.release()

    def _ensure_population(self) -> None:
        if self.population:
            return
        self.world = World.generate(self.rng.getrandbits(32), food_count=self.config.food_count)
        genomes = [create_random(self.config.topology, self.rng) for _ in range(self.config.population_size)]
        self.population = population_from_genomes(genomes)

    def start_or_resume(self) -> Snapshot:
        with self._exclusive():
            self._ensure_population()
        return self.snapshot()

    def request_stop(self) -> None:
        self._stop_requested.set()

    def iter_advance(self, generations: int) -> Iterator[Snapshot]:
        """Run up to ``generations`` generations, yielding a snapshot after each one.

        The session stays locked while the iterator is alive; a stop request
        takes effect once the running generation has completed.
        """
        if generations < 0:
            raise ConfigurationError(f"generations must not be negative, got {generations}")

        with self._exclusive():
            self._ensure_population()
            self._stop_requested.clear()
            for _ in range(generations):
                self._step()
                yield self.snapshot()
                if self._stop_requested.is_set():
                    if self.verbose:
                        safe_print(f"Stop requested. Halting before generation {self.generation}.")
                    break
            self._stop_requested.clear()

    def advance(self, generations: int, on_generation: Callable[[Snapshot], None] | None = None) -> list[Snapshot]:
        snapshots = []
        for snapshot in self.iter_advance(generations):
            snapshots.append(snapshot)
            if on_generation is not None:
                on_generation(snapshot)
        return snapshots

    def _step(self) -> None:
        expected_size = self.config.population_size
        if len(self.population) != expected_size:
            raise ConfigurationError(
                f"population size drifted to {len(self.population)}, expected {expected_size}"
            )

        rng_state = self.rng.getstate()
        started = time.perf_counter()
        try:
            world = self.world
            if self.config.vary_world_per_generation or world is None:
                world = World.generate(self.rng.getrandbits(32), food_count=self.config.food_count)
            result = self.algorithm.run_generation(
                self.population,
                self.config.topology,
                world,
                self.config.max_ticks,
                self.rng,
                self.generation,
                workers=self.config.workers,
                randomized_starts=self.config.randomized_starts,
            )
        except Exception:
            self.rng.setstate(rng_state)
            raise

        stats = result.stats
        best = rank_population(result.evaluated)[0]
        if self.best_fitness_ever is None or stats.best_fitness > self.best_fitness_ever:
            self.best_fitness_ever = stats.best_fitness
            self.best_genome_ever = best.genome

        self.world = world
        self.last_evaluated = result.evaluated
        self._replay = (result.evaluated, world, result.generation_seed)
        self.population = result.next_population
        self.history.append(stats)
        self.generation += 1

        if self.verbose:
            elapsed = time.perf_counter() - started
            safe_print(f"{format_generation_line(stats)} | {elapsed:.2f}s")

    def snapshot(self, include_trace: bool = False) -> Snapshot:
        last = self.history[-1] if self.history else None
        trace: tuple[tuple[AgentFrame, ...], ...] = ()
        if include_trace:
            trace = self.trace()
        return Snapshot(
            generation=self.generation,
            population_size=len(self.population) or self.config.population_size,
            best_fitness=last.best_fitness if last else None,
            average_fitness=last.average_fitness if last else None,
            worst_fitness=last.worst_fitness if last else None,
            best_fitness_ever=self.best_fitness_ever,
            numeric_faults=last.faults if last else 0,
            trace=trace,
        )

    def trace(self) -> tuple[tuple[AgentFrame, ...], ...]:
        """Per-tick frames of every agent of the last evaluated generation."""
        replay, config = self._replay, self.config
        if replay is None:
            return ()
        evaluated, world, generation_seed = replay

        replayed = evaluate_population(
            evaluated,
            config.topology,
            world,
            config.max_ticks,
            generation_seed,
            randomized_starts=config.randomized_starts,
            record_trace=True,
        )
        longest = max(len(record.trace) for record in replayed)
        return tuple(
            tuple(record.trace[tick] for record in replayed if tick < len(record.trace))
            for tick in range(longest)
        )

    def reset(self, seed: int | None = None) -> Snapshot:
        with self._exclusive():
            if seed is not None:
                self.config = replace(self.config, seed=int(seed))
            self._initialize()
            self._ensure_population()
        return self.snapshot()

    def save(self, file_path: str | Path) -> None:
        with self._exclusive():
            version, internal, gauss_next = self.rng.getstate()
            payload = {
                "format_version": SAVE_FORMAT_VERSION,
                "saved_at": int(time.time()),
                "seed": self.config.seed,
                "generation": self.generation,
                "config": self.config.to_dict(),
                "world_seed": self.world.seed if self.world is not None else None,
                "population": [{"genome": list(record.genome)} for record in self.population],
                "rng_state": [version, list(internal), gauss_next],
                "best_fitness_ever": self.best_fitness_ever,
                "best_genome_ever": list(self.best_genome_ever) if self.best_genome_ever is not None else None,
                "history": [stats.to_dict() for stats in self.history],
            }
        target = Path(file_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, file_path: str | Path, verbose: bool = False) -> TrainingSession:
        payload = json.loads(Path(file_path).read_text(encoding="utf-8"))
        if payload.get("format_version") != SAVE_FORMAT_VERSION:
            raise ConfigurationError(f"unsupported save format {payload.get('format_version')!r}")

        session = cls(TrainingConfig.from_dict(payload["config"]), verbose=verbose)
        genomes = [tuple(float(gene) for gene in item["genome"]) for item in payload["population"]]
        if genomes and len(genomes) != session.config.population_size:
            raise ConfigurationError(
                f"saved population has {len(genomes)} genomes, config expects {session.config.population_size}"
            )
        if any(len(genome) != session.config.topology.gene_count for genome in genomes):
            raise ConfigurationError("saved genomes do not match the saved topology")

        version, internal, gauss_next = payload["rng_state"]
        session.rng.setstate((version, tuple(internal), gauss_next))
        session.generation = int(payload["generation"])
        session.population = population_from_genomes(genomes)
        world_seed = payload.get("world_seed")
        if world_seed is not None:
            session.world = World.generate(int(world_seed), food_count=session.config.food_count)
        session.best_fitness_ever = payload.get("best_fitness_ever")
        best_genome = payload.get("best_genome_ever")
        session.best_genome_ever = tuple(best_genome) if best_genome is not None else None
        session.history = [GenerationStats.from_dict(item) for item in payload.get("history", [])]
        return session
