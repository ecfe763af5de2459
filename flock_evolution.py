from __future__ import annotations

import concurrent.futures
import random
from collections import Counter
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass, field
from typing import Sequence

from flock_body import World
from flock_brain import Topology
from flock_constants import (
    CROSSOVER_METHOD,
    ELITE_COUNT,
    MUTATION_RATE,
    MUTATION_STRENGTH,
    SELECTION_METHOD,
    TOURNAMENT_SIZE,
)
from flock_errors import ConfigurationError
from flock_fitness import FitnessRecord, agent_rng, evaluate_agent
from flock_genome import Genome, crossover_by_name, mutate
from flock_report import safe_print

Population = tuple[FitnessRecord, ...]


def population_from_genomes(genomes: Sequence[Genome]) -> Population:
    return tuple(FitnessRecord(genome=tuple(genome), index=index) for index, genome in enumerate(genomes))


def rank_population(population: Population) -> Population:
    """Best first; equal fitness keeps the lower original index first."""
    unscored = [record.index for record in population if not record.scored]
    if unscored:
        raise ConfigurationError(f"cannot rank unscored records {unscored}")
    return tuple(sorted(population, key=lambda record: (-record.fitness, record.index)))


class RouletteWheelSelection:
    """Fitness-proportionate selection over fitness shifted to be positive."""

    name = "roulette"

    def select(self, rng: random.Random, ranked: Population) -> FitnessRecord:
        if not ranked:
            raise ConfigurationError("got an empty population")
        floor = min(record.fitness for record in ranked)
        weights = [record.fitness - floor + 1e-6 for record in ranked]
        return rng.choices(ranked, weights=weights, k=1)[0]


class TournamentSelection:
    name = "tournament"

    def __init__(self, size: int = TOURNAMENT_SIZE) -> None:
        if size < 1:
            raise ConfigurationError(f"tournament size must be positive, got {size}")
        self.size = size

    def select(self, rng: random.Random, ranked: Population) -> FitnessRecord:
        if not ranked:
            raise ConfigurationError("got an empty population")
        # ranked is best-first, so the lowest drawn position wins
        picks = [rng.randrange(len(ranked)) for _ in range(self.size)]
        return ranked[min(picks)]


class TruncationSelection:
    """Uniform choice among the top half of the ranked population."""

    name = "truncation"

    def select(self, rng: random.Random, ranked: Population) -> FitnessRecord:
        if not ranked:
            raise ConfigurationError("got an empty population")
        top_half = ranked[: max(1, len(ranked) // 2)]
        return rng.choice(top_half)


SELECTION_METHODS = {
    "roulette": RouletteWheelSelection,
    "tournament": TournamentSelection,
    "truncation": TruncationSelection,
}


def selection_by_name(name: str, tournament_size: int = TOURNAMENT_SIZE):
    if name == "tournament":
        return TournamentSelection(tournament_size)
    try:
        return SELECTION_METHODS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown selection method {name!r}; expected one of {sorted(SELECTION_METHODS)}"
        ) from None


@dataclass(frozen=True)
class GenerationStats:
    generation: int
    best_fitness: float
    average_fitness: float
    worst_fitness: float
    faults: int = 0
    statuses: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_population(cls, generation: int, evaluated: Population) -> GenerationStats:
        if not evaluated:
            raise ConfigurationError("got an empty population")
        fitnesses = [record.fitness for record in evaluated]
        return cls(
            generation=generation,
            best_fitness=max(fitnesses),
            average_fitness=sum(fitnesses) / len(fitnesses),
            worst_fitness=min(fitnesses),
            faults=sum(1 for record in evaluated if record.faulted),
            statuses=dict(Counter(record.status for record in evaluated)),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "generation": self.generation,
            "best_fitness": self.best_fitness,
            "average_fitness": self.average_fitness,
            "worst_fitness": self.worst_fitness,
            "faults": self.faults,
            "statuses": dict(self.statuses),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> GenerationStats:
        return cls(
            generation=int(payload["generation"]),
            best_fitness=float(payload["best_fitness"]),
            average_fitness=float(payload["average_fitness"]),
            worst_fitness=float(payload["worst_fitness"]),
            faults=int(payload.get("faults", 0)),
            statuses={str(key): int(value) for key, value in payload.get("statuses", {}).items()},
        )


@dataclass(frozen=True)
class GenerationResult:
    evaluated: Population
    next_population: Population
    stats: GenerationStats
    generation_seed: int


def evaluation_worker(args: tuple[Genome, Topology, int, World, int, int, bool, bool]) -> FitnessRecord:
    genome, topology, max_ticks, world, generation_seed, index, randomized_start, record_trace = args
    return evaluate_agent(
        genome,
        topology,
        max_ticks,
        world,
        rng=agent_rng(generation_seed, index),
        index=index,
        randomized_start=randomized_start,
        record_trace=record_trace,
    )


def evaluate_population(
    population: Population,
    topology: Topology,
    world: World,
    max_ticks: int,
    generation_seed: int,
    workers: int = 1,
    randomized_starts: bool = False,
    record_trace: bool = False,
) -> Population:
    jobs = [
        (record.genome, topology, max_ticks, world, generation_seed, index, randomized_starts, record_trace)
        for index, record in enumerate(population)
    ]

    if workers > 1 and len(jobs) > 1:
        try:
            with concurrent.futures.ProcessPoolExecutor(max_workers=workers) as executor:
                return tuple(executor.map(evaluation_worker, jobs))
        except (OSError, BrokenProcessPool) as error:
            safe_print(f"Warning: process pool unavailable ({error}); evaluating sequentially.")

    return tuple(evaluation_worker(job) for job in jobs)


class GeneticAlgorithm:
    def __init__(
        self,
        selection=None,
        crossover_method: str = CROSSOVER_METHOD,
        mutation_rate: float = MUTATION_RATE,
        mutation_strength: float = MUTATION_STRENGTH,
        elite_count: int = ELITE_COUNT,
    ) -> None:
        if not 0.0 <= mutation_rate <= 1.0:
            raise ConfigurationError(f"mutation rate must be within [0, 1], got {mutation_rate}")
        if mutation_strength < 0.0:
            raise ConfigurationError(f"mutation strength must not be negative, got {mutation_strength}")
        if elite_count < 0:
            raise ConfigurationError(f"elite count must not be negative, got {elite_count}")

        self.selection = selection if selection is not None else selection_by_name(SELECTION_METHOD)
        self.crossover = crossover_by_name(crossover_method)
        self.mutation_rate = mutation_rate
        self.mutation_strength = mutation_strength
        self.elite_count = elite_count

    def breed(self, ranked: Population, rng: random.Random) -> Population:
        size = len(ranked)
        if self.elite_count >= size:
            raise ConfigurationError(f"elite count {self.elite_count} must be below population size {size}")

        genomes: list[Genome] = [record.genome for record in ranked[: self.elite_count]]
        while len(genomes) < size:
            parent_a = self.selection.select(rng, ranked)
            parent_b = self.selection.select(rng, ranked)
            child = self.crossover(parent_a.genome, parent_b.genome, rng)
            genomes.append(mutate(child, self.mutation_rate, self.mutation_strength, rng))

        return population_from_genomes(genomes)

    def run_generation(
        self,
        population: Population,
        topology: Topology,
        world: World,
        max_ticks: int,
        rng: random.Random,
        generation: int,
        workers: int = 1,
        randomized_starts: bool = False,
    ) -> GenerationResult:
        if not population:
            raise ConfigurationError("got an empty population")

        generation_seed = rng.getrandbits(32)
        evaluated = evaluate_population(
            population,
            topology,
            world,
            max_ticks,
            generation_seed,
            workers=workers,
            randomized_starts=randomized_starts,
        )
        if all(record.faulted for record in evaluated):
            raise ConfigurationError(f"every agent of generation {generation} failed evaluation")

        ranked = rank_population(evaluated)
        next_population = self.breed(ranked, rng)
        if len(next_population) != len(population):
            raise ConfigurationError(
                f"population size changed from {len(population)} to {len(next_population)}"
            )

        stats = GenerationStats.from_population(generation, evaluated)
        return GenerationResult(
            evaluated=evaluated,
            next_population=next_population,
            stats=stats,
            generation_seed=generation_seed,
        )
