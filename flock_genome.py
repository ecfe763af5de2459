from __future__ import annotations

import random
from typing import TYPE_CHECKING, Callable

from flock_errors import ConfigurationError, DimensionMismatch

if TYPE_CHECKING:
    from flock_brain import Topology

Genome = tuple[float, ...]
CrossoverFn = Callable[[Genome, Genome, random.Random], Genome]

GENE_LOW = -1.0
GENE_HIGH = 1.0


def create_random(topology: Topology, rng: random.Random) -> Genome:
    return tuple(rng.uniform(GENE_LOW, GENE_HIGH) for _ in range(topology.gene_count))


def validate_genome(genome: Genome, topology: Topology) -> None:
    if len(genome) != topology.gene_count:
        raise DimensionMismatch(topology.gene_count, len(genome))


def mutate(genome: Genome, rate: float, strength: float, rng: random.Random) -> Genome:
    """Return a perturbed copy of ``genome``.

    A sign is drawn for every gene whether or not it mutates, so the number of
    draws taken from ``rng`` only depends on the genome length.
    """
    if not 0.0 <= rate <= 1.0:
        raise ConfigurationError(f"mutation rate must be within [0, 1], got {rate}")

    new_genes = list(genome)
    for i in range(len(new_genes)):
        sign = -1.0 if rng.random() < 0.5 else 1.0
        if rng.random() < rate:
            new_genes[i] += sign * strength * rng.random()
    return tuple(new_genes)


def crossover(parent_a: Genome, parent_b: Genome, rng: random.Random) -> Genome:
    if len(parent_a) != len(parent_b):
        raise DimensionMismatch(len(parent_a), len(parent_b), what="parent")

    return tuple(a if rng.random() < 0.5 else b for a, b in zip(parent_a, parent_b))


def single_point_crossover(parent_a: Genome, parent_b: Genome, rng: random.Random) -> Genome:
    if len(parent_a) != len(parent_b):
        raise DimensionMismatch(len(parent_a), len(parent_b), what="parent")
    if not parent_a:
        return ()

    split = rng.randrange(len(parent_a) + 1)
    return tuple(parent_a[:split]) + tuple(parent_b[split:])


CROSSOVER_METHODS: dict[str, CrossoverFn] = {
    "uniform": crossover,
    "single-point": single_point_crossover,
}


def crossover_by_name(name: str) -> CrossoverFn:
    try:
        return CROSSOVER_METHODS[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown crossover method {name!r}; expected one of {sorted(CROSSOVER_METHODS)}"
        ) from None
