from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Sequence

from flock_constants import EYE_CELLS, HIDDEN_ACTIVATION, HIDDEN_LAYERS, OUTPUT_ACTIVATION, OUTPUT_SIZE
from flock_errors import ConfigurationError, DimensionMismatch


def _sigmoid(value: float) -> float:
    if value >= 0.0:
        return 1.0 / (1.0 + math.exp(-value))
    z = math.exp(value)
    return z / (1.0 + z)


def _hard_tanh(value: float) -> float:
    # min/max would clamp NaN to a bound; it has to reach the body as a fault
    if math.isnan(value):
        return value
    return max(-1.0, min(1.0, value))


ACTIVATIONS: dict[str, Callable[[float], float]] = {
    "tanh": math.tanh,
    "sigmoid": _sigmoid,
    "hard_tanh": _hard_tanh,
}


@dataclass(frozen=True)
class Topology:
    """Fixed layer layout shared by every genome of a run.

    Genes are laid out layer by layer: all weights of a layer (for each output
    neuron, one weight per input), then that layer's biases.
    """

    inputs: int
    hidden: tuple[int, ...]
    outputs: int
    activations: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "hidden", tuple(int(size) for size in self.hidden))
        if not self.activations:
            defaults = (HIDDEN_ACTIVATION,) * len(self.hidden) + (OUTPUT_ACTIVATION,)
            object.__setattr__(self, "activations", defaults)
        else:
            object.__setattr__(self, "activations", tuple(self.activations))

        if self.inputs < 1 or self.outputs < 1 or any(size < 1 for size in self.hidden):
            raise ConfigurationError(f"every layer needs at least one neuron: {self.layer_sizes}")
        if len(self.activations) != len(self.hidden) + 1:
            raise ConfigurationError(
                f"expected {len(self.hidden) + 1} activations, got {len(self.activations)}"
            )
        unknown = [name for name in self.activations if name not in ACTIVATIONS]
        if unknown:
            raise ConfigurationError(f"unknown activation(s) {unknown}; expected one of {sorted(ACTIVATIONS)}")

    @classmethod
    def for_eye(cls, cells: int = EYE_CELLS) -> Topology:
        return cls(inputs=cells, hidden=(2 * cells,), outputs=OUTPUT_SIZE)

    @classmethod
    def default(cls) -> Topology:
        return cls(inputs=EYE_CELLS, hidden=HIDDEN_LAYERS, outputs=OUTPUT_SIZE)

    @property
    def layer_sizes(self) -> tuple[int, ...]:
        return (self.inputs, *self.hidden, self.outputs)

    @property
    def gene_count(self) -> int:
        sizes = self.layer_sizes
        return sum(n_in * n_out + n_out for n_in, n_out in zip(sizes, sizes[1:]))

    def to_dict(self) -> dict[str, object]:
        return {
            "inputs": self.inputs,
            "hidden": list(self.hidden),
            "outputs": self.outputs,
            "activations": list(self.activations),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> Topology:
        return cls(
            inputs=int(payload["inputs"]),
            hidden=tuple(payload.get("hidden", ())),
            outputs=int(payload["outputs"]),
            activations=tuple(payload.get("activations", ())),
        )


def _finite_or_zero(values: Sequence[float]) -> list[float]:
    return [value if math.isfinite(value) else 0.0 for value in values]


def evaluate(genome: Sequence[float], topology: Topology, sensor_input: Sequence[float]) -> tuple[float, ...]:
    if len(genome) != topology.gene_count:
        raise DimensionMismatch(topology.gene_count, len(genome))
    if len(sensor_input) != topology.inputs:
        raise DimensionMismatch(topology.inputs, len(sensor_input), what="sensor input")

    sizes = topology.layer_sizes
    values = list(sensor_input)
    offset = 0
    for (n_in, n_out), name in zip(zip(sizes, sizes[1:]), topology.activations):
        activation = ACTIVATIONS[name]
        inputs = _finite_or_zero(values)
        weights_end = offset + n_in * n_out
        biases = genome[weights_end:weights_end + n_out]

        outputs = []
        for neuron in range(n_out):
            row = offset + neuron * n_in
            total = biases[neuron]
            for i, value in enumerate(inputs):
                total += genome[row + i] * value
            outputs.append(activation(total))

        values = outputs
        offset = weights_end + n_out

    return tuple(values)
