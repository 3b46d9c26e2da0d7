"""
Problem definition for continuous-time trajectory optimization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np

from .dc_types import BoundsInput, FloatArray
from .exceptions import ConfigurationError
from .input_validation import (
    validate_bounds_input,
    validate_bounds_list,
    validate_non_negative_integer,
    validate_time_bounds,
)
from .utils.constants import MINIMUM_TIME_INTERVAL


logger = logging.getLogger(__name__)


class Bounds(NamedTuple):
    """Closed interval [lower, upper]; infinite sides mean unbounded."""

    lower: float
    upper: float

    @classmethod
    def from_input(cls, bounds_input: BoundsInput, context: str = "bounds") -> Bounds:
        lower, upper = validate_bounds_input(bounds_input, context)
        return cls(lower, upper)

    @property
    def is_free(self) -> bool:
        return self.lower == -np.inf and self.upper == np.inf

    @property
    def is_fixed(self) -> bool:
        return self.lower == self.upper


def _to_bounds_list(
    bounds: list[BoundsInput] | None, expected_length: int, name: str
) -> list[Bounds]:
    return [Bounds(lo, hi) for lo, hi in validate_bounds_list(bounds, expected_length, name)]


@dataclass
class ProblemDefinition:
    """Sizes, names and bounds of an optimal control problem.

    Dynamics, costs and constraint functions are not part of the definition;
    they come from the dynamics oracle. The definition only fixes the shape of
    the transcription and the bounds handed to the NLP solver.

    Bounds accept a scalar (equality), a ``(lower, upper)`` tuple with None for
    unbounded sides, or None (unbounded). They are normalized to ``Bounds`` in
    ``__post_init__``.
    """

    num_states: int
    num_controls: int = 0
    num_parameters: int = 0
    state_names: list[str] | None = None
    control_names: list[str] | None = None
    parameter_names: list[str] | None = None
    state_bounds: list[BoundsInput] | None = None
    control_bounds: list[BoundsInput] | None = None
    parameter_bounds: list[BoundsInput] | None = None
    initial_time_bounds: BoundsInput = 0.0
    final_time_bounds: BoundsInput = 1.0
    initial_state_bounds: list[BoundsInput] | None = None
    final_state_bounds: list[BoundsInput] | None = None
    path_constraint_bounds: list[BoundsInput] = field(default_factory=list)
    endpoint_constraint_bounds: list[BoundsInput] = field(default_factory=list)
    periodic_states: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        validate_non_negative_integer(self.num_states, "num_states")
        validate_non_negative_integer(self.num_controls, "num_controls")
        validate_non_negative_integer(self.num_parameters, "num_parameters")

        self.state_names = self._resolve_names(self.state_names, self.num_states, "x", "state")
        self.control_names = self._resolve_names(
            self.control_names, self.num_controls, "u", "control"
        )
        self.parameter_names = self._resolve_names(
            self.parameter_names, self.num_parameters, "p", "parameter"
        )

        self.state_bounds = _to_bounds_list(self.state_bounds, self.num_states, "state_bounds")
        self.control_bounds = _to_bounds_list(
            self.control_bounds, self.num_controls, "control_bounds"
        )
        self.parameter_bounds = _to_bounds_list(
            self.parameter_bounds, self.num_parameters, "parameter_bounds"
        )
        self.initial_time_bounds = Bounds.from_input(
            self.initial_time_bounds, "initial_time_bounds"
        )
        self.final_time_bounds = Bounds.from_input(self.final_time_bounds, "final_time_bounds")
        validate_time_bounds(
            self.initial_time_bounds, self.final_time_bounds, MINIMUM_TIME_INTERVAL
        )
        self.initial_state_bounds = _to_bounds_list(
            self.initial_state_bounds, self.num_states, "initial_state_bounds"
        )
        self.final_state_bounds = _to_bounds_list(
            self.final_state_bounds, self.num_states, "final_state_bounds"
        )
        self.path_constraint_bounds = _to_bounds_list(
            list(self.path_constraint_bounds),
            len(self.path_constraint_bounds),
            "path_constraint_bounds",
        )
        self.endpoint_constraint_bounds = _to_bounds_list(
            list(self.endpoint_constraint_bounds),
            len(self.endpoint_constraint_bounds),
            "endpoint_constraint_bounds",
        )

        periodic = [int(i) for i in self.periodic_states]
        if len(set(periodic)) != len(periodic):
            raise ConfigurationError(f"periodic_states contains duplicates: {periodic}")
        for index in periodic:
            if not 0 <= index < self.num_states:
                raise ConfigurationError(
                    f"periodic state index {index} out of range for {self.num_states} states"
                )
        self.periodic_states = sorted(periodic)

        logger.debug(
            "Problem definition: n_x=%d, n_u=%d, n_p=%d, n_path=%d, n_endpoint=%d",
            self.num_states,
            self.num_controls,
            self.num_parameters,
            self.num_path_constraints,
            self.num_endpoint_constraints,
        )

    @staticmethod
    def _resolve_names(
        names: list[str] | None, count: int, prefix: str, kind: str
    ) -> list[str]:
        if names is None:
            return [f"{prefix}{i}" for i in range(count)]
        names = list(names)
        if len(names) != count:
            raise ConfigurationError(f"Expected {count} {kind} names, got {len(names)}")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate {kind} names: {names}")
        return names

    @property
    def num_path_constraints(self) -> int:
        return len(self.path_constraint_bounds)

    @property
    def num_endpoint_constraints(self) -> int:
        return len(self.endpoint_constraint_bounds)

    @property
    def constrained_initial_states(self) -> list[int]:
        """State indices with a boundary row at the initial time."""
        return [i for i, b in enumerate(self.initial_state_bounds) if not b.is_free]

    @property
    def constrained_final_states(self) -> list[int]:
        """State indices with a boundary row at the final time."""
        return [i for i, b in enumerate(self.final_state_bounds) if not b.is_free]

    def bounds_arrays(self, bounds: list[Bounds]) -> tuple[FloatArray, FloatArray]:
        """Split a list of Bounds into lower and upper arrays."""
        lower = np.array([b.lower for b in bounds], dtype=np.float64)
        upper = np.array([b.upper for b in bounds], dtype=np.float64)
        return lower, upper
