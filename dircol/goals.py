"""
Cost contributions ("goals") composed by summation into a dynamics oracle.

Each goal is a small value object tagged with a ``GoalKind``. A goal declares
whether it contributes a running (integrand) cost, an endpoint cost, or both;
``ComposedOracle`` sums the weighted contributions of all goals.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import Enum

import numpy as np
from scipy.interpolate import CubicSpline

from .dc_types import FloatArray, NumericArrayLike
from .exceptions import ConfigurationError
from .input_validation import validate_positive_integer


logger = logging.getLogger(__name__)


class GoalKind(Enum):
    EFFORT = "effort"
    TRACKING = "tracking"
    FINAL_TIME = "final_time"
    ENDPOINT_STATE = "endpoint_state"


class Goal:
    """Common interface: a tagged, weighted cost contribution."""

    kind: GoalKind
    has_integrand: bool = False
    has_endpoint: bool = False

    def __init__(self, weight: float = 1.0, name: str | None = None) -> None:
        weight = float(weight)
        if not np.isfinite(weight):
            raise ConfigurationError(f"Goal weight must be finite, got {weight}")
        self.weight = weight
        self.name = name or self.kind.value

    def integrand(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> float:
        raise NotImplementedError(f"{type(self).__name__} has no integrand")

    def endpoint(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> float:
        raise NotImplementedError(f"{type(self).__name__} has no endpoint cost")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, weight={self.weight})"


class ControlEffortGoal(Goal):
    """Integral of the weighted sum of |u_j| ** exponent over the horizon."""

    kind = GoalKind.EFFORT
    has_integrand = True

    def __init__(
        self,
        weight: float = 1.0,
        exponent: int = 2,
        control_weights: NumericArrayLike | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(weight, name)
        validate_positive_integer(exponent, "exponent", min_value=2)
        self.exponent = exponent
        self.control_weights = (
            None if control_weights is None else np.asarray(control_weights, dtype=np.float64)
        )

    def integrand(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> float:
        magnitude = np.abs(control) ** self.exponent
        if self.control_weights is None:
            return float(np.sum(magnitude))
        return float(np.dot(self.control_weights, magnitude))


class StateTrackingGoal(Goal):
    """Integral of the weighted squared error between states and a reference.

    The reference is a table of columns keyed by state name, sampled at
    ``reference_times`` and interpolated with cubic splines. Columns that do
    not name a state are rejected unless ``allow_unused_references`` is set.
    With ``scale_weights_with_range`` each weight is divided by the range
    (max - min) of its reference column, so quantities that vary less are
    tracked more tightly.
    """

    kind = GoalKind.TRACKING
    has_integrand = True

    def __init__(
        self,
        reference_times: NumericArrayLike,
        reference: Mapping[str, NumericArrayLike],
        state_names: Sequence[str],
        weight: float = 1.0,
        state_weights: Mapping[str, float] | None = None,
        scale_weights_with_range: bool = False,
        allow_unused_references: bool = False,
        name: str | None = None,
    ) -> None:
        super().__init__(weight, name)
        times = np.asarray(reference_times, dtype=np.float64)
        if times.ndim != 1 or len(times) < 2 or np.any(np.diff(times) <= 0):
            raise ConfigurationError("reference_times must be strictly increasing with >= 2 entries")

        state_names = list(state_names)
        unused = [label for label in reference if label not in state_names]
        if unused and not allow_unused_references:
            raise ConfigurationError(
                f"Reference columns {unused} do not match any state",
                "set allow_unused_references=True to ignore them",
            )
        state_weights = dict(state_weights or {})
        unknown = [label for label in state_weights if label not in state_names]
        if unknown:
            raise ConfigurationError(f"Weights given for unknown states: {unknown}")

        tracked = [label for label in state_names if label in reference]
        if not tracked:
            raise ConfigurationError("Reference does not contain any state column")

        columns = []
        weights = []
        for label in tracked:
            column = np.asarray(reference[label], dtype=np.float64)
            if column.shape != times.shape:
                raise ConfigurationError(
                    f"Reference column {label!r} has {column.size} samples, expected {times.size}"
                )
            state_weight = float(state_weights.get(label, 1.0))
            if scale_weights_with_range:
                value_range = float(np.max(column) - np.min(column))
                if value_range <= 0.0:
                    raise ConfigurationError(
                        f"Cannot scale weight by range: reference {label!r} is constant"
                    )
                state_weight /= value_range
            columns.append(column)
            weights.append(state_weight)

        self.state_indices = np.array([state_names.index(label) for label in tracked], dtype=int)
        self.state_weights = np.array(weights, dtype=np.float64)
        self._spline = CubicSpline(times, np.column_stack(columns), axis=0)
        logger.debug("Tracking goal %r: %d tracked states", self.name, len(tracked))

    def reference_at(self, time: float) -> FloatArray:
        return np.asarray(self._spline(time), dtype=np.float64)

    def integrand(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> float:
        error = state[self.state_indices] - self.reference_at(time)
        return float(np.dot(self.state_weights, error * error))


class FinalTimeGoal(Goal):
    """Endpoint cost equal to the final time (minimum-time problems)."""

    kind = GoalKind.FINAL_TIME
    has_endpoint = True

    def endpoint(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> float:
        return float(final_time)


class EndpointStateGoal(Goal):
    """Weighted squared distance between selected final states and targets."""

    kind = GoalKind.ENDPOINT_STATE
    has_endpoint = True

    def __init__(
        self,
        state_indices: Sequence[int],
        targets: NumericArrayLike,
        weight: float = 1.0,
        state_weights: NumericArrayLike | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(weight, name)
        self.state_indices = np.asarray(state_indices, dtype=int)
        self.targets = np.asarray(targets, dtype=np.float64)
        if self.targets.shape != self.state_indices.shape:
            raise ConfigurationError(
                f"{self.targets.size} targets given for {self.state_indices.size} states"
            )
        self.state_weights = (
            np.ones_like(self.targets)
            if state_weights is None
            else np.asarray(state_weights, dtype=np.float64)
        )

    def endpoint(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> float:
        error = final_state[self.state_indices] - self.targets
        return float(np.dot(self.state_weights, error * error))
