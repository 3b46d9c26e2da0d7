"""
Collocation schemes: defect residuals and objective quadrature per interval.

A scheme only sees arrays of mesh-point values and interval lengths; it never
calls the oracle itself. Schemes that need interior samples (Hermite-Simpson)
describe them through ``midpoint_states``/``midpoint_controls`` and receive
the oracle outputs at those samples back from the engine.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..dc_types import FloatArray
from ..exceptions import ConfigurationError
from ..utils.constants import SUPPORTED_SCHEMES


@dataclass(frozen=True)
class MidpointValues:
    """Oracle outputs at interval midpoints, one row per interval."""

    times: FloatArray
    states: FloatArray
    controls: FloatArray
    state_derivatives: FloatArray
    integrands: FloatArray


class CollocationScheme:
    """Base class; subclasses define defects and quadrature."""

    name: str = ""
    order: int = 1
    uses_midpoints: bool = False

    def defects(
        self,
        states: FloatArray,
        state_derivatives: FloatArray,
        steps: FloatArray,
        midpoints: MidpointValues | None = None,
    ) -> FloatArray:
        """Defect residuals, shape (num_intervals, num_states)."""
        raise NotImplementedError

    def quadrature(
        self,
        integrands: FloatArray,
        steps: FloatArray,
        midpoints: MidpointValues | None = None,
    ) -> FloatArray:
        """Integral of the running cost over each interval."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class TrapezoidalScheme(CollocationScheme):
    name = "trapezoidal"
    order = 2

    def defects(self, states, state_derivatives, steps, midpoints=None):
        slopes = np.diff(states, axis=0) / steps[:, None]
        return slopes - 0.5 * (state_derivatives[:-1] + state_derivatives[1:])

    def quadrature(self, integrands, steps, midpoints=None):
        return 0.5 * steps * (integrands[:-1] + integrands[1:])


class HermiteSimpsonScheme(CollocationScheme):
    """Compressed Hermite-Simpson collocation.

    The midpoint state comes from the cubic Hermite interpolant through both
    endpoints; the midpoint control is the mean of the endpoint controls.
    """

    name = "hermite-simpson"
    order = 4
    uses_midpoints = True

    @staticmethod
    def midpoint_states(
        states: FloatArray, state_derivatives: FloatArray, steps: FloatArray
    ) -> FloatArray:
        return 0.5 * (states[:-1] + states[1:]) + (steps[:, None] / 8.0) * (
            state_derivatives[:-1] - state_derivatives[1:]
        )

    @staticmethod
    def midpoint_controls(controls: FloatArray) -> FloatArray:
        return 0.5 * (controls[:-1] + controls[1:])

    def defects(self, states, state_derivatives, steps, midpoints=None):
        if midpoints is None:
            raise ConfigurationError("Hermite-Simpson defects need midpoint evaluations")
        slopes = np.diff(states, axis=0) / steps[:, None]
        return slopes - (
            state_derivatives[:-1] + 4.0 * midpoints.state_derivatives + state_derivatives[1:]
        ) / 6.0

    def quadrature(self, integrands, steps, midpoints=None):
        if midpoints is None:
            raise ConfigurationError("Hermite-Simpson quadrature needs midpoint evaluations")
        return steps * (integrands[:-1] + 4.0 * midpoints.integrands + integrands[1:]) / 6.0


_SCHEMES: dict[str, type[CollocationScheme]] = {
    TrapezoidalScheme.name: TrapezoidalScheme,
    HermiteSimpsonScheme.name: HermiteSimpsonScheme,
}


def get_scheme(name: str) -> CollocationScheme:
    """Instantiate a scheme by name."""
    if name not in SUPPORTED_SCHEMES or name not in _SCHEMES:
        raise ConfigurationError(
            f"Unknown collocation scheme {name!r}", f"supported: {list(SUPPORTED_SCHEMES)}"
        )
    return _SCHEMES[name]()
