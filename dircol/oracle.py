"""
Dynamics oracle interface and a goal-composing implementation.

The oracle is the only channel through which the engine learns about the
physical system. Every method must be a pure function of its arguments: the
derivative engine caches oracle outputs and evaluates perturbed points on
worker threads, so an oracle that keeps mutable state must guard it itself
(thread-local storage or a lock).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from .dc_types import FloatArray


if TYPE_CHECKING:
    from .goals import Goal


logger = logging.getLogger(__name__)

PointFunction = Callable[[float, FloatArray, FloatArray, FloatArray], object]
EndpointFunction = Callable[[float, FloatArray, float, FloatArray, FloatArray], object]


@runtime_checkable
class DynamicsOracle(Protocol):
    """Protocol for everything the transcription needs from the model."""

    def dynamics(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> FloatArray:
        """Return the state derivative."""
        ...

    def integrand_cost(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> float:
        """Return the running cost integrated over the horizon."""
        ...

    def endpoint_cost(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> float:
        """Return the cost evaluated once at the horizon endpoints."""
        ...

    def path_constraints(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> FloatArray:
        """Return path constraint residuals (bounded by the problem definition)."""
        ...

    def endpoint_constraints(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> FloatArray:
        """Return endpoint constraint residuals (bounded by the problem definition)."""
        ...


_EMPTY = np.empty(0, dtype=np.float64)


class ComposedOracle:
    """Oracle assembled from a dynamics callable and a list of goals.

    Goal contributions are summed: integrand goals add to the running cost,
    endpoint goals add to the endpoint cost. Path and endpoint constraint
    callables are optional; when omitted they return empty vectors.

    Examples:
        >>> oracle = ComposedOracle(
        ...     dynamics=lambda t, x, u, p: u,
        ...     goals=[ControlEffortGoal(weight=1.0)],
        ... )
    """

    def __init__(
        self,
        dynamics: PointFunction,
        goals: Sequence[Goal] = (),
        path_constraints: PointFunction | None = None,
        endpoint_constraints: EndpointFunction | None = None,
    ) -> None:
        self._dynamics = dynamics
        self.goals = list(goals)
        self._path_constraints = path_constraints
        self._endpoint_constraints = endpoint_constraints
        self._integrand_goals = [g for g in self.goals if g.has_integrand]
        self._endpoint_goals = [g for g in self.goals if g.has_endpoint]
        logger.debug(
            "Composed oracle: %d integrand goals, %d endpoint goals",
            len(self._integrand_goals),
            len(self._endpoint_goals),
        )

    def dynamics(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> FloatArray:
        return np.asarray(self._dynamics(time, state, control, parameters), dtype=np.float64)

    def integrand_cost(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> float:
        return float(
            sum(
                goal.weight * goal.integrand(time, state, control, parameters)
                for goal in self._integrand_goals
            )
        )

    def endpoint_cost(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> float:
        return float(
            sum(
                goal.weight
                * goal.endpoint(initial_time, initial_state, final_time, final_state, parameters)
                for goal in self._endpoint_goals
            )
        )

    def path_constraints(
        self, time: float, state: FloatArray, control: FloatArray, parameters: FloatArray
    ) -> FloatArray:
        if self._path_constraints is None:
            return _EMPTY
        return np.asarray(
            self._path_constraints(time, state, control, parameters), dtype=np.float64
        )

    def endpoint_constraints(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> FloatArray:
        if self._endpoint_constraints is None:
            return _EMPTY
        return np.asarray(
            self._endpoint_constraints(
                initial_time, initial_state, final_time, final_state, parameters
            ),
            dtype=np.float64,
        )
