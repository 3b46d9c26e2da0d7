"""
Dynamics oracle compiled from CasADi symbolic expressions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import casadi as ca
import numpy as np

from .dc_types import FloatArray
from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)

SymbolicExpression = ca.SX | float | Sequence[ca.SX | float]
EndpointBuilder = Callable[[ca.SX, ca.SX, ca.SX, ca.SX, ca.SX], SymbolicExpression]


def _as_column(expression: SymbolicExpression | None) -> ca.SX:
    if expression is None:
        return ca.SX(0, 1)
    if isinstance(expression, list | tuple):
        if len(expression) == 0:
            return ca.SX(0, 1)
        return ca.vertcat(*expression)
    return ca.SX(float(expression)) if isinstance(expression, int | float) else expression


def _as_input(value: FloatArray | float) -> FloatArray:
    return np.asarray(value, dtype=np.float64).reshape(-1, 1)


class CasadiOracle:
    """Numeric dynamics oracle backed by compiled ``ca.Function`` objects.

    Point functions are written in terms of the symbols ``time``, ``states``,
    ``controls`` and ``parameters``. Endpoint functions are given as builders
    that receive fresh symbols ``(t0, x0, tf, xf, p)`` and return an
    expression.

    Examples:
        >>> t = ca.SX.sym("t")
        >>> x = ca.SX.sym("x", 1)
        >>> u = ca.SX.sym("u", 1)
        >>> oracle = CasadiOracle(t, x, u, dynamics=u, integrand=u**2)
    """

    def __init__(
        self,
        time: ca.SX,
        states: ca.SX,
        controls: ca.SX,
        parameters: ca.SX | None = None,
        *,
        dynamics: SymbolicExpression,
        integrand: SymbolicExpression | None = None,
        path_constraints: SymbolicExpression | None = None,
        endpoint_cost: EndpointBuilder | None = None,
        endpoint_constraints: EndpointBuilder | None = None,
    ) -> None:
        if parameters is None:
            parameters = ca.SX.sym("p", 0)
        self.num_states = states.numel()
        self.num_controls = controls.numel()
        self.num_parameters = parameters.numel()

        point_inputs = [time, states, controls, parameters]
        point_names = ["t", "x", "u", "p"]

        dynamics_expr = _as_column(dynamics)
        if dynamics_expr.numel() != self.num_states:
            raise ConfigurationError(
                f"Dynamics has {dynamics_expr.numel()} entries for {self.num_states} states"
            )
        integrand_expr = ca.SX(0.0) if integrand is None else _as_column(integrand)
        if integrand_expr.numel() != 1:
            raise ConfigurationError("Integrand must be a scalar expression")

        self._dynamics = ca.Function(
            "dynamics", point_inputs, [dynamics_expr], point_names, ["xdot"]
        )
        self._integrand = ca.Function(
            "integrand", point_inputs, [integrand_expr], point_names, ["L"]
        )
        self._path = ca.Function(
            "path_constraints", point_inputs, [_as_column(path_constraints)], point_names, ["c"]
        )

        t0 = ca.SX.sym("t0")
        x0 = ca.SX.sym("x0", self.num_states)
        tf = ca.SX.sym("tf")
        xf = ca.SX.sym("xf", self.num_states)
        p = ca.SX.sym("p", self.num_parameters)
        endpoint_inputs = [t0, x0, tf, xf, p]
        endpoint_names = ["t0", "x0", "tf", "xf", "p"]

        cost_expr = ca.SX(0.0) if endpoint_cost is None else _as_column(endpoint_cost(*endpoint_inputs))
        if cost_expr.numel() != 1:
            raise ConfigurationError("Endpoint cost must be a scalar expression")
        constraint_expr = (
            ca.SX(0, 1)
            if endpoint_constraints is None
            else _as_column(endpoint_constraints(*endpoint_inputs))
        )
        self._endpoint_cost = ca.Function(
            "endpoint_cost", endpoint_inputs, [cost_expr], endpoint_names, ["E"]
        )
        self._endpoint_constraints = ca.Function(
            "endpoint_constraints", endpoint_inputs, [constraint_expr], endpoint_names, ["b"]
        )

        logger.debug(
            "Compiled CasADi oracle: n_x=%d, n_u=%d, n_p=%d, n_path=%d, n_endpoint=%d",
            self.num_states,
            self.num_controls,
            self.num_parameters,
            self._path.numel_out(0),
            self._endpoint_constraints.numel_out(0),
        )

    @property
    def num_path_constraints(self) -> int:
        return int(self._path.numel_out(0))

    @property
    def num_endpoint_constraints(self) -> int:
        return int(self._endpoint_constraints.numel_out(0))

    def _evaluate_point(
        self, function: ca.Function, time: float, state, control, parameters
    ) -> FloatArray:
        result = function(
            _as_input(time), _as_input(state), _as_input(control), _as_input(parameters)
        )
        return np.asarray(ca.DM(result).full(), dtype=np.float64).ravel()

    def _evaluate_endpoint(
        self, function: ca.Function, t0: float, x0, tf: float, xf, parameters
    ) -> FloatArray:
        result = function(
            _as_input(t0), _as_input(x0), _as_input(tf), _as_input(xf), _as_input(parameters)
        )
        return np.asarray(ca.DM(result).full(), dtype=np.float64).ravel()

    def dynamics(self, time, state, control, parameters) -> FloatArray:
        return self._evaluate_point(self._dynamics, time, state, control, parameters)

    def integrand_cost(self, time, state, control, parameters) -> float:
        return float(self._evaluate_point(self._integrand, time, state, control, parameters)[0])

    def path_constraints(self, time, state, control, parameters) -> FloatArray:
        return self._evaluate_point(self._path, time, state, control, parameters)

    def endpoint_cost(self, initial_time, initial_state, final_time, final_state, parameters) -> float:
        return float(
            self._evaluate_endpoint(
                self._endpoint_cost,
                initial_time,
                initial_state,
                final_time,
                final_state,
                parameters,
            )[0]
        )

    def endpoint_constraints(
        self, initial_time, initial_state, final_time, final_state, parameters
    ) -> FloatArray:
        return self._evaluate_endpoint(
            self._endpoint_constraints,
            initial_time,
            initial_state,
            final_time,
            final_state,
            parameters,
        )
