"""
Transcription of a continuous-time problem into a finite-dimensional NLP.

The engine owns the variable and row layouts for one mesh and one collocation
scheme. It evaluates the oracle at the mesh points of a variable vector and
assembles the function vector: the constraint values followed by the
objective terms. Evaluations can be seeded with a previous evaluation so that
mesh points whose variables did not change are not sent to the oracle again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from ..dc_types import FloatArray
from ..exceptions import DynamicsEvaluationError
from ..input_validation import validate_choice, validate_oracle_vector
from ..mesh import Mesh
from ..oracle import DynamicsOracle
from ..problem import ProblemDefinition
from ..utils.constants import DEFAULT_SCHEME, SUPPORTED_SCHEMES
from .guess import TrajectoryGuess, build_initial_guess
from .layout import BlockKind, FunctionLayout, VariableLayout
from .schemes import HermiteSimpsonScheme, MidpointValues, get_scheme


__all__ = ["PointEvaluation", "TranscriptionEngine"]

logger = logging.getLogger(__name__)


@dataclass
class PointEvaluation:
    """Oracle outputs for one variable vector."""

    initial_time: float
    final_time: float
    parameters: FloatArray
    states: FloatArray
    controls: FloatArray
    times: FloatArray
    steps: FloatArray
    state_derivatives: FloatArray
    integrands: FloatArray
    path_values: FloatArray
    endpoint_cost: float
    endpoint_values: FloatArray
    midpoints: MidpointValues | None = None


class TranscriptionEngine:
    """Maps NLP variable vectors to constraint and objective values.

    Args:
        problem: Sizes and bounds of the optimal control problem
        mesh: Normalized mesh, fixed for the lifetime of the engine
        oracle: Dynamics oracle providing dynamics, costs and constraints
        scheme: Collocation scheme name ("trapezoidal" or "hermite-simpson")
    """

    def __init__(
        self,
        problem: ProblemDefinition,
        mesh: Mesh,
        oracle: DynamicsOracle,
        scheme: str = DEFAULT_SCHEME,
    ) -> None:
        validate_choice(scheme, "scheme", SUPPORTED_SCHEMES)
        self.problem = problem
        self.mesh = mesh
        self.oracle = oracle
        self.scheme = get_scheme(scheme)
        self.variables = VariableLayout(problem, mesh)
        self.layout = FunctionLayout(problem, mesh, self.variables)

        self._rows = {kind: self.layout.rows_of_kind(kind) for kind in BlockKind}
        self._initial_states = np.array(problem.constrained_initial_states, dtype=int)
        self._final_states = np.array(problem.constrained_final_states, dtype=int)
        self._periodic_states = np.array(problem.periodic_states, dtype=int)

        logger.debug(
            "Transcription engine: scheme=%s, %d mesh points, %d variables, %d constraints",
            self.scheme.name,
            mesh.num_points,
            self.variable_count(),
            self.constraint_count(),
        )

    def variable_count(self) -> int:
        return self.variables.count

    def constraint_count(self) -> int:
        return self.layout.num_constraints

    def objective_term_count(self) -> int:
        return self.layout.num_objective_terms

    # ------------------------------------------------------------------
    # Oracle evaluation
    # ------------------------------------------------------------------

    def _call_point(
        self,
        name: str,
        function: Callable[..., object],
        expected: int,
        mesh_index: int,
        time: float,
        state: FloatArray,
        control: FloatArray,
        parameters: FloatArray,
    ) -> FloatArray:
        try:
            with np.errstate(all="ignore"):
                raw = function(time, state, control, parameters)
        except (ArithmeticError, ValueError) as error:
            raise DynamicsEvaluationError(
                f"Oracle raised {type(error).__name__}: {error}",
                name,
                mesh_index,
                time,
                state,
                control,
                parameters,
            ) from error
        values = validate_oracle_vector(raw, expected, name)
        if not np.all(np.isfinite(values)):
            raise DynamicsEvaluationError(
                "Oracle returned non-finite values",
                name,
                mesh_index,
                time,
                state,
                control,
                parameters,
            )
        return values

    def _call_endpoint(
        self,
        name: str,
        function: Callable[..., object],
        expected: int,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> FloatArray:
        try:
            with np.errstate(all="ignore"):
                raw = function(initial_time, initial_state, final_time, final_state, parameters)
        except (ArithmeticError, ValueError) as error:
            raise DynamicsEvaluationError(
                f"Oracle raised {type(error).__name__}: {error}",
                name,
                time=final_time,
                state=final_state,
                parameters=parameters,
            ) from error
        values = validate_oracle_vector(raw, expected, name)
        if not np.all(np.isfinite(values)):
            raise DynamicsEvaluationError(
                "Oracle returned non-finite values",
                name,
                time=final_time,
                state=final_state,
                parameters=parameters,
            )
        return values

    def _evaluate_at(
        self,
        index: int,
        time: float,
        state: FloatArray,
        control: FloatArray,
        parameters: FloatArray,
        with_path: bool = True,
    ) -> tuple[FloatArray, float, FloatArray | None]:
        oracle = self.oracle
        problem = self.problem
        derivative = self._call_point(
            "dynamics", oracle.dynamics, problem.num_states, index, time, state, control, parameters
        )
        integrand = self._call_point(
            "integrand_cost", oracle.integrand_cost, 1, index, time, state, control, parameters
        )[0]
        path = None
        if with_path:
            path = self._call_point(
                "path_constraints",
                oracle.path_constraints,
                problem.num_path_constraints,
                index,
                time,
                state,
                control,
                parameters,
            )
        return derivative, float(integrand), path

    def evaluate(self, variables: FloatArray, base: PointEvaluation | None = None) -> PointEvaluation:
        """Evaluate the oracle at every mesh point of ``variables``.

        When ``base`` is given and shares the horizon and parameters, only the
        mesh points (and adjacent midpoints) whose states or controls differ
        from ``base`` are sent to the oracle; all other outputs are reused.

        Raises:
            DynamicsEvaluationError: The oracle failed at some point
            DataIntegrityError: Vector or oracle output has the wrong shape
        """
        initial_time, final_time, parameters, states, controls = self.variables.unpack(variables)
        duration = final_time - initial_time
        if not duration > 0.0:
            raise DynamicsEvaluationError(
                f"Horizon length {duration:.6g} is not positive", "horizon", time=initial_time
            )
        parameters = parameters.copy()
        states = states.copy()
        controls = controls.copy()
        times = self.mesh.times(initial_time, final_time)
        steps = duration * self.mesh.interval_lengths
        num_points = self.mesh.num_points

        reuse = (
            base is not None
            and base.initial_time == initial_time
            and base.final_time == final_time
            and np.array_equal(base.parameters, parameters)
        )
        if reuse:
            changed = np.any(states != base.states, axis=1) | np.any(controls != base.controls, axis=1)
            state_derivatives = base.state_derivatives.copy()
            integrands = base.integrands.copy()
            path_values = base.path_values.copy()
        else:
            changed = np.ones(num_points, dtype=bool)
            state_derivatives = np.empty((num_points, self.problem.num_states))
            integrands = np.empty(num_points)
            path_values = np.empty((num_points, self.problem.num_path_constraints))

        for k in np.flatnonzero(changed):
            state_derivatives[k], integrands[k], path_values[k] = self._evaluate_at(
                int(k), times[k], states[k], controls[k], parameters
            )

        midpoints = None
        if isinstance(self.scheme, HermiteSimpsonScheme):
            midpoints = self._evaluate_midpoints(
                times,
                steps,
                states,
                controls,
                parameters,
                state_derivatives,
                changed[:-1] | changed[1:],
                base if reuse else None,
            )

        if reuse and not (changed[0] or changed[-1]):
            endpoint_cost = base.endpoint_cost
            endpoint_values = base.endpoint_values
        else:
            endpoint_cost, endpoint_values = self._evaluate_endpoints(
                initial_time, states[0], final_time, states[-1], parameters
            )

        if logger.isEnabledFor(logging.DEBUG) and reuse:
            logger.debug("Reused oracle outputs at %d of %d mesh points", int(np.sum(~changed)), num_points)

        return PointEvaluation(
            initial_time=initial_time,
            final_time=final_time,
            parameters=parameters,
            states=states,
            controls=controls,
            times=times,
            steps=steps,
            state_derivatives=state_derivatives,
            integrands=integrands,
            path_values=path_values,
            endpoint_cost=endpoint_cost,
            endpoint_values=endpoint_values,
            midpoints=midpoints,
        )

    def _evaluate_midpoints(
        self,
        times: FloatArray,
        steps: FloatArray,
        states: FloatArray,
        controls: FloatArray,
        parameters: FloatArray,
        state_derivatives: FloatArray,
        changed: FloatArray,
        base: PointEvaluation | None,
    ) -> MidpointValues:
        scheme = self.scheme
        mid_times = times[:-1] + 0.5 * steps
        mid_states = scheme.midpoint_states(states, state_derivatives, steps)
        mid_controls = scheme.midpoint_controls(controls)
        if base is not None and base.midpoints is not None:
            mid_derivatives = base.midpoints.state_derivatives.copy()
            mid_integrands = base.midpoints.integrands.copy()
        else:
            changed = np.ones(len(steps), dtype=bool)
            mid_derivatives = np.empty((len(steps), self.problem.num_states))
            mid_integrands = np.empty(len(steps))

        for k in np.flatnonzero(changed):
            mid_derivatives[k], mid_integrands[k], _ = self._evaluate_at(
                int(k), mid_times[k], mid_states[k], mid_controls[k], parameters, with_path=False
            )
        return MidpointValues(mid_times, mid_states, mid_controls, mid_derivatives, mid_integrands)

    def _evaluate_endpoints(
        self,
        initial_time: float,
        initial_state: FloatArray,
        final_time: float,
        final_state: FloatArray,
        parameters: FloatArray,
    ) -> tuple[float, FloatArray]:
        args = (initial_time, initial_state, final_time, final_state, parameters)
        cost = self._call_endpoint("endpoint_cost", self.oracle.endpoint_cost, 1, *args)[0]
        values = self._call_endpoint(
            "endpoint_constraints",
            self.oracle.endpoint_constraints,
            self.problem.num_endpoint_constraints,
            *args,
        )
        return float(cost), values

    # ------------------------------------------------------------------
    # Function vector assembly
    # ------------------------------------------------------------------

    def assemble(self, evaluation: PointEvaluation) -> FloatArray:
        """Function vector (constraints, then objective terms) of an evaluation."""
        rows = self._rows
        result = np.empty(self.layout.num_rows, dtype=np.float64)
        states = evaluation.states

        defects = self.scheme.defects(
            states, evaluation.state_derivatives, evaluation.steps, evaluation.midpoints
        )
        result[rows[BlockKind.DEFECT]] = defects.ravel()
        result[rows[BlockKind.PATH]] = evaluation.path_values.ravel()
        result[rows[BlockKind.INITIAL_STATE]] = states[0, self._initial_states]
        result[rows[BlockKind.FINAL_STATE]] = states[-1, self._final_states]
        result[rows[BlockKind.PERIODIC]] = (
            states[-1, self._periodic_states] - states[0, self._periodic_states]
        )
        result[rows[BlockKind.ENDPOINT]] = evaluation.endpoint_values
        result[rows[BlockKind.OBJECTIVE_INTERVAL]] = self.scheme.quadrature(
            evaluation.integrands, evaluation.steps, evaluation.midpoints
        )
        result[rows[BlockKind.OBJECTIVE_ENDPOINT]] = evaluation.endpoint_cost
        return result

    def function_vector(self, variables: FloatArray) -> FloatArray:
        return self.assemble(self.evaluate(np.asarray(variables, dtype=np.float64)))

    def constraints(self, variables: FloatArray) -> FloatArray:
        return self.function_vector(variables)[: self.layout.num_constraints]

    def objective_terms(self, variables: FloatArray) -> FloatArray:
        """Per-interval quadrature terms followed by the endpoint cost."""
        return self.function_vector(variables)[self.layout.num_constraints :]

    def objective(self, variables: FloatArray) -> float:
        return float(np.sum(self.objective_terms(variables)))

    # ------------------------------------------------------------------
    # Bounds and starting point
    # ------------------------------------------------------------------

    def variable_bounds(self) -> tuple[FloatArray, FloatArray]:
        problem = self.problem
        state_lower, state_upper = problem.bounds_arrays(problem.state_bounds)
        control_lower, control_upper = problem.bounds_arrays(problem.control_bounds)
        parameter_lower, parameter_upper = problem.bounds_arrays(problem.parameter_bounds)
        num_points = self.mesh.num_points
        lower = self.variables.pack(
            problem.initial_time_bounds.lower,
            problem.final_time_bounds.lower,
            parameter_lower,
            np.tile(state_lower, (num_points, 1)),
            np.tile(control_lower, (num_points, 1)),
        )
        upper = self.variables.pack(
            problem.initial_time_bounds.upper,
            problem.final_time_bounds.upper,
            parameter_upper,
            np.tile(state_upper, (num_points, 1)),
            np.tile(control_upper, (num_points, 1)),
        )
        return lower, upper

    def constraint_bounds(self) -> tuple[FloatArray, FloatArray]:
        problem = self.problem
        rows = self._rows
        lower = np.zeros(self.layout.num_constraints, dtype=np.float64)
        upper = np.zeros(self.layout.num_constraints, dtype=np.float64)

        path_lower, path_upper = problem.bounds_arrays(problem.path_constraint_bounds)
        lower[rows[BlockKind.PATH]] = np.tile(path_lower, self.mesh.num_points)
        upper[rows[BlockKind.PATH]] = np.tile(path_upper, self.mesh.num_points)

        initial = [problem.initial_state_bounds[i] for i in self._initial_states]
        lower[rows[BlockKind.INITIAL_STATE]], upper[rows[BlockKind.INITIAL_STATE]] = (
            problem.bounds_arrays(initial)
        )
        final = [problem.final_state_bounds[i] for i in self._final_states]
        lower[rows[BlockKind.FINAL_STATE]], upper[rows[BlockKind.FINAL_STATE]] = (
            problem.bounds_arrays(final)
        )
        lower[rows[BlockKind.ENDPOINT]], upper[rows[BlockKind.ENDPOINT]] = problem.bounds_arrays(
            problem.endpoint_constraint_bounds
        )
        return lower, upper

    def initial_guess(self, guess: TrajectoryGuess | None = None) -> FloatArray:
        return build_initial_guess(self.problem, self.mesh, self.variables, guess)
