"""
Callback adapter between the transcription and an interior-point NLP solver.

The adapter exposes the method names cyipopt expects from its ``problem_obj``
(``objective``, ``gradient``, ``constraints``, ``jacobian``,
``jacobianstructure``, ``hessian``, ``hessianstructure``, ``intermediate``)
and keeps every piece of per-solve bookkeeping in an explicit ``SolveContext``.
This module does not import the solver itself.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..dc_types import FloatArray, IntArray
from ..derivatives import DerivativeEngine, DerivativeOptions
from ..exceptions import DataIntegrityError, DynamicsEvaluationError
from ..transcription import TrajectoryGuess, TranscriptionEngine


__all__ = ["AdapterState", "IterationStats", "NLPAdapter", "SolveContext", "SolveStatus"]

logger = logging.getLogger(__name__)


class AdapterState(Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    SOLVING = "solving"
    CONVERGED = "converged"
    FAILED = "failed"
    USER_TERMINATED = "user_terminated"


class SolveStatus(Enum):
    """Terminal outcome of one NLP solve."""

    CONVERGED = "converged"
    FAILED = "failed"
    USER_TERMINATED = "user_terminated"


_TERMINAL_STATES = {
    SolveStatus.CONVERGED: AdapterState.CONVERGED,
    SolveStatus.FAILED: AdapterState.FAILED,
    SolveStatus.USER_TERMINATED: AdapterState.USER_TERMINATED,
}

_ALLOWED_TRANSITIONS: dict[AdapterState, set[AdapterState]] = {
    AdapterState.UNINITIALIZED: {AdapterState.CONFIGURED},
    AdapterState.CONFIGURED: {AdapterState.SOLVING},
    AdapterState.SOLVING: {
        AdapterState.CONVERGED,
        AdapterState.FAILED,
        AdapterState.USER_TERMINATED,
    },
    AdapterState.CONVERGED: {AdapterState.CONFIGURED},
    AdapterState.FAILED: {AdapterState.CONFIGURED},
    AdapterState.USER_TERMINATED: {AdapterState.CONFIGURED},
}


@dataclass(frozen=True)
class IterationStats:
    """Progress report of one solver iteration."""

    iteration: int
    objective: float
    primal_infeasibility: float
    dual_infeasibility: float
    barrier_parameter: float
    step_norm: float
    regularization: float
    dual_step: float
    primal_step: float
    line_search_trials: int
    evaluation_errors: int
    elapsed: float
    restoration: bool = False


IterationCallback = Callable[[IterationStats], bool | None]


@dataclass
class SolveContext:
    """Per-solve state: history, recoveries, cancellation and time limit.

    Attributes:
        callback: Called after each iteration; returning False requests a stop
        max_wall_time: Seconds after which the solve is stopped at the next
            iteration boundary, or None for no limit
    """

    callback: IterationCallback | None = None
    max_wall_time: float | None = None
    history: list[IterationStats] = field(default_factory=list)
    recoveries: list[DynamicsEvaluationError] = field(default_factory=list)
    stop_requested: bool = False
    termination_reason: str | None = None
    start_time: float | None = None
    _reported_recoveries: int = 0

    def start(self) -> None:
        self.start_time = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return 0.0 if self.start_time is None else time.perf_counter() - self.start_time

    @property
    def iterations(self) -> int:
        return self.history[-1].iteration if self.history else 0

    def request_stop(self, reason: str = "stop requested") -> None:
        """Ask the solver to stop at the next iteration boundary."""
        self.stop_requested = True
        self.termination_reason = reason

    def record_recovery(self, error: DynamicsEvaluationError) -> None:
        self.recoveries.append(error)

    def new_recoveries(self) -> int:
        count = len(self.recoveries) - self._reported_recoveries
        self._reported_recoveries = len(self.recoveries)
        return count


class NLPAdapter:
    """Serves NLP callbacks from a transcription engine.

    Evaluation failures inside the objective and constraint callbacks are
    recorded in the context and reported as NaN so the solver rejects the
    trial point and backtracks. A failure at the starting point is raised.
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        derivative_options: DerivativeOptions | None = None,
        initial_guess: TrajectoryGuess | None = None,
    ) -> None:
        self.engine = engine
        self.derivative_options = derivative_options or DerivativeOptions()
        self.initial_guess = initial_guess
        self.state = AdapterState.UNINITIALIZED
        self.derivatives: DerivativeEngine | None = None
        self.context: SolveContext | None = None
        self._starting_point: FloatArray | None = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: AdapterState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise DataIntegrityError(
                f"Illegal adapter transition {self.state.value} -> {target.value}",
                "NLPAdapter state machine",
            )
        logger.debug("Adapter state %s -> %s", self.state.value, target.value)
        self.state = target

    def configure(self) -> None:
        """Build sparsity patterns, coloring and the starting point."""
        if self.derivatives is None:
            self.derivatives = DerivativeEngine(self.engine, self.derivative_options)
        self._starting_point = self.engine.initial_guess(self.initial_guess)
        self._transition(AdapterState.CONFIGURED)

    def begin(self, context: SolveContext | None = None) -> FloatArray:
        """Validate the starting point and enter the SOLVING state.

        Raises:
            DynamicsEvaluationError: The oracle fails at the starting point
        """
        if self.state is not AdapterState.CONFIGURED:
            raise DataIntegrityError(
                f"Cannot start solving from state {self.state.value}", "NLPAdapter.begin"
            )
        x0 = self.get_starting_point()
        self._derivatives.base(x0)
        self.context = context or SolveContext()
        self.context.start()
        self._transition(AdapterState.SOLVING)
        return x0

    def finish(self, status: SolveStatus) -> None:
        self._transition(_TERMINAL_STATES[status])
        if self.derivatives is not None:
            self.derivatives.close()

    @property
    def _derivatives(self) -> DerivativeEngine:
        if self.derivatives is None:
            raise DataIntegrityError("Adapter used before configure()", "NLPAdapter")
        return self.derivatives

    @property
    def _context(self) -> SolveContext:
        if self.context is None:
            self.context = SolveContext()
        return self.context

    # ------------------------------------------------------------------
    # Problem description
    # ------------------------------------------------------------------

    @property
    def num_variables(self) -> int:
        return self.engine.variable_count()

    @property
    def num_constraints(self) -> int:
        return self.engine.constraint_count()

    def get_bounds(self) -> tuple[FloatArray, FloatArray, FloatArray, FloatArray]:
        """Variable bounds and constraint bounds: ``(lb, ub, cl, cu)``."""
        lower, upper = self.engine.variable_bounds()
        constraint_lower, constraint_upper = self.engine.constraint_bounds()
        return lower, upper, constraint_lower, constraint_upper

    def get_starting_point(self) -> FloatArray:
        if self._starting_point is None:
            raise DataIntegrityError("Adapter used before configure()", "NLPAdapter")
        return self._starting_point.copy()

    def jacobianstructure(self) -> tuple[IntArray, IntArray]:
        pattern = self._derivatives.jacobian_sparsity
        return pattern.rows, pattern.cols

    def hessianstructure(self) -> tuple[IntArray, IntArray]:
        pattern = self._derivatives.hessian_sparsity
        return pattern.rows, pattern.cols

    # ------------------------------------------------------------------
    # Evaluation callbacks
    # ------------------------------------------------------------------

    def _recover(self, error: DynamicsEvaluationError, size: int | None) -> FloatArray | float:
        self._context.record_recovery(error)
        logger.debug("Rejected trial point: %s", error)
        if size is None:
            return float("nan")
        return np.full(size, np.nan)

    def objective(self, x: FloatArray) -> float:
        try:
            return self._derivatives.objective(x)
        except DynamicsEvaluationError as error:
            return self._recover(error, None)

    def gradient(self, x: FloatArray) -> FloatArray:
        try:
            return self._derivatives.objective_gradient(x)
        except DynamicsEvaluationError as error:
            return self._recover(error, self.num_variables)

    def constraints(self, x: FloatArray) -> FloatArray:
        try:
            return self._derivatives.constraints(x)
        except DynamicsEvaluationError as error:
            return self._recover(error, self.num_constraints)

    def jacobian(self, x: FloatArray) -> FloatArray:
        try:
            return self._derivatives.constraint_jacobian(x)
        except DynamicsEvaluationError as error:
            return self._recover(error, self._derivatives.jacobian_sparsity.nnz)

    def hessian(self, x: FloatArray, lagrange: FloatArray, obj_factor: float) -> FloatArray:
        try:
            return self._derivatives.evaluate_hessian(x, lagrange, obj_factor)
        except DynamicsEvaluationError as error:
            return self._recover(error, self._derivatives.hessian_sparsity.nnz)

    def intermediate(
        self,
        alg_mod: int,
        iter_count: int,
        obj_value: float,
        inf_pr: float,
        inf_du: float,
        mu: float,
        d_norm: float,
        regularization_size: float,
        alpha_du: float,
        alpha_pr: float,
        ls_trials: int,
    ) -> bool:
        """Record iteration statistics; returning False stops the solver."""
        context = self._context
        stats = IterationStats(
            iteration=int(iter_count),
            objective=float(obj_value),
            primal_infeasibility=float(inf_pr),
            dual_infeasibility=float(inf_du),
            barrier_parameter=float(mu),
            step_norm=float(d_norm),
            regularization=float(regularization_size),
            dual_step=float(alpha_du),
            primal_step=float(alpha_pr),
            line_search_trials=int(ls_trials),
            evaluation_errors=context.new_recoveries(),
            elapsed=context.elapsed,
            restoration=alg_mod == 1,
        )
        return self.on_iteration_finished(stats)

    def on_iteration_finished(self, stats: IterationStats) -> bool:
        context = self._context
        context.history.append(stats)

        if stats.evaluation_errors:
            logger.warning(
                "Iteration %d: recovered from %d dynamics evaluation errors",
                stats.iteration,
                stats.evaluation_errors,
            )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "iter %3d  f=%.6e  inf_pr=%.2e  inf_du=%.2e  mu=%.1e",
                stats.iteration,
                stats.objective,
                stats.primal_infeasibility,
                stats.dual_infeasibility,
                stats.barrier_parameter,
            )

        if context.callback is not None and context.callback(stats) is False:
            context.request_stop("callback requested stop")
        if (
            context.max_wall_time is not None
            and not context.stop_requested
            and stats.elapsed > context.max_wall_time
        ):
            context.request_stop(f"wall time limit of {context.max_wall_time:g} s exceeded")

        if context.stop_requested:
            logger.info("Stopping at iteration %d: %s", stats.iteration, context.termination_reason)
            return False
        return True

    # Names of the solver-independent callback protocol
    eval_objective = objective
    eval_objective_gradient = gradient
    eval_constraints = constraints
    eval_constraints_jacobian = jacobian
    eval_hessian = hessian
