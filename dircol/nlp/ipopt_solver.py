"""
IPOPT driver: runs cyipopt on an ``NLPAdapter`` and collects the result.
"""

from __future__ import annotations

import logging
from typing import Any

import cyipopt
import numpy as np

from ..exceptions import ConfigurationError
from ..utils.constants import DEFAULT_NLP_OPTIONS
from .adapter import AdapterState, NLPAdapter, SolveContext, SolveStatus
from .result import RawSolution


__all__ = ["IPOPT_STATUS_MESSAGES", "IpoptSolver", "RawSolution", "map_ipopt_status"]

logger = logging.getLogger(__name__)


IPOPT_STATUS_MESSAGES: dict[int, str] = {
    0: "Solve_Succeeded",
    1: "Solved_To_Acceptable_Level",
    2: "Infeasible_Problem_Detected",
    3: "Search_Direction_Becomes_Too_Small",
    4: "Diverging_Iterates",
    5: "User_Requested_Stop",
    6: "Feasible_Point_Found",
    -1: "Maximum_Iterations_Exceeded",
    -2: "Restoration_Failed",
    -3: "Error_In_Step_Computation",
    -4: "Maximum_CpuTime_Exceeded",
    -5: "Maximum_WallTime_Exceeded",
    -10: "Not_Enough_Degrees_Of_Freedom",
    -11: "Invalid_Problem_Definition",
    -12: "Invalid_Option",
    -13: "Invalid_Number_Detected",
    -100: "Unrecoverable_Exception",
    -101: "NonIpopt_Exception_Thrown",
    -102: "Insufficient_Memory",
    -199: "Internal_Error",
}


def map_ipopt_status(code: int) -> SolveStatus:
    if code in (0, 1):
        return SolveStatus.CONVERGED
    if code == 5:
        return SolveStatus.USER_TERMINATED
    return SolveStatus.FAILED


class IpoptSolver:
    """Interior-point solver backend.

    Args:
        options: IPOPT options merged over ``DEFAULT_NLP_OPTIONS``. Keys may
            carry an ``ipopt.`` prefix, which is stripped.
    """

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self.options = dict(DEFAULT_NLP_OPTIONS)
        for key, value in (options or {}).items():
            if not isinstance(key, str):
                raise ConfigurationError(f"IPOPT option names must be strings, got {key!r}")
            self.options[key.removeprefix("ipopt.")] = value

    def _options_for(self, adapter: NLPAdapter) -> dict[str, Any]:
        options = dict(self.options)
        options.setdefault("hessian_approximation", adapter.derivative_options.hessian)
        return options

    def solve(self, adapter: NLPAdapter, context: SolveContext | None = None) -> RawSolution:
        """Run IPOPT from the adapter's starting point.

        Options are applied before the oracle is first called, so an invalid
        option raises ``ConfigurationError`` without any evaluation. Solver
        failures are reported through ``RawSolution.status``; a failing
        starting point raises, and exceptions escaping the callbacks propagate
        after the adapter has been moved to FAILED.
        """
        if adapter.state is not AdapterState.CONFIGURED:
            adapter.configure()

        lower, upper, constraint_lower, constraint_upper = adapter.get_bounds()
        options = self._options_for(adapter)
        problem = cyipopt.Problem(
            n=adapter.num_variables,
            m=adapter.num_constraints,
            problem_obj=adapter,
            lb=lower,
            ub=upper,
            cl=constraint_lower,
            cu=constraint_upper,
        )
        for key, value in options.items():
            try:
                problem.add_option(key, value)
            except (TypeError, ValueError) as error:
                raise ConfigurationError(
                    f"Invalid IPOPT option {key}={value!r}: {error}", "nlp_options"
                ) from error

        x0 = adapter.begin(context)
        context = adapter.context

        logger.info(
            "Starting IPOPT: %d variables, %d constraints",
            adapter.num_variables,
            adapter.num_constraints,
        )
        status = SolveStatus.FAILED
        try:
            x, info = problem.solve(x0)
            code = int(info["status"])
            status = map_ipopt_status(code)
        finally:
            adapter.finish(status)

        message = info.get("status_msg", IPOPT_STATUS_MESSAGES.get(code, "Unknown status"))
        if isinstance(message, bytes):
            message = message.decode()

        solution = RawSolution(
            variables=np.asarray(x, dtype=np.float64),
            objective=float(info["obj_val"]),
            status=status,
            solver_status=code,
            message=str(message),
            iterations=context.iterations,
            constraint_values=np.asarray(info["g"], dtype=np.float64),
            constraint_multipliers=np.asarray(info["mult_g"], dtype=np.float64),
            lower_bound_multipliers=np.asarray(info["mult_x_L"], dtype=np.float64),
            upper_bound_multipliers=np.asarray(info["mult_x_U"], dtype=np.float64),
            elapsed=context.elapsed,
            evaluation_recoveries=len(context.recoveries),
            termination_reason=context.termination_reason,
            options=options,
        )

        if status is SolveStatus.CONVERGED:
            logger.info(
                "IPOPT converged in %d iterations: objective=%.6e (%s)",
                solution.iterations,
                solution.objective,
                IPOPT_STATUS_MESSAGES.get(code, message),
            )
        elif status is SolveStatus.USER_TERMINATED:
            logger.info("IPOPT stopped by request after %d iterations", solution.iterations)
        else:
            logger.warning(
                "IPOPT failed with status %d (%s) after %d iterations",
                code,
                IPOPT_STATUS_MESSAGES.get(code, message),
                solution.iterations,
            )
        return solution
