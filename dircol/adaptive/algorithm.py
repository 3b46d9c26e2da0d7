import logging
from typing import Any

import numpy as np

from ..derivatives import DerivativeOptions
from ..direct_solver import solve_on_mesh
from ..exceptions import MaxRefinementsExceeded
from ..mesh import Mesh
from ..nlp import SolveContext
from ..nlp.adapter import IterationCallback
from ..oracle import DynamicsOracle
from ..problem import ProblemDefinition
from ..solution import Solution
from ..transcription import TrajectoryGuess, get_scheme
from .data_structures import AdaptiveParameters, AdaptiveResult, RefinementOutcome
from .error_estimation import estimate_error


__all__ = ["solve_adaptive_internal"]

logger = logging.getLogger(__name__)


def _handle_solver_failure(
    solution: Solution, iteration: int, result: AdaptiveResult
) -> Solution:
    logger.warning(
        "NLP solve failed in adaptive iteration %d: %s", iteration + 1, solution.message
    )
    result.outcome = RefinementOutcome.SOLVER_FAILED
    solution.adaptive = result
    return solution


def _create_convergence_result(
    solution: Solution, iteration: int, result: AdaptiveResult
) -> Solution:
    logger.info(
        "Adaptive refinement converged in %d iterations: max error %.3e, %d mesh points",
        iteration + 1,
        result.max_error,
        solution.mesh.num_points,
    )
    result.outcome = RefinementOutcome.ACCEPTED
    solution.adaptive = result
    return solution


def _create_max_refinements_result(
    solution: Solution, params: AdaptiveParameters, result: AdaptiveResult
) -> Solution:
    warning = MaxRefinementsExceeded(params.max_refinements, result.max_error, params.error_tolerance)
    logger.warning("%s", warning)
    result.outcome = RefinementOutcome.MAX_REFINEMENTS_EXCEEDED
    result.warning = warning
    solution.adaptive = result
    return solution


def solve_adaptive_internal(
    problem: ProblemDefinition,
    oracle: DynamicsOracle,
    mesh: Mesh,
    scheme: str,
    params: AdaptiveParameters,
    nlp_options: dict[str, Any] | None = None,
    derivative_options: DerivativeOptions | None = None,
    initial_guess: TrajectoryGuess | None = None,
    callback: IterationCallback | None = None,
    max_wall_time: float | None = None,
) -> Solution:
    """Solve, estimate interval errors, refine and re-solve until accepted.

    Each round is a complete NLP solve on a fresh transcription; the next
    round is warm-started from the previous trajectory when
    ``params.warm_start`` is set. A solver failure ends the loop.
    """
    logger.info(
        "Starting adaptive mesh refinement: tolerance=%.1e, max_refinements=%d",
        params.error_tolerance,
        params.max_refinements,
    )
    order = get_scheme(scheme).order
    ode_solver = params.get_ode_solver()
    result = AdaptiveResult(RefinementOutcome.SOLVER_FAILED, params.error_tolerance)
    guess = initial_guess
    solution: Solution | None = None

    for iteration in range(params.max_refinements + 1):
        logger.info(
            "Adaptive iteration %d/%d: %d mesh points",
            iteration + 1,
            params.max_refinements + 1,
            mesh.num_points,
        )
        context = SolveContext(callback=callback, max_wall_time=max_wall_time)
        solution = solve_on_mesh(
            problem, oracle, mesh, scheme, nlp_options, derivative_options, guess, context
        )
        result.meshes.append(mesh)

        if not solution.success:
            return _handle_solver_failure(solution, iteration, result)

        errors = estimate_error(
            solution.trajectory, oracle, ode_solver, params.num_error_sim_points
        )
        result.error_history.append(errors)
        logger.info(
            "Adaptive iteration %d: max interval error %.3e (tolerance %.1e)",
            iteration + 1,
            float(np.max(errors)) if errors.size else 0.0,
            params.error_tolerance,
        )

        if np.all(np.isfinite(errors)) and np.all(errors <= params.error_tolerance):
            return _create_convergence_result(solution, iteration, result)
        if iteration == params.max_refinements:
            break

        refined = mesh.refine(errors, params.error_tolerance, params.max_mesh_points, order)
        if refined == mesh:
            logger.info("Mesh cannot be refined further within %d points", params.max_mesh_points)
            break
        mesh = refined
        if params.warm_start:
            guess = solution.trajectory.as_guess()

    return _create_max_refinements_result(solution, params, result)

