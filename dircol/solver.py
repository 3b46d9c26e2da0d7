import logging
from typing import Any

import numpy as np

from .adaptive.data_structures import AdaptiveParameters
from .dc_types import NumericArrayLike
from .derivatives import DerivativeOptions
from .input_validation import validate_choice
from .mesh import Mesh
from .nlp import SolveContext
from .nlp.adapter import IterationCallback
from .oracle import DynamicsOracle
from .problem import ProblemDefinition
from .solution import Solution
from .transcription import TrajectoryGuess
from .utils.constants import (
    DEFAULT_ERROR_SIM_POINTS,
    DEFAULT_ERROR_TOLERANCE,
    DEFAULT_MAX_MESH_POINTS,
    DEFAULT_MAX_REFINEMENTS,
    DEFAULT_ODE_ATOL_FACTOR,
    DEFAULT_ODE_METHOD,
    DEFAULT_ODE_RTOL,
    DEFAULT_SCHEME,
    SUPPORTED_SCHEMES,
)


__all__ = ["solve_adaptive", "solve_fixed_mesh"]

logger = logging.getLogger(__name__)


def _as_mesh(mesh: Mesh | NumericArrayLike | int) -> Mesh:
    if isinstance(mesh, Mesh):
        return mesh
    if isinstance(mesh, int | np.integer) and not isinstance(mesh, bool):
        return Mesh.uniform(mesh)
    return Mesh.build(mesh)


def solve_fixed_mesh(
    problem: ProblemDefinition,
    oracle: DynamicsOracle,
    mesh: Mesh | NumericArrayLike | int,
    scheme: str = DEFAULT_SCHEME,
    nlp_options: dict[str, Any] | None = None,
    derivative_options: DerivativeOptions | None = None,
    initial_guess: TrajectoryGuess | None = None,
    callback: IterationCallback | None = None,
    max_wall_time: float | None = None,
) -> Solution:
    """
    Solve an optimal control problem by direct collocation on a fixed mesh.

    Args:
        problem: Sizes, names and bounds of the problem
        oracle: Dynamics oracle (dynamics, costs, path and endpoint constraints)
        mesh: A Mesh, normalized mesh points in [0, 1], or a number of uniform points
        scheme: "trapezoidal" or "hermite-simpson"
        nlp_options: IPOPT options, e.g. ``{"max_iter": 500, "tol": 1e-8}``
        derivative_options: Finite-difference mode, worker threads and Hessian strategy
        initial_guess: Trajectory samples to interpolate onto the mesh
        callback: Called with IterationStats after each iteration; return False to stop
        max_wall_time: Stop at the first iteration boundary after this many seconds

    Returns:
        Solution with status, objective and reconstructed trajectory. A failed
        solve is reported through ``Solution.status``, not raised.

    Raises:
        dircol.ConfigurationError: Malformed mesh, scheme or options (before any oracle call)
        dircol.DynamicsEvaluationError: Oracle fails at the starting point

    Examples:
        >>> problem = ProblemDefinition(
        ...     num_states=1,
        ...     num_controls=1,
        ...     initial_state_bounds=[0.0],
        ...     final_state_bounds=[1.0],
        ... )
        >>> oracle = ComposedOracle(lambda t, x, u, p: u, goals=[ControlEffortGoal()])
        >>> solution = solve_fixed_mesh(problem, oracle, mesh=10)
        >>> solution.objective
        1.0
    """
    mesh = _as_mesh(mesh)
    validate_choice(scheme, "scheme", SUPPORTED_SCHEMES)
    derivative_options = derivative_options or DerivativeOptions()

    logger.info(
        "Starting fixed-mesh solve: %d mesh points, scheme=%s", mesh.num_points, scheme
    )

    from .direct_solver import solve_on_mesh

    context = SolveContext(callback=callback, max_wall_time=max_wall_time)
    solution = solve_on_mesh(
        problem, oracle, mesh, scheme, nlp_options, derivative_options, initial_guess, context
    )

    if solution.success:
        logger.info("Fixed-mesh solve completed: objective=%.6e", solution.objective)
    else:
        logger.warning("Fixed-mesh solve did not converge: %s", solution.message)
    return solution


def solve_adaptive(
    problem: ProblemDefinition,
    oracle: DynamicsOracle,
    mesh: Mesh | NumericArrayLike | int,
    scheme: str = DEFAULT_SCHEME,
    error_tolerance: float = DEFAULT_ERROR_TOLERANCE,
    max_refinements: int = DEFAULT_MAX_REFINEMENTS,
    max_mesh_points: int = DEFAULT_MAX_MESH_POINTS,
    ode_method: str = DEFAULT_ODE_METHOD,
    ode_rtol: float = DEFAULT_ODE_RTOL,
    ode_atol_factor: float = DEFAULT_ODE_ATOL_FACTOR,
    num_error_sim_points: int = DEFAULT_ERROR_SIM_POINTS,
    warm_start: bool = True,
    nlp_options: dict[str, Any] | None = None,
    derivative_options: DerivativeOptions | None = None,
    initial_guess: TrajectoryGuess | None = None,
    callback: IterationCallback | None = None,
    max_wall_time: float | None = None,
) -> Solution:
    """
    Solve with adaptive mesh refinement until interval errors meet tolerance.

    Each round solves the NLP, estimates the discretization error of every
    interval by forward/backward simulation, bisects the worst intervals and
    re-solves, warm-started from the previous trajectory. The loop stops when
    all errors are within ``error_tolerance`` (outcome ACCEPTED), when the
    refinement budget is spent (MAX_REFINEMENTS_EXCEEDED, logged as a warning
    and recorded on ``solution.adaptive.warning``), or when a solve fails
    (SOLVER_FAILED).

    Args:
        problem: Sizes, names and bounds of the problem
        oracle: Dynamics oracle
        mesh: Initial mesh, normalized points, or a number of uniform points
        scheme: "trapezoidal" or "hermite-simpson"
        error_tolerance: Target relative error per interval
        max_refinements: Maximum number of refinement rounds after the first solve
        max_mesh_points: Upper limit on mesh size
        ode_method: ``solve_ivp`` method used for error simulation
        ode_rtol: Relative tolerance for error simulation
        ode_atol_factor: Absolute tolerance is ``ode_rtol * ode_atol_factor``
        num_error_sim_points: Comparison points per interval
        warm_start: Seed each round with the previous trajectory
        nlp_options: IPOPT options
        derivative_options: Finite-difference options
        initial_guess: Guess for the first round
        callback: Iteration callback applied to every solve
        max_wall_time: Wall-time limit applied to each solve

    Returns:
        Solution of the last round, with ``solution.adaptive`` describing the loop.
    """
    mesh = _as_mesh(mesh)
    validate_choice(scheme, "scheme", SUPPORTED_SCHEMES)
    params = AdaptiveParameters(
        error_tolerance=error_tolerance,
        max_refinements=max_refinements,
        max_mesh_points=max_mesh_points,
        ode_method=ode_method,
        ode_rtol=ode_rtol,
        ode_atol_factor=ode_atol_factor,
        num_error_sim_points=num_error_sim_points,
        warm_start=warm_start,
    )

    from .adaptive.algorithm import solve_adaptive_internal

    return solve_adaptive_internal(
        problem,
        oracle,
        mesh,
        scheme,
        params,
        nlp_options,
        derivative_options,
        initial_guess,
        callback,
        max_wall_time,
    )
