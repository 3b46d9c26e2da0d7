import logging

import numpy as np

from ..dc_types import FloatArray, ODESolverCallable
from ..exceptions import DynamicsEvaluationError
from ..oracle import DynamicsOracle
from ..solution import Trajectory


__all__ = [
    "calculate_gamma_normalizers",
    "calculate_relative_error_estimate",
    "estimate_error",
    "simulate_interval",
]

logger = logging.getLogger(__name__)


def calculate_gamma_normalizers(trajectory: Trajectory) -> FloatArray:
    """gamma_i = 1 / (1 + max|x_i|), as a column vector."""
    max_abs_values = np.max(np.abs(trajectory.states), axis=0, initial=0.0)
    return (1.0 / (1.0 + max_abs_values)).reshape(-1, 1)


def _max_scaled_deviation(
    sim_trajectory: FloatArray, nlp_trajectory: FloatArray, gamma_factors: FloatArray
) -> FloatArray:
    """Largest scaled deviation per state, ignoring NaN samples."""
    return np.fmax.reduce(gamma_factors * np.abs(sim_trajectory - nlp_trajectory), axis=1)


def simulate_interval(
    interval_idx: int,
    trajectory: Trajectory,
    oracle: DynamicsOracle,
    ode_solver: ODESolverCallable,
    n_eval_points: int = 10,
) -> tuple[bool, FloatArray, FloatArray, FloatArray, FloatArray]:
    """Forward and backward simulation across one mesh interval.

    Controls follow the linear interpolation of the mesh values. The forward
    run starts from the state at the left mesh point, the backward run from
    the state at the right mesh point.

    Returns:
        (success, eval_times, forward_states, backward_states, interpolated_states),
        state arrays shaped (n_x, n_eval_points)
    """
    num_states = trajectory.num_states
    t_start = float(trajectory.time[interval_idx])
    t_end = float(trajectory.time[interval_idx + 1])
    parameters = trajectory.parameters
    eval_times = np.linspace(t_start, t_end, n_eval_points, dtype=np.float64)
    failed = np.full((num_states, n_eval_points), np.nan, dtype=np.float64)

    def dynamics_rhs(time: float, state: FloatArray) -> FloatArray:
        control = trajectory.interpolate_controls(time)[0]
        with np.errstate(all="ignore"):
            derivative = np.asarray(
                oracle.dynamics(time, state, control, parameters), dtype=np.float64
            ).ravel()
        if not np.all(np.isfinite(derivative)):
            raise DynamicsEvaluationError(
                "Non-finite dynamics during error simulation",
                "dynamics",
                interval_idx,
                time,
                state,
                control,
                parameters,
            )
        return derivative

    def run(t_span: tuple[float, float], y0: FloatArray, t_eval: FloatArray) -> FloatArray | None:
        try:
            result = ode_solver(dynamics_rhs, t_span=t_span, y0=y0, t_eval=t_eval)
        except (DynamicsEvaluationError, ArithmeticError, ValueError, RuntimeError) as error:
            logger.debug("Interval %d simulation failed: %s", interval_idx, error)
            return None
        if not result.success or result.y.shape != (num_states, len(t_eval)):
            logger.debug("Interval %d simulation unsuccessful: %s", interval_idx, result.message)
            return None
        return result.y

    forward = run((t_start, t_end), trajectory.states[interval_idx], eval_times)
    backward = run((t_end, t_start), trajectory.states[interval_idx + 1], eval_times[::-1])
    interpolated = trajectory.interpolate_states(eval_times).T

    success = forward is not None and backward is not None
    return (
        success,
        eval_times,
        failed if forward is None else forward,
        failed if backward is None else np.fliplr(backward),
        interpolated,
    )


def calculate_relative_error_estimate(
    interval_idx: int,
    success: bool,
    fwd_sim_traj: FloatArray,
    bwd_sim_traj: FloatArray,
    nlp_traj: FloatArray,
    gamma_factors: FloatArray,
) -> float:
    """Max over states of gamma-scaled deviation between simulation and solution."""
    if not success:
        logger.debug("Interval %d: simulation failed, error set to inf", interval_idx)
        return np.inf
    if fwd_sim_traj.shape[0] == 0:
        return 0.0

    combined = np.fmax(
        _max_scaled_deviation(fwd_sim_traj, nlp_traj, gamma_factors),
        _max_scaled_deviation(bwd_sim_traj, nlp_traj, gamma_factors),
    )
    if np.all(np.isnan(combined)):
        return np.inf
    return float(np.nanmax(combined))


def estimate_error(
    trajectory: Trajectory,
    oracle: DynamicsOracle,
    ode_solver: ODESolverCallable,
    n_eval_points: int = 10,
) -> FloatArray:
    """Relative discretization error of every mesh interval.

    Each interval is simulated forward and backward with the interpolated
    controls and compared with the state interpolant of the solution. Errors
    are scaled per state by 1 / (1 + max|x_i|). An interval whose simulation
    fails gets an infinite error.
    """
    num_intervals = len(trajectory.time) - 1
    if trajectory.num_states == 0:
        return np.zeros(num_intervals, dtype=np.float64)

    gamma_factors = calculate_gamma_normalizers(trajectory)
    errors = np.empty(num_intervals, dtype=np.float64)
    for k in range(num_intervals):
        success, _, forward, backward, interpolated = simulate_interval(
            k, trajectory, oracle, ode_solver, n_eval_points
        )
        errors[k] = calculate_relative_error_estimate(
            k, success, forward, backward, interpolated, gamma_factors
        )

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Interval errors: max=%.3e, mean=%.3e, failed=%d",
            float(np.max(errors)),
            float(np.mean(errors[np.isfinite(errors)])) if np.any(np.isfinite(errors)) else np.inf,
            int(np.sum(~np.isfinite(errors))),
        )
    return errors
