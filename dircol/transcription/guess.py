"""
Initial guess construction: bound-derived defaults or interpolation of a
previous trajectory onto a new mesh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..dc_types import FloatArray, NumericArrayLike
from ..exceptions import ConfigurationError
from ..mesh import Mesh
from ..problem import Bounds, ProblemDefinition
from ..utils.coordinates import time_to_normalized
from .layout import VariableLayout


__all__ = ["TrajectoryGuess", "build_initial_guess", "default_value"]

logger = logging.getLogger(__name__)


@dataclass
class TrajectoryGuess:
    """Sampled trajectory used to seed a solve.

    ``time`` holds physical times (strictly increasing); ``states`` and
    ``controls`` have one row per sample.
    """

    time: NumericArrayLike
    states: NumericArrayLike
    controls: NumericArrayLike | None = None
    parameters: NumericArrayLike | None = None

    def __post_init__(self) -> None:
        self.time = np.asarray(self.time, dtype=np.float64).ravel()
        if len(self.time) < 2 or np.any(np.diff(self.time) <= 0):
            raise ConfigurationError("Guess time must be strictly increasing with >= 2 samples")
        self.states = self._as_table(self.states, "states")
        self.controls = (
            np.zeros((len(self.time), 0)) if self.controls is None else self._as_table(self.controls, "controls")
        )
        if self.parameters is not None:
            self.parameters = np.asarray(self.parameters, dtype=np.float64).ravel()

    def _as_table(self, values: NumericArrayLike, name: str) -> FloatArray:
        table = np.asarray(values, dtype=np.float64)
        if table.ndim == 1:
            table = table.reshape(-1, 1)
        if table.shape[0] != len(self.time):
            raise ConfigurationError(
                f"Guess {name} has {table.shape[0]} rows for {len(self.time)} time samples"
            )
        return table


def default_value(bounds: Bounds) -> float:
    """Midpoint of finite bounds, the finite side when one-sided, else zero."""
    lower_finite = np.isfinite(bounds.lower)
    upper_finite = np.isfinite(bounds.upper)
    if lower_finite and upper_finite:
        return 0.5 * (bounds.lower + bounds.upper)
    if lower_finite:
        return float(bounds.lower)
    if upper_finite:
        return float(bounds.upper)
    return 0.0


def _default_times(problem: ProblemDefinition) -> tuple[float, float]:
    initial_time = default_value(problem.initial_time_bounds)
    final_time = default_value(problem.final_time_bounds)
    if final_time <= initial_time:
        initial_time = problem.initial_time_bounds.lower
        final_time = problem.final_time_bounds.upper
    return initial_time, final_time


def _clip_to_bounds(values: FloatArray, bounds: list[Bounds]) -> FloatArray:
    if not bounds:
        return values
    lower, upper = np.array([b.lower for b in bounds]), np.array([b.upper for b in bounds])
    return np.clip(values, lower, upper)


def _default_guess(
    problem: ProblemDefinition, mesh: Mesh
) -> tuple[float, float, FloatArray, FloatArray, FloatArray]:
    initial_time, final_time = _default_times(problem)
    parameters = np.array([default_value(b) for b in problem.parameter_bounds], dtype=np.float64)

    initial_states = np.empty(problem.num_states)
    final_states = np.empty(problem.num_states)
    for i in range(problem.num_states):
        start = problem.initial_state_bounds[i]
        end = problem.final_state_bounds[i]
        initial_states[i] = default_value(problem.state_bounds[i] if start.is_free else start)
        final_states[i] = default_value(problem.state_bounds[i] if end.is_free else end)

    tau = mesh.points[:, None]
    states = (1.0 - tau) * initial_states[None, :] + tau * final_states[None, :]
    states = _clip_to_bounds(states, problem.state_bounds)

    controls = np.tile(
        np.array([default_value(b) for b in problem.control_bounds], dtype=np.float64),
        (mesh.num_points, 1),
    )
    return initial_time, final_time, parameters, states, controls


def _interpolate_columns(query: FloatArray, samples: FloatArray, table: FloatArray) -> FloatArray:
    result = np.empty((len(query), table.shape[1]), dtype=np.float64)
    for column in range(table.shape[1]):
        result[:, column] = np.interp(query, samples, table[:, column])
    return result


def _interpolate_guess(
    problem: ProblemDefinition, mesh: Mesh, guess: TrajectoryGuess
) -> tuple[float, float, FloatArray, FloatArray, FloatArray]:
    if guess.states.shape[1] != problem.num_states:
        raise ConfigurationError(
            f"Guess has {guess.states.shape[1]} states, problem has {problem.num_states}"
        )
    if guess.controls.shape[1] != problem.num_controls:
        raise ConfigurationError(
            f"Guess has {guess.controls.shape[1]} controls, problem has {problem.num_controls}"
        )

    guess_tau = time_to_normalized(guess.time, guess.time[0], guess.time[-1])
    states = _interpolate_columns(mesh.points, guess_tau, guess.states)
    controls = _interpolate_columns(mesh.points, guess_tau, guess.controls)

    initial_time = float(
        np.clip(guess.time[0], problem.initial_time_bounds.lower, problem.initial_time_bounds.upper)
    )
    final_time = float(
        np.clip(guess.time[-1], problem.final_time_bounds.lower, problem.final_time_bounds.upper)
    )
    if final_time <= initial_time:
        logger.debug("Guess horizon collapses after clipping; using default horizon")
        initial_time, final_time = _default_times(problem)

    if guess.parameters is None:
        parameters = np.array([default_value(b) for b in problem.parameter_bounds], dtype=np.float64)
    else:
        parameters = np.asarray(guess.parameters, dtype=np.float64)
        if parameters.shape != (problem.num_parameters,):
            raise ConfigurationError(
                f"Guess has {parameters.size} parameters, problem has {problem.num_parameters}"
            )
    return initial_time, final_time, parameters, states, controls


def build_initial_guess(
    problem: ProblemDefinition,
    mesh: Mesh,
    layout: VariableLayout,
    guess: TrajectoryGuess | None = None,
) -> FloatArray:
    """Flat NLP starting point on ``mesh``.

    Without a guess, every variable takes the default value of its bounds and
    states are linearly interpolated between their initial and final guesses.
    With a guess, its samples are interpolated linearly in normalized time.
    """
    if guess is None:
        parts = _default_guess(problem, mesh)
        logger.debug("Using bound-derived default initial guess")
    else:
        parts = _interpolate_guess(problem, mesh, guess)
        logger.debug("Interpolated initial guess from %d samples", len(guess.time))
    return layout.pack(*parts)
