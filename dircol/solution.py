"""
Reconstruction of time-domain trajectories from NLP solutions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from scipy.interpolate import CubicHermiteSpline

from .dc_types import FloatArray, NumericArrayLike
from .exceptions import DynamicsEvaluationError, SolverDivergenceError
from .mesh import Mesh
from .nlp.adapter import SolveStatus
from .transcription import BlockKind, TrajectoryGuess, TranscriptionEngine


if TYPE_CHECKING:
    from .adaptive.data_structures import AdaptiveResult
    from .nlp.result import RawSolution


__all__ = ["Solution", "Trajectory", "reconstruct"]

logger = logging.getLogger(__name__)


class Trajectory:
    """Sampled states and controls on the mesh, with interpolation.

    States are interpolated with cubic Hermite polynomials using the dynamics
    at the mesh points when those are available (linear otherwise); controls
    are interpolated linearly, matching the transcription.
    """

    def __init__(
        self,
        time: FloatArray,
        states: FloatArray,
        controls: FloatArray,
        parameters: FloatArray,
        state_names: list[str],
        control_names: list[str],
        parameter_names: list[str],
        mesh: Mesh,
        state_derivatives: FloatArray | None = None,
        multipliers: dict[str, FloatArray] | None = None,
    ) -> None:
        self.time = time
        self.states = states
        self.controls = controls
        self.parameters = parameters
        self.state_names = list(state_names)
        self.control_names = list(control_names)
        self.parameter_names = list(parameter_names)
        self.mesh = mesh
        self.state_derivatives = state_derivatives
        self.multipliers = multipliers or {}

        self._state_spline = None
        if state_derivatives is not None and states.shape[1] > 0:
            self._state_spline = CubicHermiteSpline(time, states, state_derivatives, axis=0)

    @property
    def initial_time(self) -> float:
        return float(self.time[0])

    @property
    def final_time(self) -> float:
        return float(self.time[-1])

    @property
    def num_states(self) -> int:
        return self.states.shape[1]

    @property
    def num_controls(self) -> int:
        return self.controls.shape[1]

    def state(self, name: str) -> FloatArray:
        return self.states[:, self.state_names.index(name)]

    def control(self, name: str) -> FloatArray:
        return self.controls[:, self.control_names.index(name)]

    def parameter(self, name: str) -> float:
        return float(self.parameters[self.parameter_names.index(name)])

    def __getitem__(self, key: str) -> FloatArray:
        if key == "time":
            return self.time
        if key in self.state_names:
            return self.state(key)
        if key in self.control_names:
            return self.control(key)
        if key in self.parameter_names:
            return np.array([self.parameter(key)])
        available = ["time", *self.state_names, *self.control_names, *self.parameter_names]
        raise KeyError(f"Variable '{key}' not found. Available: {available}")

    def __contains__(self, key: str) -> bool:
        return key == "time" or key in self.state_names + self.control_names + self.parameter_names

    def interpolate_states(self, time: NumericArrayLike | float) -> FloatArray:
        """States at arbitrary times inside the horizon, shape (len(time), n_x)."""
        query = np.atleast_1d(np.asarray(time, dtype=np.float64))
        if self._state_spline is not None:
            return np.asarray(self._state_spline(query), dtype=np.float64)
        return self._linear(query, self.states)

    def interpolate_controls(self, time: NumericArrayLike | float) -> FloatArray:
        query = np.atleast_1d(np.asarray(time, dtype=np.float64))
        return self._linear(query, self.controls)

    def _linear(self, query: FloatArray, table: FloatArray) -> FloatArray:
        result = np.empty((len(query), table.shape[1]), dtype=np.float64)
        for column in range(table.shape[1]):
            result[:, column] = np.interp(query, self.time, table[:, column])
        return result

    def to_dataframe(self) -> pd.DataFrame:
        """One row per mesh point: time, then states and controls by name."""
        data: dict[str, Any] = {"time": self.time}
        for i, name in enumerate(self.state_names):
            data[name] = self.states[:, i]
        for j, name in enumerate(self.control_names):
            data[name] = self.controls[:, j]
        return pd.DataFrame(data)

    def as_guess(self) -> TrajectoryGuess:
        """Initial guess that reproduces this trajectory on any mesh."""
        return TrajectoryGuess(
            time=self.time.copy(),
            states=self.states.copy(),
            controls=self.controls.copy(),
            parameters=self.parameters.copy(),
        )

    def __repr__(self) -> str:
        return (
            f"Trajectory(num_points={len(self.time)}, t=[{self.initial_time:.6g}, "
            f"{self.final_time:.6g}], states={self.state_names}, controls={self.control_names})"
        )


def _split_multipliers(engine: TranscriptionEngine, values: FloatArray) -> dict[str, FloatArray]:
    layout = engine.layout
    problem = engine.problem
    multipliers = {}
    for kind in (
        BlockKind.DEFECT,
        BlockKind.PATH,
        BlockKind.INITIAL_STATE,
        BlockKind.FINAL_STATE,
        BlockKind.PERIODIC,
        BlockKind.ENDPOINT,
    ):
        multipliers[kind.value] = values[layout.rows_of_kind(kind)]
    multipliers[BlockKind.DEFECT.value] = multipliers[BlockKind.DEFECT.value].reshape(
        engine.mesh.num_intervals, problem.num_states
    )
    multipliers[BlockKind.PATH.value] = multipliers[BlockKind.PATH.value].reshape(
        engine.mesh.num_points, problem.num_path_constraints
    )
    return multipliers


def reconstruct(raw_solution: RawSolution, engine: TranscriptionEngine) -> Trajectory:
    """Turn a raw NLP solution into a Trajectory on the engine's mesh."""
    initial_time, final_time, parameters, states, controls = engine.variables.unpack(
        raw_solution.variables
    )
    try:
        state_derivatives = engine.evaluate(raw_solution.variables).state_derivatives
    except DynamicsEvaluationError as error:
        logger.warning(
            "Dynamics unavailable at the returned iterate (%s); states interpolate linearly",
            error,
        )
        state_derivatives = None

    problem = engine.problem
    return Trajectory(
        time=engine.mesh.times(initial_time, final_time),
        states=states.copy(),
        controls=controls.copy(),
        parameters=parameters.copy(),
        state_names=problem.state_names,
        control_names=problem.control_names,
        parameter_names=problem.parameter_names,
        mesh=engine.mesh,
        state_derivatives=state_derivatives,
        multipliers=_split_multipliers(engine, raw_solution.constraint_multipliers),
    )


class Solution:
    """Result of a fixed-mesh or adaptive solve.

    A failed solve still carries the last iterate as its trajectory; call
    ``raise_for_status()`` to turn a failure into ``SolverDivergenceError``.
    """

    def __init__(
        self,
        raw_solution: RawSolution,
        trajectory: Trajectory,
        adaptive: AdaptiveResult | None = None,
    ) -> None:
        self.raw_solution = raw_solution
        self.trajectory = trajectory
        self.adaptive = adaptive

    @property
    def status(self) -> SolveStatus:
        return self.raw_solution.status

    @property
    def success(self) -> bool:
        return self.raw_solution.success

    @property
    def message(self) -> str:
        return self.raw_solution.message

    @property
    def objective(self) -> float:
        return self.raw_solution.objective

    @property
    def iterations(self) -> int:
        return self.raw_solution.iterations

    @property
    def evaluation_recoveries(self) -> int:
        return self.raw_solution.evaluation_recoveries

    @property
    def mesh(self) -> Mesh:
        return self.trajectory.mesh

    def raise_for_status(self) -> Solution:
        """Return self if the solve converged; raise otherwise."""
        if self.status is SolveStatus.FAILED:
            raise SolverDivergenceError(
                f"NLP solver failed: {self.message}", self.raw_solution.solver_status
            )
        if self.status is SolveStatus.USER_TERMINATED:
            raise SolverDivergenceError(
                f"Solve stopped before convergence: {self.raw_solution.termination_reason}",
                self.raw_solution.solver_status,
            )
        return self

    def __getitem__(self, key: str) -> FloatArray:
        return self.trajectory[key]

    def __contains__(self, key: str) -> bool:
        return key in self.trajectory

    def __repr__(self) -> str:
        return (
            f"Solution(status={self.status.value}, objective={self.objective:.6g}, "
            f"iterations={self.iterations}, mesh_points={self.mesh.num_points})"
        )
