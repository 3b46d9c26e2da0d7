"""
dircol: direct collocation trajectory optimization

Transcribes continuous-time optimal control problems into sparse nonlinear
programs on a mesh of time points, solves them with IPOPT using colored
finite-difference derivatives of a user-supplied dynamics oracle, and
refines the mesh where simulation-based error estimates are too large.

Quick Start:
    >>> import dircol
    >>> problem = dircol.ProblemDefinition(
    ...     num_states=1,
    ...     num_controls=1,
    ...     initial_state_bounds=[0.0],
    ...     final_state_bounds=[1.0],
    ... )
    >>> oracle = dircol.ComposedOracle(
    ...     dynamics=lambda t, x, u, p: u,
    ...     goals=[dircol.ControlEffortGoal()],
    ... )
    >>> solution = dircol.solve_fixed_mesh(problem, oracle, mesh=10)
    >>> solution.trajectory.to_dataframe()

Logging:
    import logging
    logging.getLogger('dircol').setLevel(logging.INFO)  # Major operations
    logging.getLogger('dircol').setLevel(logging.DEBUG)  # Detailed debugging
"""

from __future__ import annotations

import logging

from dircol.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    DircolBaseError,
    DynamicsEvaluationError,
    InvalidMeshError,
    MaxRefinementsExceeded,
    SolverDivergenceError,
)
from dircol.adaptive import AdaptiveParameters, AdaptiveResult, RefinementOutcome
from dircol.casadi_oracle import CasadiOracle
from dircol.derivatives import DerivativeOptions
from dircol.goals import (
    ControlEffortGoal,
    EndpointStateGoal,
    FinalTimeGoal,
    Goal,
    GoalKind,
    StateTrackingGoal,
)
from dircol.mesh import Mesh
from dircol.nlp import IterationStats, SolveContext, SolveStatus
from dircol.oracle import ComposedOracle, DynamicsOracle
from dircol.problem import Bounds, ProblemDefinition
from dircol.solution import Solution, Trajectory
from dircol.solver import solve_adaptive, solve_fixed_mesh
from dircol.transcription import TrajectoryGuess


__version__ = "0.1.0"
__description__ = "Direct collocation trajectory optimization"

__all__ = [
    "AdaptiveParameters",
    "AdaptiveResult",
    "Bounds",
    "CasadiOracle",
    "ComposedOracle",
    "ConfigurationError",
    "ControlEffortGoal",
    "DataIntegrityError",
    "DerivativeOptions",
    "DircolBaseError",
    "DynamicsEvaluationError",
    "DynamicsOracle",
    "EndpointStateGoal",
    "FinalTimeGoal",
    "Goal",
    "GoalKind",
    "InvalidMeshError",
    "IterationStats",
    "MaxRefinementsExceeded",
    "Mesh",
    "ProblemDefinition",
    "RefinementOutcome",
    "Solution",
    "SolveContext",
    "SolveStatus",
    "SolverDivergenceError",
    "StateTrackingGoal",
    "Trajectory",
    "TrajectoryGuess",
    "solve_adaptive",
    "solve_fixed_mesh",
]

# Silent by default, user controls output
logging.getLogger(__name__).addHandler(logging.NullHandler())
