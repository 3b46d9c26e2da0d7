import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..dc_types import FloatArray, ODESolverCallable
from ..exceptions import MaxRefinementsExceeded
from ..input_validation import (
    validate_non_negative_integer,
    validate_positive_integer,
    validate_positive_number,
)
from ..mesh import Mesh
from ..utils.constants import (
    DEFAULT_ERROR_SIM_POINTS,
    DEFAULT_ERROR_TOLERANCE,
    DEFAULT_MAX_MESH_POINTS,
    DEFAULT_MAX_REFINEMENTS,
    DEFAULT_ODE_ATOL_FACTOR,
    DEFAULT_ODE_METHOD,
    DEFAULT_ODE_RTOL,
)


__all__ = ["AdaptiveParameters", "AdaptiveResult", "RefinementOutcome"]

logger = logging.getLogger(__name__)


@dataclass
class AdaptiveParameters:
    """Parameters controlling the adaptive mesh refinement loop."""

    error_tolerance: float = DEFAULT_ERROR_TOLERANCE
    max_refinements: int = DEFAULT_MAX_REFINEMENTS
    max_mesh_points: int = DEFAULT_MAX_MESH_POINTS
    ode_method: str = DEFAULT_ODE_METHOD
    ode_rtol: float = DEFAULT_ODE_RTOL
    ode_atol_factor: float = DEFAULT_ODE_ATOL_FACTOR
    num_error_sim_points: int = DEFAULT_ERROR_SIM_POINTS
    warm_start: bool = True
    ode_solver: ODESolverCallable | None = None

    def __post_init__(self) -> None:
        validate_positive_number(self.error_tolerance, "error_tolerance")
        validate_non_negative_integer(self.max_refinements, "max_refinements")
        validate_positive_integer(self.max_mesh_points, "max_mesh_points", min_value=2)
        validate_positive_number(self.ode_rtol, "ode_rtol")
        validate_positive_number(self.ode_atol_factor, "ode_atol_factor")
        validate_positive_integer(self.num_error_sim_points, "num_error_sim_points", min_value=2)

    def get_ode_solver(self) -> ODESolverCallable:
        """The configured ODE solver, defaulting to ``scipy.integrate.solve_ivp``."""
        if self.ode_solver is not None:
            return self.ode_solver

        from scipy.integrate import solve_ivp

        def configured_solver(fun, t_span, y0, t_eval=None, **kwargs):
            kwargs["method"] = self.ode_method
            kwargs["rtol"] = self.ode_rtol
            kwargs["atol"] = self.ode_rtol * self.ode_atol_factor
            return solve_ivp(fun, t_span, y0, t_eval=t_eval, **kwargs)

        return configured_solver


class RefinementOutcome(Enum):
    ACCEPTED = "accepted"
    MAX_REFINEMENTS_EXCEEDED = "max_refinements_exceeded"
    SOLVER_FAILED = "solver_failed"


@dataclass
class AdaptiveResult:
    """Record of an adaptive solve: outcome, meshes and error estimates."""

    outcome: RefinementOutcome
    error_tolerance: float
    meshes: list[Mesh] = field(default_factory=list)
    error_history: list[FloatArray] = field(default_factory=list)
    warning: MaxRefinementsExceeded | None = None

    @property
    def converged(self) -> bool:
        return self.outcome is RefinementOutcome.ACCEPTED

    @property
    def refinements(self) -> int:
        """Number of mesh refinements performed (solves minus one)."""
        return max(len(self.meshes) - 1, 0)

    @property
    def final_errors(self) -> FloatArray:
        if not self.error_history:
            return np.array([], dtype=np.float64)
        return self.error_history[-1]

    @property
    def max_error(self) -> float:
        errors = self.final_errors
        return float(np.max(errors)) if errors.size else float("nan")
