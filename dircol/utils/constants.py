from typing import TypeAlias

import numpy as np


_Tolerance: TypeAlias = float
_Factor: TypeAlias = float

MACHINE_EPSILON: _Tolerance = float(np.finfo(np.float64).eps)
"""Double precision machine epsilon."""

JACOBIAN_STEP_FACTOR: _Factor = float(np.sqrt(MACHINE_EPSILON))
"""Relative perturbation for first derivatives: h = factor * max(1, |x|)."""

HESSIAN_STEP_FACTOR: _Factor = float(MACHINE_EPSILON**0.25)
"""Relative perturbation for second differences: h = factor * max(1, |x|)."""

MESH_TOLERANCE: _Tolerance = 1e-12
"""Minimum spacing required between normalized mesh points."""

MINIMUM_TIME_INTERVAL: _Tolerance = 1e-9
"""Minimum allowed gap between initial and final time bounds."""

DEFAULT_SCHEME: str = "trapezoidal"
"""Default collocation scheme."""

SUPPORTED_SCHEMES: tuple[str, ...] = ("trapezoidal", "hermite-simpson")
"""Collocation schemes understood by the transcription engine."""

DEFAULT_DERIVATIVE_MODE: str = "forward"
"""Default finite-difference mode for first derivatives."""

SUPPORTED_DERIVATIVE_MODES: tuple[str, ...] = ("forward", "central")

DEFAULT_HESSIAN_MODE: str = "exact"
"""Hessian strategy: colored finite differences or solver quasi-Newton."""

SUPPORTED_HESSIAN_MODES: tuple[str, ...] = ("exact", "limited-memory")

# Adaptive mesh refinement defaults - SINGLE SOURCE OF TRUTH
DEFAULT_ERROR_TOLERANCE: _Tolerance = 1e-4
DEFAULT_MAX_REFINEMENTS: int = 5
DEFAULT_MAX_MESH_POINTS: int = 500

DEFAULT_ODE_RTOL: _Tolerance = 1e-7
"""Default relative tolerance for error-estimation ODE solves."""

DEFAULT_ODE_ATOL_FACTOR: _Factor = 1e-2
"""Factor for computing absolute tolerance from relative tolerance (atol = rtol * factor)."""

DEFAULT_ODE_METHOD: str = "RK45"
"""Default ODE integration method."""

DEFAULT_ERROR_SIM_POINTS: int = 10
"""Default number of comparison points per interval for error simulation."""

DEFAULT_NLP_OPTIONS: dict[str, object] = {
    "print_level": 0,
    "sb": "yes",
}
"""IPOPT options applied unless the caller overrides them."""
