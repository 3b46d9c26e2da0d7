import logging
import math
from typing import Any

import numpy as np

from .dc_types import BoundsInput, FloatArray
from .exceptions import ConfigurationError, DataIntegrityError, InvalidMeshError
from .utils.constants import MESH_TOLERANCE


logger = logging.getLogger(__name__)


# ============================================================================
# CORE VALIDATION PRIMITIVES
# ============================================================================


def validate_non_negative_integer(value: Any, name: str) -> None:
    """Single source for count validation (n_x, n_u, n_p, ...)."""
    if isinstance(value, bool) or not isinstance(value, int | np.integer):
        raise ConfigurationError(f"{name} must be integer, got {type(value)}")
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0, got {value}")


def validate_positive_integer(value: Any, name: str, min_value: int = 1) -> None:
    """Single source for positive integer validation."""
    if isinstance(value, bool) or not isinstance(value, int | np.integer):
        raise ConfigurationError(f"{name} must be integer, got {type(value)}")
    if value < min_value:
        raise ConfigurationError(f"{name} must be >= {min_value}, got {value}")


def validate_positive_number(value: Any, name: str) -> None:
    """Single source for positive number validation."""
    if isinstance(value, bool) or not isinstance(value, int | float | np.floating):
        raise ConfigurationError(f"{name} must be numeric, got {type(value)}")
    if math.isnan(value) or math.isinf(value):
        raise ConfigurationError(f"{name} cannot be NaN or infinite, got {value}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")


def validate_choice(value: Any, name: str, choices: tuple[str, ...]) -> None:
    """Validate that a string option is one of the supported choices."""
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {list(choices)}, got {value!r}")


# ============================================================================
# BOUNDS VALIDATION
# ============================================================================


def validate_bounds_input(bounds_input: Any, context: str) -> tuple[float, float]:
    """Normalize a bound specification to a (lower, upper) float pair.

    None and None sides become infinite. NaN is rejected everywhere; infinite
    values are only accepted on the matching side.
    """
    if bounds_input is None:
        return -np.inf, np.inf

    if isinstance(bounds_input, bool):
        raise ConfigurationError(f"Invalid bound type: {type(bounds_input)}", context)

    if isinstance(bounds_input, int | float | np.integer | np.floating):
        value = float(bounds_input)
        if math.isnan(value) or math.isinf(value):
            raise ConfigurationError(f"Equality bound cannot be NaN/infinite: {value}", context)
        return value, value

    if isinstance(bounds_input, tuple | list):
        if len(bounds_input) != 2:
            raise ConfigurationError(
                f"Bound tuple must have 2 elements, got {len(bounds_input)}", context
            )
        lower_in, upper_in = bounds_input
        lower = -np.inf if lower_in is None else _as_bound_float(lower_in, "lower", context)
        upper = np.inf if upper_in is None else _as_bound_float(upper_in, "upper", context)
        if lower == np.inf or upper == -np.inf:
            raise ConfigurationError(f"Bounds ({lower}, {upper}) exclude every value", context)
        if lower > upper:
            raise ConfigurationError(f"Lower bound ({lower}) > upper bound ({upper})", context)
        return lower, upper

    raise ConfigurationError(f"Invalid bound type: {type(bounds_input)}", context)


def _as_bound_float(value: Any, side: str, context: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float | np.integer | np.floating):
        raise ConfigurationError(f"{side} bound must be numeric/None, got {type(value)}", context)
    result = float(value)
    if math.isnan(result):
        raise ConfigurationError(f"{side} bound cannot be NaN", context)
    return result


def validate_bounds_list(
    bounds: list[BoundsInput] | None, expected_length: int, name: str
) -> list[tuple[float, float]]:
    """Normalize a per-variable list of bounds, defaulting to unbounded."""
    if bounds is None:
        return [(-np.inf, np.inf)] * expected_length
    if len(bounds) != expected_length:
        raise ConfigurationError(
            f"{name} must have {expected_length} entries, got {len(bounds)}"
        )
    return [validate_bounds_input(b, f"{name}[{i}]") for i, b in enumerate(bounds)]


def validate_time_bounds(
    initial: tuple[float, float], final: tuple[float, float], minimum_interval: float
) -> None:
    """Ensure the horizon can have positive length."""
    if not np.isfinite(initial[0]) or not np.isfinite(final[1]):
        raise ConfigurationError(
            "Initial time lower bound and final time upper bound must be finite",
            f"initial={initial}, final={final}",
        )
    if final[1] - initial[0] < minimum_interval:
        raise ConfigurationError(
            f"Final time upper bound ({final[1]}) must exceed initial time lower "
            f"bound ({initial[0]}) by at least {minimum_interval}"
        )


# ============================================================================
# MESH VALIDATION
# ============================================================================


def validate_mesh_points(mesh_points: FloatArray) -> None:
    """Validate normalized mesh points: finite, >= 2, strictly increasing, 0 to 1."""
    if mesh_points.ndim != 1:
        raise InvalidMeshError(f"Mesh points must be 1D, got shape {mesh_points.shape}")
    if len(mesh_points) < 2:
        raise InvalidMeshError(f"Mesh needs at least 2 points, got {len(mesh_points)}")
    if not np.all(np.isfinite(mesh_points)):
        raise InvalidMeshError("Mesh points contain NaN or Inf values")
    if mesh_points[0] != 0.0 or mesh_points[-1] != 1.0:
        raise InvalidMeshError(
            f"Mesh must start at 0 and end at 1, got [{mesh_points[0]}, {mesh_points[-1]}]"
        )
    spacing = np.diff(mesh_points)
    if np.any(spacing <= MESH_TOLERANCE):
        bad_index = int(np.argmax(spacing <= MESH_TOLERANCE))
        raise InvalidMeshError(
            "Mesh points must be strictly increasing",
            f"points {bad_index} and {bad_index + 1}: "
            f"{mesh_points[bad_index]} -> {mesh_points[bad_index + 1]}",
        )


def validate_oracle_vector(value: Any, expected_length: int, name: str) -> FloatArray:
    """Convert oracle output to a flat float array of the expected length."""
    array = np.atleast_1d(np.asarray(value, dtype=np.float64)).ravel()
    if array.shape != (expected_length,):
        raise DataIntegrityError(
            f"{name} returned {array.size} values, expected {expected_length}",
            "Dynamics oracle output",
        )
    return array
