# dircol/utils/coordinates.py
"""
Coordinate transformation between normalized mesh time and physical time.
"""

from ..dc_types import FloatArray


def normalized_to_time(
    tau: float | FloatArray, initial_time: float, final_time: float
) -> float | FloatArray:
    """
    Convert normalized mesh coordinates to physical time.

    Math: tau in [0, 1] -> t = t0 + (tf - t0) * tau

    Args:
        tau: Normalized coordinate(s) in [0, 1]
        initial_time: Physical start time
        final_time: Physical end time

    Returns:
        Physical time(s) corresponding to the normalized coordinate(s)
    """
    return initial_time + (final_time - initial_time) * tau


def time_to_normalized(
    time: float | FloatArray, initial_time: float, final_time: float
) -> float | FloatArray:
    """Inverse of normalized_to_time."""
    return (time - initial_time) / (final_time - initial_time)
