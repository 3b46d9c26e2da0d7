"""
Utility functions and constants for dircol.
"""

from .coordinates import normalized_to_time, time_to_normalized


__all__ = [
    "normalized_to_time",
    "time_to_normalized",
]
