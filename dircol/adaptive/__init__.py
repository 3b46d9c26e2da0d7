"""
Adaptive mesh refinement driven by simulation-based error estimates.
"""

from .data_structures import AdaptiveParameters, AdaptiveResult, RefinementOutcome
from .error_estimation import estimate_error


__all__ = ["AdaptiveParameters", "AdaptiveResult", "RefinementOutcome", "estimate_error"]
