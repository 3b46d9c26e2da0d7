"""
Sparsity patterns, column coloring and finite-difference derivatives.
"""

from .cache import EvaluationCache
from .coloring import ColumnColoring, color_columns
from .finite_difference import DerivativeEngine, DerivativeOptions
from .sparsity import SparsityPattern, compute_hessian_sparsity, compute_jacobian_sparsity


__all__ = [
    "ColumnColoring",
    "DerivativeEngine",
    "DerivativeOptions",
    "EvaluationCache",
    "SparsityPattern",
    "color_columns",
    "compute_hessian_sparsity",
    "compute_jacobian_sparsity",
]
