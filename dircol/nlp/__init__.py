"""
NLP solver adapter. The IPOPT driver lives in ``dircol.nlp.ipopt_solver`` and
is imported on demand so that the rest of the package works without cyipopt.
"""

from .adapter import AdapterState, IterationStats, NLPAdapter, SolveContext, SolveStatus
from .result import RawSolution


__all__ = [
    "AdapterState",
    "IterationStats",
    "NLPAdapter",
    "RawSolution",
    "SolveContext",
    "SolveStatus",
]
