"""
Direct collocation transcription: layouts, schemes and the engine.
"""

from .engine import PointEvaluation, TranscriptionEngine
from .guess import TrajectoryGuess, build_initial_guess
from .layout import BlockKind, ConstraintBlock, FunctionLayout, RowGroup, VariableLayout
from .schemes import (
    CollocationScheme,
    HermiteSimpsonScheme,
    MidpointValues,
    TrapezoidalScheme,
    get_scheme,
)


__all__ = [
    "BlockKind",
    "CollocationScheme",
    "ConstraintBlock",
    "FunctionLayout",
    "HermiteSimpsonScheme",
    "MidpointValues",
    "PointEvaluation",
    "RowGroup",
    "TrajectoryGuess",
    "TranscriptionEngine",
    "TrapezoidalScheme",
    "VariableLayout",
    "build_initial_guess",
    "get_scheme",
]
