from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..dc_types import FloatArray
from .adapter import SolveStatus


__all__ = ["RawSolution"]


@dataclass
class RawSolution:
    """NLP solution vector, multipliers and solver bookkeeping."""

    variables: FloatArray
    objective: float
    status: SolveStatus
    solver_status: int
    message: str
    iterations: int
    constraint_values: FloatArray
    constraint_multipliers: FloatArray
    lower_bound_multipliers: FloatArray
    upper_bound_multipliers: FloatArray
    elapsed: float = 0.0
    evaluation_recoveries: int = 0
    termination_reason: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is SolveStatus.CONVERGED
