"""
Single-point evaluation cache keyed by the exact bytes of the variable vector.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

import numpy as np

from ..dc_types import FloatArray
from ..exceptions import DynamicsEvaluationError


__all__ = ["EvaluationCache"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EvaluationCache:
    """Results computed at one variable vector.

    The solver typically asks for the objective, constraints, gradient and
    Jacobian at the same point in sequence; all of them share one base
    evaluation. Any request at a different vector drops every stored entry.
    Evaluation failures are stored as well and re-raised on repeat requests.
    """

    def __init__(self) -> None:
        self._key: bytes | None = None
        self._entries: dict[Hashable, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, variables: FloatArray, name: Hashable, compute: Callable[[], T]) -> T:
        key = np.ascontiguousarray(variables, dtype=np.float64).tobytes()
        with self._lock:
            if key != self._key:
                self._key = key
                self._entries = {}
            if name in self._entries:
                self.hits += 1
                entry = self._entries[name]
                if isinstance(entry, DynamicsEvaluationError):
                    raise entry
                return entry
            self.misses += 1

        try:
            value = compute()
        except DynamicsEvaluationError as error:
            self._store(key, name, error)
            raise
        self._store(key, name, value)
        return value

    def _store(self, key: bytes, name: Hashable, value: Any) -> None:
        with self._lock:
            if key == self._key:
                self._entries[name] = value

    def clear(self) -> None:
        with self._lock:
            self._key = None
            self._entries = {}
