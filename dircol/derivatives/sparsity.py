"""
Structural sparsity of the function-vector Jacobian and the Lagrangian Hessian.

Patterns are derived from the row dependency sets of the layout alone, never
from numerical values, so repeated calls on the same layout give identical
arrays.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.sparse import coo_matrix

from ..dc_types import FloatArray, IntArray
from ..exceptions import DataIntegrityError
from ..transcription.layout import FunctionLayout


__all__ = ["SparsityPattern", "compute_hessian_sparsity", "compute_jacobian_sparsity"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SparsityPattern:
    """Row/column coordinates of structural nonzeros, sorted row-major."""

    rows: IntArray
    cols: IntArray
    shape: tuple[int, int]

    def __post_init__(self) -> None:
        if self.rows.shape != self.cols.shape:
            raise DataIntegrityError("Sparsity rows and cols differ in length")
        self.rows.setflags(write=False)
        self.cols.setflags(write=False)

    @property
    def nnz(self) -> int:
        return len(self.rows)

    def restrict_rows(self, stop: int) -> SparsityPattern:
        """Entries in rows ``[0, stop)``; a prefix because entries are row-major."""
        count = int(np.searchsorted(self.rows, stop))
        return SparsityPattern(
            self.rows[:count].copy(), self.cols[:count].copy(), (stop, self.shape[1])
        )

    def to_coo(self, values: FloatArray) -> coo_matrix:
        if len(values) != self.nnz:
            raise DataIntegrityError(
                f"{len(values)} values for a pattern with {self.nnz} entries"
            )
        return coo_matrix((values, (self.rows, self.cols)), shape=self.shape)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparsityPattern):
            return NotImplemented
        return (
            self.shape == other.shape
            and np.array_equal(self.rows, other.rows)
            and np.array_equal(self.cols, other.cols)
        )

    def __hash__(self) -> int:
        return hash((self.shape, self.rows.tobytes(), self.cols.tobytes()))


def compute_jacobian_sparsity(layout: FunctionLayout) -> SparsityPattern:
    """Nonzeros of d(function vector)/d(variables).

    Defect and objective-interval rows depend on the global variables and the
    two mesh points of their interval; path rows on the globals and their own
    point; boundary rows on the first and last point only.
    """
    row_parts = []
    col_parts = []
    for group in layout.row_groups():
        columns = np.unique(group.columns)
        row_parts.append(np.repeat(group.rows, len(columns)))
        col_parts.append(np.tile(columns, len(group.rows)))

    rows = np.concatenate(row_parts).astype(np.int64)
    cols = np.concatenate(col_parts).astype(np.int64)
    order = np.lexsort((cols, rows))
    pattern = SparsityPattern(
        rows[order], cols[order], (layout.num_rows, layout.variables.count)
    )
    logger.debug(
        "Jacobian sparsity: %d nonzeros in %d x %d", pattern.nnz, *pattern.shape
    )
    return pattern


def compute_hessian_sparsity(layout: FunctionLayout) -> SparsityPattern:
    """Lower triangle of the union of dense blocks over every row's support."""
    num_variables = layout.variables.count
    seen: set[bytes] = set()
    key_parts = []
    for group in layout.row_groups():
        columns = np.unique(group.columns)
        signature = columns.tobytes()
        if signature in seen:
            continue
        seen.add(signature)
        lower, upper = np.tril_indices(len(columns))
        key_parts.append(columns[lower] * num_variables + columns[upper])

    keys = np.unique(np.concatenate(key_parts)).astype(np.int64)
    pattern = SparsityPattern(
        keys // num_variables, keys % num_variables, (num_variables, num_variables)
    )
    logger.debug("Hessian sparsity: %d lower-triangular nonzeros", pattern.nnz)
    return pattern
