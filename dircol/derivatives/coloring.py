"""
Greedy column coloring for compressed finite differencing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.sparse import coo_matrix

from ..dc_types import IntArray
from .sparsity import SparsityPattern


__all__ = ["ColumnColoring", "color_columns"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnColoring:
    """Partition of columns into structurally orthogonal groups.

    Attributes:
        colors: Color of each column
        num_colors: Number of groups
        columns: Column indices of each color, ascending
        row_columns: ``row_columns[c, r]`` is the only column of color ``c``
            with a nonzero in row ``r``, or -1 if there is none
    """

    colors: IntArray
    num_colors: int
    columns: tuple[IntArray, ...]
    row_columns: IntArray


def color_columns(pattern: SparsityPattern) -> ColumnColoring:
    """Assign colors so that no two columns of one color share a row.

    Columns are visited by decreasing conflict degree, ties by column index,
    and each takes the smallest color unused by its already-colored
    neighbours.
    """
    num_rows, num_cols = pattern.shape
    incidence = coo_matrix(
        (np.ones(pattern.nnz, dtype=np.int64), (pattern.rows, pattern.cols)),
        shape=pattern.shape,
    ).tocsc()
    conflicts = (incidence.T @ incidence).tocsr()
    degree = np.diff(conflicts.indptr)
    order = np.lexsort((np.arange(num_cols), -degree))

    colors = np.full(num_cols, -1, dtype=np.int64)
    for column in order:
        neighbours = conflicts.indices[conflicts.indptr[column] : conflicts.indptr[column + 1]]
        used = set(colors[neighbours][colors[neighbours] >= 0].tolist())
        color = 0
        while color in used:
            color += 1
        colors[column] = color

    num_colors = int(colors.max()) + 1 if num_cols else 0
    columns = tuple(np.flatnonzero(colors == c).astype(np.int64) for c in range(num_colors))
    row_columns = np.full((num_colors, num_rows), -1, dtype=np.int64)
    row_columns[colors[pattern.cols], pattern.rows] = pattern.cols
    row_columns.setflags(write=False)

    logger.debug("Colored %d columns with %d colors", num_cols, num_colors)
    return ColumnColoring(colors, num_colors, columns, row_columns)
