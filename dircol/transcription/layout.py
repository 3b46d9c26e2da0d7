# dircol/transcription/layout.py
"""
Index bookkeeping for the NLP variable vector and the function vector.

The function vector is the constraint vector followed by the objective terms
(one quadrature term per mesh interval plus one endpoint term). Every row of
the function vector depends on a small, known set of variables; those
dependency sets drive both sparsity patterns and derivative coloring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..dc_types import FloatArray, IntArray
from ..exceptions import DataIntegrityError
from ..mesh import Mesh
from ..problem import ProblemDefinition


logger = logging.getLogger(__name__)


class BlockKind(Enum):
    DEFECT = "defect"
    PATH = "path"
    INITIAL_STATE = "initial_state"
    FINAL_STATE = "final_state"
    PERIODIC = "periodic"
    ENDPOINT = "endpoint"
    OBJECTIVE_INTERVAL = "objective_interval"
    OBJECTIVE_ENDPOINT = "objective_endpoint"


@dataclass(frozen=True)
class ConstraintBlock:
    """Contiguous rows of the function vector with a shared meaning."""

    kind: BlockKind
    start: int
    stop: int
    index: int | None = None

    @property
    def name(self) -> str:
        return self.kind.value if self.index is None else f"{self.kind.value}[{self.index}]"

    @property
    def size(self) -> int:
        return self.stop - self.start

    @property
    def rows(self) -> IntArray:
        return np.arange(self.start, self.stop, dtype=np.int64)


@dataclass(frozen=True)
class RowGroup:
    """Rows that share one dependency set of variable columns."""

    rows: IntArray
    columns: IntArray


class VariableLayout:
    """Position of every variable in the flat NLP vector.

    Order: ``[t0, tf, p_0 .. p_{np-1}, (x, u) at mesh point 0, ..., (x, u) at point N]``.
    """

    INITIAL_TIME = 0
    FINAL_TIME = 1

    def __init__(self, problem: ProblemDefinition, mesh: Mesh) -> None:
        self.num_states = problem.num_states
        self.num_controls = problem.num_controls
        self.num_parameters = problem.num_parameters
        self.num_points = mesh.num_points
        self.num_global = 2 + self.num_parameters
        self.point_size = self.num_states + self.num_controls
        self.count = self.num_global + self.num_points * self.point_size

    @property
    def parameter_indices(self) -> IntArray:
        return np.arange(2, self.num_global, dtype=np.int64)

    @property
    def global_indices(self) -> IntArray:
        return np.arange(self.num_global, dtype=np.int64)

    def point_indices(self, point: int) -> IntArray:
        start = self.num_global + point * self.point_size
        return np.arange(start, start + self.point_size, dtype=np.int64)

    def state_indices(self, point: int) -> IntArray:
        start = self.num_global + point * self.point_size
        return np.arange(start, start + self.num_states, dtype=np.int64)

    def control_indices(self, point: int) -> IntArray:
        start = self.num_global + point * self.point_size + self.num_states
        return np.arange(start, start + self.num_controls, dtype=np.int64)

    def unpack(self, variables: FloatArray) -> tuple[float, float, FloatArray, FloatArray, FloatArray]:
        """Split the flat vector into (t0, tf, parameters, states, controls)."""
        if variables.shape != (self.count,):
            raise DataIntegrityError(
                f"Variable vector has shape {variables.shape}, expected ({self.count},)",
                "VariableLayout.unpack",
            )
        blocks = variables[self.num_global :].reshape(self.num_points, self.point_size)
        return (
            float(variables[self.INITIAL_TIME]),
            float(variables[self.FINAL_TIME]),
            variables[2 : self.num_global],
            blocks[:, : self.num_states],
            blocks[:, self.num_states :],
        )

    def pack(
        self,
        initial_time: float,
        final_time: float,
        parameters: FloatArray,
        states: FloatArray,
        controls: FloatArray,
    ) -> FloatArray:
        variables = np.empty(self.count, dtype=np.float64)
        variables[self.INITIAL_TIME] = initial_time
        variables[self.FINAL_TIME] = final_time
        variables[2 : self.num_global] = parameters
        blocks = variables[self.num_global :].reshape(self.num_points, self.point_size)
        blocks[:, : self.num_states] = states
        blocks[:, self.num_states :] = controls
        return variables


class FunctionLayout:
    """Row blocks of the constraint vector and the objective terms.

    Constraint order: defects (one block per interval), path constraints (one
    block per mesh point), initial-state rows, final-state rows, periodicity
    rows, endpoint-constraint rows. Objective terms follow: one row per
    interval, then the endpoint cost row.
    """

    def __init__(self, problem: ProblemDefinition, mesh: Mesh, variables: VariableLayout) -> None:
        self.problem = problem
        self.variables = variables
        num_states = problem.num_states
        num_intervals = mesh.num_intervals

        blocks: list[ConstraintBlock] = []
        row = 0

        def add(kind: BlockKind, size: int, index: int | None = None) -> None:
            nonlocal row
            if size > 0:
                blocks.append(ConstraintBlock(kind, row, row + size, index))
                row += size

        for interval in range(num_intervals):
            add(BlockKind.DEFECT, num_states, interval)
        for point in range(mesh.num_points):
            add(BlockKind.PATH, problem.num_path_constraints, point)
        add(BlockKind.INITIAL_STATE, len(problem.constrained_initial_states))
        add(BlockKind.FINAL_STATE, len(problem.constrained_final_states))
        add(BlockKind.PERIODIC, len(problem.periodic_states))
        add(BlockKind.ENDPOINT, problem.num_endpoint_constraints)
        self.num_constraints = row

        for interval in range(num_intervals):
            add(BlockKind.OBJECTIVE_INTERVAL, 1, interval)
        add(BlockKind.OBJECTIVE_ENDPOINT, 1)
        self.num_rows = row
        self.num_objective_terms = self.num_rows - self.num_constraints

        self.blocks = blocks
        logger.debug(
            "Function layout: %d constraint rows, %d objective terms, %d blocks",
            self.num_constraints,
            self.num_objective_terms,
            len(blocks),
        )

    @property
    def constraint_blocks(self) -> list[ConstraintBlock]:
        return [b for b in self.blocks if b.stop <= self.num_constraints]

    def blocks_of_kind(self, kind: BlockKind) -> list[ConstraintBlock]:
        return [b for b in self.blocks if b.kind is kind]

    def rows_of_kind(self, kind: BlockKind) -> IntArray:
        blocks = self.blocks_of_kind(kind)
        if not blocks:
            return np.empty(0, dtype=np.int64)
        return np.concatenate([b.rows for b in blocks])

    def row_groups(self) -> list[RowGroup]:
        """Dependency sets of every function row, grouped by shared columns."""
        var = self.variables
        problem = self.problem
        global_columns = var.global_indices
        last = var.num_points - 1
        endpoint_columns = np.concatenate(
            [global_columns, var.state_indices(0), var.state_indices(last)]
        )

        groups: list[RowGroup] = []
        for block in self.blocks:
            kind = block.kind
            if kind in (BlockKind.DEFECT, BlockKind.OBJECTIVE_INTERVAL):
                columns = np.concatenate(
                    [
                        global_columns,
                        var.point_indices(block.index),
                        var.point_indices(block.index + 1),
                    ]
                )
                groups.append(RowGroup(block.rows, columns))
            elif kind is BlockKind.PATH:
                columns = np.concatenate([global_columns, var.point_indices(block.index)])
                groups.append(RowGroup(block.rows, columns))
            elif kind is BlockKind.INITIAL_STATE:
                for row, state in zip(block.rows, problem.constrained_initial_states, strict=True):
                    groups.append(RowGroup(np.array([row]), var.state_indices(0)[[state]]))
            elif kind is BlockKind.FINAL_STATE:
                for row, state in zip(block.rows, problem.constrained_final_states, strict=True):
                    groups.append(RowGroup(np.array([row]), var.state_indices(last)[[state]]))
            elif kind is BlockKind.PERIODIC:
                for row, state in zip(block.rows, problem.periodic_states, strict=True):
                    columns = np.array(
                        [var.state_indices(0)[state], var.state_indices(last)[state]]
                    )
                    groups.append(RowGroup(np.array([row]), columns))
            else:
                groups.append(RowGroup(block.rows, endpoint_columns))
        return groups
