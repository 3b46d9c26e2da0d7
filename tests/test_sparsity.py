# test_sparsity.py
"""
Structural sparsity patterns and column coloring.
"""

import numpy as np
import pytest

from dircol import ComposedOracle, DataIntegrityError, Mesh, ProblemDefinition
from dircol.derivatives import color_columns, compute_hessian_sparsity, compute_jacobian_sparsity
from dircol.transcription import BlockKind, TranscriptionEngine


def make_engine(num_points=8, **overrides):
    options = dict(
        num_states=2,
        num_controls=1,
        num_parameters=1,
        initial_state_bounds=[0.0, 0.0],
        final_state_bounds=[1.0, None],
        path_constraint_bounds=[(None, 1.0)],
        endpoint_constraint_bounds=[0.0],
        periodic_states=[1],
    )
    options.update(overrides)
    problem = ProblemDefinition(**options)
    oracle = ComposedOracle(dynamics=lambda t, x, u, p: [x[1], u[0] * p[0]])
    return TranscriptionEngine(problem, Mesh.uniform(num_points), oracle)


def row_support(pattern, row):
    return set(pattern.cols[pattern.rows == row].tolist())


class TestJacobianSparsity:
    def test_identical_on_repeated_computation(self):
        engine = make_engine()
        first = compute_jacobian_sparsity(engine.layout)
        second = compute_jacobian_sparsity(engine.layout)
        assert first == second
        assert hash(first) == hash(second)
        assert first == compute_jacobian_sparsity(make_engine().layout), (
            "Pattern must depend only on the layout"
        )

    def test_row_major_order(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        keys = pattern.rows * pattern.shape[1] + pattern.cols
        assert np.all(np.diff(keys) > 0), "Entries must be sorted row-major without duplicates"

    def test_shape_covers_constraints_and_objective_terms(self):
        engine = make_engine()
        pattern = compute_jacobian_sparsity(engine.layout)
        assert pattern.shape == (
            engine.constraint_count() + engine.objective_term_count(),
            engine.variable_count(),
        )

    def test_row_dependencies(self):
        engine = make_engine(num_points=5)
        pattern = compute_jacobian_sparsity(engine.layout)
        var = engine.variables
        globals_ = set(var.global_indices.tolist())

        defect_row = engine.layout.blocks_of_kind(BlockKind.DEFECT)[2].start
        expected = globals_ | set(var.point_indices(2).tolist()) | set(var.point_indices(3).tolist())
        assert row_support(pattern, defect_row) == expected

        path_row = engine.layout.blocks_of_kind(BlockKind.PATH)[4].start
        assert row_support(pattern, path_row) == globals_ | set(var.point_indices(4).tolist())

        initial_rows = engine.layout.rows_of_kind(BlockKind.INITIAL_STATE)
        assert row_support(pattern, initial_rows[1]) == {var.state_indices(0)[1]}

        periodic_row = engine.layout.rows_of_kind(BlockKind.PERIODIC)[0]
        assert row_support(pattern, periodic_row) == {
            var.state_indices(0)[1],
            var.state_indices(4)[1],
        }

        endpoint_row = engine.layout.rows_of_kind(BlockKind.OBJECTIVE_ENDPOINT)[0]
        assert row_support(pattern, endpoint_row) == (
            globals_ | set(var.state_indices(0).tolist()) | set(var.state_indices(4).tolist())
        )

    def test_nonzeros_grow_linearly_with_mesh(self):
        small, medium, large = (
            compute_jacobian_sparsity(make_engine(num_points=n).layout) for n in (11, 21, 31)
        )
        assert large.nnz - medium.nnz == medium.nnz - small.nnz
        per_interval = (large.nnz - medium.nnz) / 10
        assert per_interval < 0.5 * large.shape[1], "Jacobian should stay sparse"

    def test_restrict_rows_is_prefix(self):
        engine = make_engine()
        pattern = compute_jacobian_sparsity(engine.layout)
        restricted = pattern.restrict_rows(engine.constraint_count())
        assert restricted.shape == (engine.constraint_count(), engine.variable_count())
        np.testing.assert_array_equal(restricted.rows, pattern.rows[: restricted.nnz])
        assert np.all(restricted.rows < engine.constraint_count())

    def test_patterns_are_read_only(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        with pytest.raises(ValueError):
            pattern.rows[0] = 5

    def test_to_coo_checks_length(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        matrix = pattern.to_coo(np.ones(pattern.nnz))
        assert matrix.shape == pattern.shape
        with pytest.raises(DataIntegrityError):
            pattern.to_coo(np.ones(pattern.nnz + 1))


class TestHessianSparsity:
    def test_lower_triangular_and_sorted(self):
        pattern = compute_hessian_sparsity(make_engine().layout)
        assert np.all(pattern.rows >= pattern.cols)
        keys = pattern.rows * pattern.shape[1] + pattern.cols
        assert np.all(np.diff(keys) > 0)

    def test_contains_diagonal_and_row_couplings(self):
        engine = make_engine(num_points=4)
        pattern = compute_hessian_sparsity(engine.layout)
        entries = set(zip(pattern.rows.tolist(), pattern.cols.tolist(), strict=True))
        for column in range(engine.variable_count()):
            assert (column, column) in entries, f"Missing diagonal entry {column}"
        var = engine.variables
        # controls of neighbouring points share a defect row
        assert (var.control_indices(1)[0], var.control_indices(0)[0]) in entries
        # controls two points apart never share a row
        assert (var.control_indices(2)[0], var.control_indices(0)[0]) not in entries

    def test_identical_on_repeated_computation(self):
        layout = make_engine().layout
        assert compute_hessian_sparsity(layout) == compute_hessian_sparsity(layout)


class TestColoring:
    def test_columns_of_one_color_never_share_a_row(self):
        pattern = compute_jacobian_sparsity(make_engine(num_points=12).layout)
        coloring = color_columns(pattern)
        for row in range(pattern.shape[0]):
            colors = coloring.colors[pattern.cols[pattern.rows == row]]
            assert len(set(colors.tolist())) == len(colors), f"Color conflict in row {row}"

    def test_every_column_colored(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        coloring = color_columns(pattern)
        assert np.all(coloring.colors >= 0)
        assert sum(len(c) for c in coloring.columns) == pattern.shape[1]

    def test_color_count_independent_of_mesh_size(self):
        engine = make_engine(num_points=30)
        coloring = color_columns(compute_jacobian_sparsity(engine.layout))
        num_global = engine.variables.num_global
        point_size = engine.variables.point_size
        assert coloring.num_colors <= num_global + 3 * point_size, (
            f"{coloring.num_colors} colors for {engine.variable_count()} columns"
        )

    def test_row_columns_lookup(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        coloring = color_columns(pattern)
        for row, col in zip(pattern.rows[:50], pattern.cols[:50], strict=True):
            assert coloring.row_columns[coloring.colors[col], row] == col

    def test_deterministic(self):
        pattern = compute_jacobian_sparsity(make_engine().layout)
        np.testing.assert_array_equal(color_columns(pattern).colors, color_columns(pattern).colors)
