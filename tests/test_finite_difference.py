# test_finite_difference.py
"""
Colored finite-difference derivatives against analytic values.
"""

import numpy as np
import pytest

from dircol import (
    ComposedOracle,
    ConfigurationError,
    ControlEffortGoal,
    DerivativeOptions,
    DynamicsEvaluationError,
    Mesh,
    ProblemDefinition,
)
from dircol.derivatives import DerivativeEngine
from dircol.transcription import TranscriptionEngine


A = np.array([[0.0, 1.0], [-2.0, -0.5]])
B = np.array([0.0, 1.0])
MESH = Mesh.build([0.0, 0.2, 0.45, 0.7, 1.0])
T0, TF = 0.0, 2.0


class CountingOracle(ComposedOracle):
    def __init__(self, dynamics, goals=()):
        super().__init__(dynamics, goals)
        self.calls = 0

    def dynamics(self, time, state, control, parameters):
        self.calls += 1
        return super().dynamics(time, state, control, parameters)


def affine_engine():
    problem = ProblemDefinition(
        num_states=2,
        num_controls=1,
        initial_state_bounds=[1.0, 0.0],
        initial_time_bounds=T0,
        final_time_bounds=TF,
    )
    oracle = CountingOracle(
        dynamics=lambda t, x, u, p: A @ x + B * u[0], goals=[ControlEffortGoal()]
    )
    return TranscriptionEngine(problem, MESH, oracle)


def sample_point(engine, seed=0):
    rng = np.random.default_rng(seed)
    states = rng.normal(size=(MESH.num_points, engine.problem.num_states))
    controls = rng.normal(size=(MESH.num_points, engine.problem.num_controls))
    return engine.variables.pack(T0, TF, np.empty(0), states, controls)


def analytic_constraint_jacobian(engine, x):
    """Trapezoidal defects of dx/dt = A x + B u plus the initial-state rows."""
    var = engine.variables
    _, _, _, states, _ = var.unpack(x)
    duration = TF - T0
    steps = duration * MESH.interval_lengths
    jac = np.zeros((engine.constraint_count(), engine.variable_count()))
    identity = np.eye(2)
    for k, h in enumerate(steps):
        rows = slice(2 * k, 2 * k + 2)
        jac[rows, var.state_indices(k)] = -identity / h - 0.5 * A
        jac[rows, var.state_indices(k + 1)] = identity / h - 0.5 * A
        jac[rows, var.control_indices(k)[0]] = -0.5 * B
        jac[rows, var.control_indices(k + 1)[0]] = -0.5 * B
        slope = (states[k + 1] - states[k]) / h
        jac[rows, 1] = -slope / duration
        jac[rows, 0] = slope / duration
    offset = 2 * MESH.num_intervals
    jac[offset, var.state_indices(0)[0]] = 1.0
    jac[offset + 1, var.state_indices(0)[1]] = 1.0
    return jac


def analytic_gradient(engine, x):
    """Gradient of sum_k h_k (u_k**2 + u_{k+1}**2) / 2."""
    var = engine.variables
    _, _, _, _, controls = var.unpack(x)
    u = controls[:, 0]
    duration = TF - T0
    grad = np.zeros(engine.variable_count())
    for k, dtau in enumerate(MESH.interval_lengths):
        h = duration * dtau
        grad[var.control_indices(k)[0]] += h * u[k]
        grad[var.control_indices(k + 1)[0]] += h * u[k + 1]
        grad[1] += 0.5 * dtau * (u[k] ** 2 + u[k + 1] ** 2)
        grad[0] -= 0.5 * dtau * (u[k] ** 2 + u[k + 1] ** 2)
    return grad


class TestDerivativeOptions:
    @pytest.mark.parametrize(
        "options",
        [dict(mode="backward"), dict(num_workers=0), dict(hessian="bfgs")],
    )
    def test_invalid_options_rejected(self, options):
        with pytest.raises(ConfigurationError):
            DerivativeOptions(**options)


class TestJacobian:
    @pytest.mark.parametrize("mode", ["forward", "central"])
    def test_matches_analytic_jacobian(self, mode):
        engine = affine_engine()
        x = sample_point(engine)
        with DerivativeEngine(engine, DerivativeOptions(mode=mode)) as derivatives:
            values = derivatives.constraint_jacobian(x)
            numeric = derivatives.jacobian_sparsity.to_coo(values).toarray()
        np.testing.assert_allclose(numeric, analytic_constraint_jacobian(engine, x), atol=1e-5)

    @pytest.mark.parametrize("mode", ["forward", "central"])
    def test_matches_analytic_gradient(self, mode):
        engine = affine_engine()
        x = sample_point(engine, seed=4)
        derivatives = DerivativeEngine(engine, DerivativeOptions(mode=mode))
        np.testing.assert_allclose(
            derivatives.objective_gradient(x), analytic_gradient(engine, x), atol=1e-5
        )

    def test_uses_one_evaluation_per_color(self):
        engine = affine_engine()
        derivatives = DerivativeEngine(engine)
        x = sample_point(engine)
        derivatives.evaluate_jacobian(x)
        points = MESH.num_points
        expected = points * (1 + derivatives.coloring.num_colors)
        assert engine.oracle.calls <= expected, (
            f"{engine.oracle.calls} dynamics calls, at most {expected} expected"
        )
        assert derivatives.coloring.num_colors < engine.variable_count()

    def test_parallel_matches_serial(self):
        engine = affine_engine()
        x = sample_point(engine, seed=7)
        serial = DerivativeEngine(engine).evaluate_jacobian(x)
        with DerivativeEngine(engine, DerivativeOptions(num_workers=3)) as parallel:
            np.testing.assert_array_equal(parallel.evaluate_jacobian(x), serial)

    def test_backward_retry_when_forward_step_fails(self):
        def dynamics(t, x, u, p):
            if u[0] > 1.0:
                return np.array([np.nan])
            return u

        problem = ProblemDefinition(num_states=1, num_controls=1)
        engine = TranscriptionEngine(problem, Mesh.uniform(4), ComposedOracle(dynamics))
        x = engine.variables.pack(0.0, 1.0, np.empty(0), np.zeros((4, 1)), np.ones((4, 1)))
        derivatives = DerivativeEngine(engine)
        values = derivatives.constraint_jacobian(x)
        assert np.all(np.isfinite(values))
        jac = derivatives.jacobian_sparsity.to_coo(values).toarray()
        var = engine.variables
        for k in range(3):
            assert jac[k, var.control_indices(k)[0]] == pytest.approx(-0.5, abs=1e-6)
            assert jac[k, var.control_indices(k + 1)[0]] == pytest.approx(-0.5, abs=1e-6)

    def test_raises_when_both_directions_fail(self):
        def dynamics(t, x, u, p):
            if u[0] != 1.0:
                return np.array([np.nan])
            return u

        problem = ProblemDefinition(num_states=1, num_controls=1)
        engine = TranscriptionEngine(problem, Mesh.uniform(3), ComposedOracle(dynamics))
        x = engine.variables.pack(0.0, 1.0, np.empty(0), np.zeros((3, 1)), np.ones((3, 1)))
        with pytest.raises(DynamicsEvaluationError):
            DerivativeEngine(engine).evaluate_jacobian(x)


class TestHessian:
    def test_objective_hessian(self):
        engine = affine_engine()
        x = sample_point(engine, seed=2)
        derivatives = DerivativeEngine(engine)
        multipliers = np.zeros(engine.constraint_count())
        hessian = derivatives.hessian_matrix(x, multipliers, 1.0).toarray()

        var = engine.variables
        duration = TF - T0
        lengths = MESH.interval_lengths
        _, _, _, _, controls = var.unpack(x)
        for k in range(MESH.num_points):
            column = var.control_indices(k)[0]
            adjacent = lengths[max(k - 1, 0) : k + 1].sum() if 0 < k < MESH.num_intervals else (
                lengths[0] if k == 0 else lengths[-1]
            )
            assert hessian[column, column] == pytest.approx(duration * adjacent, rel=1e-3), (
                f"d2J/du{k}^2 wrong"
            )
            assert hessian[column, 1] == pytest.approx(adjacent * controls[k, 0], abs=1e-3)
        assert np.allclose(np.triu(hessian, 1), 0.0), "Only the lower triangle is returned"

    def test_constraint_hessian_with_multipliers(self):
        """dx/dt = u**2: each defect contributes -1 to d2/du_k^2 per unit multiplier."""
        problem = ProblemDefinition(num_states=1, num_controls=1)
        engine = TranscriptionEngine(
            problem, Mesh.uniform(5), ComposedOracle(dynamics=lambda t, x, u, p: u**2)
        )
        x = engine.variables.pack(
            0.0, 1.0, np.empty(0), np.linspace(0.0, 1.0, 5)[:, None], np.full((5, 1), 0.3)
        )
        derivatives = DerivativeEngine(engine)
        multipliers = np.ones(engine.constraint_count())
        hessian = derivatives.hessian_matrix(x, multipliers, 0.0).toarray()
        var = engine.variables
        expected = [-1.0, -2.0, -2.0, -2.0, -1.0]
        for k, value in enumerate(expected):
            column = var.control_indices(k)[0]
            assert hessian[column, column] == pytest.approx(value, abs=1e-4)
        assert hessian[var.control_indices(1)[0], var.control_indices(0)[0]] == pytest.approx(
            0.0, abs=1e-4
        )

    def test_hessian_is_cached_per_multipliers(self):
        engine = affine_engine()
        x = sample_point(engine)
        derivatives = DerivativeEngine(engine)
        multipliers = np.zeros(engine.constraint_count())
        first = derivatives.evaluate_hessian(x, multipliers, 1.0)
        calls = engine.oracle.calls
        second = derivatives.evaluate_hessian(x, multipliers, 1.0)
        assert engine.oracle.calls == calls
        np.testing.assert_array_equal(first, second)
        derivatives.evaluate_hessian(x, multipliers, 2.0)
        assert engine.oracle.calls > calls, "Different objective scale must recompute"


class TestEvaluationCache:
    def test_shared_base_evaluation(self):
        engine = affine_engine()
        derivatives = DerivativeEngine(engine)
        x = sample_point(engine)
        derivatives.constraints(x)
        calls = engine.oracle.calls
        derivatives.objective(x)
        derivatives.function_values(x)
        assert engine.oracle.calls == calls, "Same point must not be re-evaluated"
        assert derivatives.cache.hits >= 2

    def test_new_point_invalidates(self):
        engine = affine_engine()
        derivatives = DerivativeEngine(engine)
        x = sample_point(engine)
        derivatives.constraints(x)
        calls = engine.oracle.calls
        derivatives.constraints(x + 0.1)
        assert engine.oracle.calls == calls + MESH.num_points

    def test_failures_are_cached(self):
        calls = []

        def dynamics(t, x, u, p):
            calls.append(t)
            return np.array([np.inf])

        problem = ProblemDefinition(num_states=1, num_controls=1)
        engine = TranscriptionEngine(problem, Mesh.uniform(3), ComposedOracle(dynamics))
        derivatives = DerivativeEngine(engine)
        x = engine.initial_guess()
        with pytest.raises(DynamicsEvaluationError):
            derivatives.constraints(x)
        count = len(calls)
        with pytest.raises(DynamicsEvaluationError):
            derivatives.objective(x)
        assert len(calls) == count
