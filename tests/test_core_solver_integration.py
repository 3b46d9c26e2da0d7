# test_core_solver_integration.py
"""
Integration tests for complete solves against known analytical solutions.
"""

import casadi as ca
import numpy as np
import pytest

from dircol import (
    CasadiOracle,
    ConfigurationError,
    ComposedOracle,
    ControlEffortGoal,
    DerivativeOptions,
    DynamicsEvaluationError,
    FinalTimeGoal,
    Goal,
    GoalKind,
    MaxRefinementsExceeded,
    Mesh,
    ProblemDefinition,
    RefinementOutcome,
    SolverDivergenceError,
    SolveStatus,
    TrajectoryGuess,
    solve_adaptive,
    solve_fixed_mesh,
)


cyipopt = pytest.importorskip("cyipopt")


def unit_transfer_problem(final_state=1.0, **overrides):
    options = dict(
        num_states=1,
        num_controls=1,
        state_names=["x"],
        control_names=["u"],
        initial_state_bounds=[0.0],
        final_state_bounds=[final_state],
    )
    options.update(overrides)
    return ProblemDefinition(**options)


def effort_oracle(dynamics=lambda t, x, u, p: u):
    return ComposedOracle(dynamics=dynamics, goals=[ControlEffortGoal()])


class PseudoHuberGoal(Goal):
    """Running cost sqrt(1 + (x0 - center)**2)."""

    kind = GoalKind.TRACKING
    has_integrand = True

    def __init__(self, center, weight=1.0):
        super().__init__(weight)
        self.center = center

    def integrand(self, time, state, control, parameters):
        return float(np.sqrt(1.0 + (state[0] - self.center) ** 2))


class TestCoreSolverIntegration:
    """Integration tests for core solver against known analytical solutions."""

    @pytest.mark.parametrize("scheme", ["trapezoidal", "hermite-simpson"])
    def test_simple_integrator_problem(self, scheme):
        """dx/dt = u, minimize integral of u**2, x(0) = 0, x(1) = 1: u = 1, J = 1."""
        solution = solve_fixed_mesh(unit_transfer_problem(), effort_oracle(), mesh=10, scheme=scheme)

        assert solution.success, f"Solver failed: {solution.message}"
        assert solution.status is SolveStatus.CONVERGED
        np.testing.assert_allclose(solution["u"], 1.0, atol=1e-6)
        np.testing.assert_allclose(solution["x"], solution["time"], atol=1e-6)
        assert abs(solution.objective - 1.0) < 1e-6, f"Objective wrong: {solution.objective}"
        assert solution.evaluation_recoveries == 0

    def test_casadi_oracle_problem(self):
        t = ca.SX.sym("t")
        x = ca.SX.sym("x", 1)
        u = ca.SX.sym("u", 1)
        oracle = CasadiOracle(t, x, u, dynamics=u, integrand=u**2)
        solution = solve_fixed_mesh(unit_transfer_problem(), oracle, mesh=Mesh.uniform(8))
        assert solution.success, f"Solver failed: {solution.message}"
        assert abs(solution.objective - 1.0) < 1e-6

    def test_free_final_time(self):
        """Minimum time with |u| <= 1 to reach x = 1: tf = 1."""
        problem = unit_transfer_problem(
            control_bounds=[(-1.0, 1.0)], final_time_bounds=(0.1, 10.0)
        )
        oracle = ComposedOracle(dynamics=lambda t, x, u, p: u, goals=[FinalTimeGoal()])
        solution = solve_fixed_mesh(problem, oracle, mesh=6)
        assert solution.success, f"Solver failed: {solution.message}"
        assert abs(solution.trajectory.final_time - 1.0) < 1e-5
        assert abs(solution.objective - 1.0) < 1e-5

    def test_static_parameter_without_controls(self):
        """dx/dt = p with x(1) = 2 forces p = 2; minimize p**2."""
        t = ca.SX.sym("t")
        x = ca.SX.sym("x", 1)
        u = ca.SX.sym("u", 0)
        p = ca.SX.sym("p", 1)
        oracle = CasadiOracle(
            t, x, u, p, dynamics=p[0], endpoint_cost=lambda t0, x0, tf, xf, p: p[0] ** 2
        )
        problem = ProblemDefinition(
            num_states=1,
            num_parameters=1,
            parameter_bounds=[(0.0, 10.0)],
            initial_state_bounds=[0.0],
            final_state_bounds=[2.0],
        )
        solution = solve_fixed_mesh(problem, oracle, mesh=5)
        assert solution.success, f"Solver failed: {solution.message}"
        assert solution.trajectory.parameter("p0") == pytest.approx(2.0, abs=1e-6)
        assert solution.objective == pytest.approx(4.0, abs=1e-5)

    def test_periodic_state(self):
        """Periodicity forces mean control zero: J = integral of (u - 1)**2 + x**2 >= 1."""
        t = ca.SX.sym("t")
        x = ca.SX.sym("x", 1)
        u = ca.SX.sym("u", 1)
        oracle = CasadiOracle(t, x, u, dynamics=u, integrand=(u - 1) ** 2 + x**2)
        problem = ProblemDefinition(num_states=1, num_controls=1, periodic_states=[0])
        solution = solve_fixed_mesh(problem, oracle, mesh=8)
        assert solution.success, f"Solver failed: {solution.message}"
        assert solution.objective == pytest.approx(1.0, abs=1e-6)
        states = solution.trajectory.states[:, 0]
        assert abs(states[-1] - states[0]) < 1e-8

    def test_limited_memory_hessian(self):
        solution = solve_fixed_mesh(
            unit_transfer_problem(),
            effort_oracle(),
            mesh=10,
            derivative_options=DerivativeOptions(hessian="limited-memory", mode="central"),
        )
        assert solution.success, f"Solver failed: {solution.message}"
        assert solution.raw_solution.options["hessian_approximation"] == "limited-memory"
        assert abs(solution.objective - 1.0) < 1e-6

    def test_parallel_derivatives(self):
        solution = solve_fixed_mesh(
            unit_transfer_problem(),
            effort_oracle(),
            mesh=10,
            derivative_options=DerivativeOptions(num_workers=4),
        )
        assert solution.success, f"Solver failed: {solution.message}"
        assert abs(solution.objective - 1.0) < 1e-6


class TestEvaluationFailures:
    def test_partial_domain_oracle_converges(self):
        """Dynamics undefined for |x| > 1.

        The state is constant and the running cost sqrt(1 + (x - 0.5)**2) has
        a Newton step z -> -z**3 in z = x - 0.5. From x = -0.9 the full step
        lands near x = 3.2, so the solver must reject trial points and
        backtrack before reaching x = 0.5.
        """

        def dynamics(t, x, u, p):
            if abs(x[0]) > 1.0:
                return np.array([np.nan])
            return np.zeros(1)

        problem = ProblemDefinition(num_states=1, state_names=["x"])
        oracle = ComposedOracle(dynamics=dynamics, goals=[PseudoHuberGoal(center=0.5)])
        guess = TrajectoryGuess(time=[0.0, 1.0], states=[-0.9, -0.9])
        history = []

        solution = solve_fixed_mesh(
            problem,
            oracle,
            mesh=5,
            initial_guess=guess,
            callback=lambda stats: history.append(stats),
        )
        assert solution.success, f"Solver failed: {solution.message}"
        np.testing.assert_allclose(solution["x"], 0.5, atol=1e-4)
        assert solution.objective == pytest.approx(1.0, abs=1e-6)
        assert solution.evaluation_recoveries > 0, "Out-of-domain trial points must be rejected"
        assert any(stats.evaluation_errors > 0 for stats in history)

    def test_failing_starting_point_raises(self):
        def dynamics(t, x, u, p):
            raise ZeroDivisionError("division by zero")

        with pytest.raises(DynamicsEvaluationError):
            solve_fixed_mesh(unit_transfer_problem(), effort_oracle(dynamics), mesh=5)


class TestSolveControl:
    def test_callback_stop_is_user_terminated(self):
        seen = []

        def callback(stats):
            seen.append(stats)
            return False

        solution = solve_fixed_mesh(
            unit_transfer_problem(), effort_oracle(), mesh=10, callback=callback
        )
        assert solution.status is SolveStatus.USER_TERMINATED
        assert not solution.success
        assert len(seen) == 1
        assert solution.trajectory.states.shape == (10, 1), "Last iterate must be returned"
        with pytest.raises(SolverDivergenceError):
            solution.raise_for_status()

    def test_iteration_limit_is_failure_not_exception(self):
        solution = solve_fixed_mesh(
            unit_transfer_problem(control_bounds=[(-5.0, 5.0)]),
            effort_oracle(),
            mesh=10,
            nlp_options={"ipopt.max_iter": 1},
        )
        assert solution.status is SolveStatus.FAILED
        assert solution.raw_solution.solver_status == -1
        assert solution.raw_solution.options["max_iter"] == 1

    @pytest.mark.parametrize(
        "nlp_options", [{"not_an_option": 1}, {"max_iter": "many"}, {"ipopt.tol": "tight"}]
    )
    def test_invalid_option_rejected_before_oracle(self, nlp_options):
        calls = []

        def dynamics(t, x, u, p):
            calls.append(t)
            return u

        with pytest.raises(ConfigurationError, match="Invalid IPOPT option"):
            solve_fixed_mesh(
                unit_transfer_problem(), effort_oracle(dynamics), mesh=5, nlp_options=nlp_options
            )
        assert not calls, f"Oracle called {len(calls)} times before option validation"

    def test_callback_exception_finishes_adapter(self):
        from dircol.nlp import AdapterState, NLPAdapter
        from dircol.nlp.ipopt_solver import IpoptSolver
        from dircol.transcription import TranscriptionEngine

        calls = []

        def dynamics(t, x, u, p):
            calls.append(t)
            if len(calls) > 5:
                raise RuntimeError("model backend crashed")
            return u

        engine = TranscriptionEngine(unit_transfer_problem(), Mesh.uniform(5), effort_oracle(dynamics))
        adapter = NLPAdapter(engine, DerivativeOptions(num_workers=2))
        with pytest.raises(RuntimeError, match="model backend crashed"):
            IpoptSolver().solve(adapter)
        assert adapter.state is AdapterState.FAILED
        assert adapter.derivatives._executor is None, "Worker pool must be shut down"

    def test_status_mapping(self):
        from dircol.nlp.ipopt_solver import map_ipopt_status

        assert map_ipopt_status(0) is SolveStatus.CONVERGED
        assert map_ipopt_status(1) is SolveStatus.CONVERGED
        assert map_ipopt_status(5) is SolveStatus.USER_TERMINATED
        for code in (-1, -2, -13, 2, 3, 4):
            assert map_ipopt_status(code) is SolveStatus.FAILED


class TestAdaptiveIntegration:
    @staticmethod
    def regulator():
        t = ca.SX.sym("t")
        x = ca.SX.sym("x", 1)
        u = ca.SX.sym("u", 1)
        oracle = CasadiOracle(t, x, u, dynamics=-(x**3) + u, integrand=x**2 + u**2)
        problem = ProblemDefinition(
            num_states=1,
            num_controls=1,
            initial_state_bounds=[1.5],
            final_time_bounds=3.0,
        )
        return problem, oracle

    def test_refinement_reduces_error(self):
        problem, oracle = self.regulator()
        solution = solve_adaptive(
            problem, oracle, mesh=6, error_tolerance=1e-3, max_refinements=4
        )
        result = solution.adaptive
        assert result is not None
        assert result.outcome in (
            RefinementOutcome.ACCEPTED,
            RefinementOutcome.MAX_REFINEMENTS_EXCEEDED,
        )
        assert len(result.error_history) == len(result.meshes)
        for previous, current in zip(result.meshes, result.meshes[1:]):
            assert current.contains(previous), "Refinement must keep existing points"
            assert current.num_points > previous.num_points
        assert solution.mesh == result.meshes[-1]
        if result.converged:
            assert result.max_error <= 1e-3
        assert np.max(result.error_history[-1]) <= np.max(result.error_history[0])

    def test_refinement_budget_exhausted(self):
        problem, oracle = self.regulator()
        solution = solve_adaptive(problem, oracle, mesh=5, error_tolerance=1e-12, max_refinements=0)
        result = solution.adaptive
        assert result.outcome is RefinementOutcome.MAX_REFINEMENTS_EXCEEDED
        assert isinstance(result.warning, MaxRefinementsExceeded)
        assert result.refinements == 0
        assert solution.success, "Budget exhaustion is not a solver failure"

    def test_accepts_exact_problem_immediately(self):
        solution = solve_adaptive(unit_transfer_problem(), effort_oracle(), mesh=5)
        assert solution.adaptive.converged
        assert solution.adaptive.refinements == 0
