# test_goals.py
"""
Cost goals and the goal-composing oracle.
"""

import numpy as np
import pytest

from dircol import (
    ComposedOracle,
    ConfigurationError,
    ControlEffortGoal,
    DynamicsOracle,
    EndpointStateGoal,
    FinalTimeGoal,
    GoalKind,
    StateTrackingGoal,
)


X = np.array([1.0, -2.0])
U = np.array([0.5, -3.0])
P = np.empty(0)


class TestControlEffortGoal:
    def test_sum_of_squares(self):
        goal = ControlEffortGoal()
        assert goal.integrand(0.0, X, U, P) == pytest.approx(0.25 + 9.0)
        assert goal.kind is GoalKind.EFFORT
        assert goal.has_integrand and not goal.has_endpoint

    def test_weights_and_exponent(self):
        goal = ControlEffortGoal(exponent=4, control_weights=[2.0, 0.0])
        assert goal.integrand(0.0, X, U, P) == pytest.approx(2.0 * 0.5**4)

    def test_exponent_must_be_at_least_two(self):
        with pytest.raises(ConfigurationError):
            ControlEffortGoal(exponent=1)

    def test_weight_must_be_finite(self):
        with pytest.raises(ConfigurationError):
            ControlEffortGoal(weight=np.inf)

    def test_no_endpoint_cost(self):
        with pytest.raises(NotImplementedError):
            ControlEffortGoal().endpoint(0.0, X, 1.0, X, P)


class TestStateTrackingGoal:
    times = np.linspace(0.0, 2.0, 9)

    def reference(self):
        return {"position": np.sin(self.times), "velocity": np.cos(self.times)}

    def test_zero_error_on_reference(self):
        goal = StateTrackingGoal(self.times, self.reference(), ["position", "velocity"])
        t = self.times[3]
        state = np.array([np.sin(t), np.cos(t)])
        assert goal.integrand(t, state, U, P) == pytest.approx(0.0, abs=1e-20)

    def test_weighted_squared_error(self):
        goal = StateTrackingGoal(
            self.times,
            self.reference(),
            ["position", "velocity"],
            state_weights={"velocity": 3.0},
        )
        t = self.times[4]
        state = np.array([np.sin(t) + 0.1, np.cos(t) - 0.2])
        assert goal.integrand(t, state, U, P) == pytest.approx(0.01 + 3.0 * 0.04)

    def test_partial_tracking(self):
        goal = StateTrackingGoal(self.times, {"velocity": np.cos(self.times)}, ["position", "velocity"])
        np.testing.assert_array_equal(goal.state_indices, [1])

    def test_unused_reference_columns(self):
        reference = {**self.reference(), "altitude": np.zeros_like(self.times)}
        with pytest.raises(ConfigurationError, match="altitude"):
            StateTrackingGoal(self.times, reference, ["position", "velocity"])
        goal = StateTrackingGoal(
            self.times, reference, ["position", "velocity"], allow_unused_references=True
        )
        assert len(goal.state_indices) == 2

    def test_weights_scaled_by_range(self):
        reference = {"position": np.linspace(0.0, 4.0, 9)}
        goal = StateTrackingGoal(
            self.times, reference, ["position"], scale_weights_with_range=True
        )
        np.testing.assert_allclose(goal.state_weights, [0.25])

    def test_constant_reference_cannot_scale(self):
        with pytest.raises(ConfigurationError, match="constant"):
            StateTrackingGoal(
                self.times,
                {"position": np.ones_like(self.times)},
                ["position"],
                scale_weights_with_range=True,
            )

    def test_bad_reference_times(self):
        with pytest.raises(ConfigurationError):
            StateTrackingGoal([0.0, 0.0, 1.0], {"position": [0.0, 1.0, 2.0]}, ["position"])

    def test_column_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            StateTrackingGoal(self.times, {"position": [0.0, 1.0]}, ["position"])


class TestEndpointGoals:
    def test_final_time(self):
        goal = FinalTimeGoal()
        assert goal.endpoint(0.5, X, 3.25, X, P) == 3.25
        assert goal.has_endpoint and not goal.has_integrand

    def test_endpoint_state(self):
        goal = EndpointStateGoal([1], [0.0], state_weights=[0.5])
        assert goal.endpoint(0.0, X, 1.0, np.array([7.0, 2.0]), P) == pytest.approx(2.0)

    def test_target_count_must_match(self):
        with pytest.raises(ConfigurationError):
            EndpointStateGoal([0, 1], [0.0])


class TestComposedOracle:
    def test_goals_are_summed_with_weights(self):
        oracle = ComposedOracle(
            dynamics=lambda t, x, u, p: u,
            goals=[
                ControlEffortGoal(weight=2.0),
                FinalTimeGoal(weight=0.5),
                EndpointStateGoal([0], [0.0], weight=3.0),
            ],
        )
        assert oracle.integrand_cost(0.0, X, U, P) == pytest.approx(2.0 * 9.25)
        assert oracle.endpoint_cost(0.0, X, 4.0, X, P) == pytest.approx(0.5 * 4.0 + 3.0 * 1.0)

    def test_optional_constraints_default_to_empty(self):
        oracle = ComposedOracle(dynamics=lambda t, x, u, p: u)
        assert oracle.path_constraints(0.0, X, U, P).shape == (0,)
        assert oracle.endpoint_constraints(0.0, X, 1.0, X, P).shape == (0,)
        assert oracle.integrand_cost(0.0, X, U, P) == 0.0

    def test_constraint_callables(self):
        oracle = ComposedOracle(
            dynamics=lambda t, x, u, p: u,
            path_constraints=lambda t, x, u, p: [x[0] + u[0]],
            endpoint_constraints=lambda t0, x0, tf, xf, p: [xf[0] - x0[0], tf - t0],
        )
        np.testing.assert_allclose(oracle.path_constraints(0.0, X, U, P), [1.5])
        np.testing.assert_allclose(
            oracle.endpoint_constraints(1.0, X, 3.0, 2.0 * X, P), [1.0, 2.0]
        )

    def test_satisfies_protocol(self):
        assert isinstance(ComposedOracle(dynamics=lambda t, x, u, p: u), DynamicsOracle)
