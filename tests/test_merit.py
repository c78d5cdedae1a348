"""Tests for the augmented-Lagrangian merit function and line search."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from solnp_jax.merit import (
    AugmentedLagrangian,
    bracketing_line_search,
    constraint_jacobian,
    merit_gradient,
    slack_residuals,
)

jax.config.update("jax_enable_x64", True)


class TestSlackResiduals:
    def test_inequalities_minus_slacks(self):
        cost = jnp.array([1.0, 0.5, 3.0, 4.0])
        p = jnp.array([1.0, 1.5, 7.0])
        np.testing.assert_array_equal(
            slack_residuals(cost, p, n_eq=1, n_ineq=2), [1.0, 0.5, 2.0, 2.5]
        )

    def test_no_inequalities(self):
        cost = jnp.array([1.0, 0.5])
        np.testing.assert_array_equal(slack_residuals(cost, jnp.ones(2), 1, 0), cost)


class TestAugmentedLagrangian:
    def test_value(self):
        merit_fn = AugmentedLagrangian(
            jacobian=jnp.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 1.0]]),
            offset=jnp.array([0.1, 0.2]),
            multipliers=jnp.array([1.0, 2.0]),
            rho=0.5,
            n_eq=1,
            n_ineq=1,
        )
        cost = jnp.array([2.0, 0.5, 3.0])
        p = jnp.array([1.0, 1.0, 2.0])
        # r = [-0.4, 1.2]; 2 - y.r + rho |r|^2 = 2 - 2 + 0.8
        assert float(merit_fn(cost, p)) == pytest.approx(0.8)

    def test_unconstrained_is_objective(self):
        merit_fn = AugmentedLagrangian(
            jacobian=jnp.zeros((0, 2)),
            offset=jnp.zeros(0),
            multipliers=jnp.zeros(1),
            rho=1.0,
            n_eq=0,
            n_ineq=0,
        )
        assert float(merit_fn(jnp.array([3.5]), jnp.ones(2))) == 3.5


class TestFiniteDifferences:
    def test_merit_gradient_skips_slacks(self):
        def merit_at(q):
            return float(jnp.sum(q**2))

        p = jnp.array([5.0, 1.0, 2.0])
        grad = merit_gradient(merit_at, p, merit_at(p), n_ineq=1, delta=1e-7)
        np.testing.assert_allclose(grad, [0.0, 2.0, 4.0], atol=1e-5)
        assert float(grad[0]) == 0.0

    def test_constraint_jacobian_linear(self):
        def cost_at(q):
            return jnp.array([q[1] + 2 * q[2], q[1] - q[2], 3 * q[2]])

        p = jnp.array([0.5, 1.0, 1.0])
        grad, jac = constraint_jacobian(cost_at, p, cost_at(p), 1, 1, 1e-7)
        np.testing.assert_allclose(grad, [0.0, 1.0, 2.0], atol=1e-6)
        np.testing.assert_allclose(jac, [[0.0, 1.0, -1.0], [-1.0, 0.0, 3.0]], atol=1e-6)


class TestBracketingLineSearch:
    def test_finds_interior_minimum(self):
        def merit_at(q):
            return float((q[0] - 0.3) ** 2)

        start = jnp.array([0.0])
        result = bracketing_line_search(merit_at, start, jnp.array([1.0]), 0.09, 1e-8)
        assert result.merit < 0.09
        assert abs(float(result.parameters[0]) - 0.3) < 0.1
        assert result.best_merit <= result.merit

    def test_keeps_start_when_no_descent(self):
        def merit_at(q):
            return float(q[0] ** 2)

        start = jnp.array([0.0])
        result = bracketing_line_search(merit_at, start, jnp.array([1.0]), 0.0, 1e-8)
        np.testing.assert_array_equal(result.parameters, start)
        assert result.merit == 0.0

    def test_accepts_full_step(self):
        def merit_at(q):
            return float((q[0] - 2.0) ** 2)

        start = jnp.array([0.0])
        result = bracketing_line_search(merit_at, start, jnp.array([1.0]), 4.0, 1e-8)
        np.testing.assert_array_equal(result.parameters, [1.0])
        assert result.merit == 1.0
