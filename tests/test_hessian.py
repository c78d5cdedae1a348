"""Tests for the dense BFGS Hessian approximation."""

import jax
import jax.numpy as jnp
import numpy as np

from solnp_jax.hessian import bfgs_update, diagonalize, symmetrize

jax.config.update("jax_enable_x64", True)


class TestBFGSUpdate:
    def test_secant_condition(self):
        """The updated matrix maps s onto y."""
        h = jnp.eye(2)
        s = jnp.array([1.0, 0.0])
        y = jnp.array([2.0, 1.0])
        updated = bfgs_update(h, s, y)
        np.testing.assert_allclose(updated @ s, y, rtol=1e-12)
        np.testing.assert_allclose(updated, updated.T, atol=1e-14)

    def test_stays_positive_definite(self):
        h = jnp.array([[2.0, 0.5], [0.5, 1.0]])
        s = jnp.array([0.3, -0.2])
        y = jnp.array([1.0, 0.1])
        updated = bfgs_update(h, s, y)
        assert np.all(np.linalg.eigvalsh(np.asarray(updated)) > 0)

    def test_skips_negative_curvature(self):
        h = jnp.array([[2.0, 0.0], [0.0, 3.0]])
        s = jnp.array([1.0, 0.0])
        y = jnp.array([-1.0, 0.0])
        np.testing.assert_array_equal(bfgs_update(h, s, y), h)

    def test_skips_zero_step(self):
        h = jnp.eye(3)
        np.testing.assert_array_equal(bfgs_update(h, jnp.zeros(3), jnp.ones(3)), h)


class TestSymmetrize:
    def test_symmetrize(self):
        h = jnp.array([[1.0, 2.0], [0.0, 1.0]])
        np.testing.assert_array_equal(symmetrize(h), [[1.0, 1.0], [1.0, 1.0]])


class TestDiagonalize:
    def test_diagonalize(self):
        h = jnp.array([[4.0, 1.0], [1.0, 9.0]])
        np.testing.assert_array_equal(diagonalize(h), [[4.0, 0.0], [0.0, 9.0]])
