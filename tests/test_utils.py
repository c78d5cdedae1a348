"""Tests for the dense linear algebra helpers."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from solnp_jax.errors import NumericalError, SingularMatrixError
from solnp_jax.utils import (
    clamp,
    condition_number,
    euclidean_norm,
    infinity_norm,
    pair_min_max,
    qr_solve,
)

jax.config.update("jax_enable_x64", True)


class TestNorms:
    def test_euclidean_norm(self):
        assert float(euclidean_norm(jnp.array([3.0, 4.0]))) == pytest.approx(5.0)

    def test_infinity_norm(self):
        assert float(infinity_norm(jnp.array([1.0, -7.5, 2.0]))) == 7.5

    def test_infinity_norm_empty(self):
        assert float(infinity_norm(jnp.zeros(0))) == 0.0


class TestConditionNumber:
    def test_diagonal(self):
        matrix = jnp.diag(jnp.array([10.0, 1.0]))
        assert float(condition_number(matrix)) == pytest.approx(10.0)

    def test_rectangular(self):
        matrix = jnp.array([[1.0, 0.0, 0.0], [0.0, 4.0, 0.0]])
        assert float(condition_number(matrix)) == pytest.approx(4.0)

    def test_rank_deficient_is_huge(self):
        matrix = jnp.array([[1.0, 2.0], [2.0, 4.0]])
        assert float(condition_number(matrix)) > 1e15


class TestPairMinMax:
    def test_rows_sorted(self):
        matrix = jnp.array([[3.0, 1.0], [0.5, 2.0], [-1.0, -4.0]])
        expected = np.array([[1.0, 3.0], [0.5, 2.0], [-4.0, -1.0]])
        np.testing.assert_array_equal(pair_min_max(matrix), expected)


class TestClamp:
    def test_clamp(self):
        v = jnp.array([1e-12, 0.5, 1e12])
        np.testing.assert_array_equal(clamp(v, 1e-8, 1e8), [1e-8, 0.5, 1e8])


class TestQRSolve:
    def test_square_system(self):
        a = jnp.array([[4.0, 1.0], [1.0, 3.0]])
        b = jnp.array([1.0, 2.0])
        np.testing.assert_allclose(qr_solve(a, b), np.linalg.solve(a, b), rtol=1e-12)

    def test_least_squares(self):
        a = jnp.array([[1.0, 0.0], [1.0, 1.0], [1.0, 2.0]])
        b = jnp.array([1.0, 2.0, 2.0])
        expected, *_ = np.linalg.lstsq(np.asarray(a), np.asarray(b), rcond=None)
        np.testing.assert_allclose(qr_solve(a, b), expected, rtol=1e-10)

    def test_singular_raises_when_checked(self):
        a = jnp.zeros((2, 2))
        with pytest.raises(SingularMatrixError):
            qr_solve(a, jnp.ones(2), check_singular=True)

    def test_singular_error_is_numerical(self):
        assert issubclass(SingularMatrixError, NumericalError)
