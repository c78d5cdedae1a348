"""Dense linear algebra helpers shared by both solver levels."""

import jax.numpy as jnp
import jax.scipy.linalg as jsp_linalg
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from solnp_jax.errors import SingularMatrixError
from solnp_jax.types import Scalar


@jaxtyped(typechecker=beartype)
def euclidean_norm(v: Float[Array, " n"]) -> Scalar:
    """L2 norm of a vector."""
    return jnp.linalg.norm(v)


@jaxtyped(typechecker=beartype)
def infinity_norm(v: Float[Array, " n"]) -> Scalar:
    """Largest absolute entry of a vector (0 for an empty vector)."""
    if v.shape[0] == 0:
        return jnp.zeros((), dtype=v.dtype)
    return jnp.max(jnp.abs(v))


@jaxtyped(typechecker=beartype)
def condition_number(matrix: Float[Array, "m n"]) -> Scalar:
    """Ratio of the largest to the smallest singular value.

    Rank-deficient matrices give ``inf`` (or ``nan`` for the zero matrix).
    """
    s = jnp.linalg.svd(matrix, compute_uv=False)
    return s[0] / s[-1]


@jaxtyped(typechecker=beartype)
def pair_min_max(matrix: Float[Array, "m 2"]) -> Float[Array, "m 2"]:
    """Sort each row of a two-column matrix so that column 0 holds the minimum.

    Used on ``[x - lower, upper - x]`` to get the distance to the nearest bound
    in the first column.
    """
    return jnp.stack(
        [jnp.min(matrix, axis=1), jnp.max(matrix, axis=1)],
        axis=1,
    )


@jaxtyped(typechecker=beartype)
def clamp(v: Float[Array, " n"], lower: float, upper: float) -> Float[Array, " n"]:
    """Elementwise clamp of ``v`` into ``[lower, upper]``."""
    return jnp.minimum(jnp.maximum(v, lower), upper)


@jaxtyped(typechecker=beartype)
def qr_solve(
    matrix: Float[Array, "m k"],
    rhs: Float[Array, " m"],
    check_singular: bool = False,
) -> Float[Array, " k"]:
    """Least-squares solve of ``matrix @ x = rhs`` through a reduced QR.

    Args:
        matrix: Coefficient matrix with at least as many rows as columns.
        rhs: Right-hand side.
        check_singular: Raise if ``R`` has an exact zero on its diagonal.

    Returns:
        The least-squares solution.

    Raises:
        SingularMatrixError: If ``check_singular`` and a pivot is zero.
    """
    q, r = jnp.linalg.qr(matrix)
    if check_singular and bool(jnp.any(jnp.diag(r) == 0.0)):
        raise SingularMatrixError("Encountered a singular matrix when trying to solve.")
    return jsp_linalg.solve_triangular(r, q.T @ rhs, lower=False)
