"""Dense BFGS Hessian approximation for SOLNP.

The curvature matrix is a dense ``(n + n_ineq)`` square matrix carried across
major iterations. Inside the subproblem it is updated with the standard
rank-2 BFGS formula

    H+ = H - (H s)(H s)^T / (s^T H s) + y y^T / (s^T y)

from the secant pair (s, y) of consecutive minor iterations. The update is
skipped whenever either denominator is not positive, which keeps ``H``
positive definite without damping.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped


@jaxtyped(typechecker=beartype)
def bfgs_update(
    hessian: Float[Array, "n n"],
    s: Float[Array, " n"],
    y: Float[Array, " n"],
) -> Float[Array, "n n"]:
    """Apply the BFGS update when the curvature condition holds.

    Args:
        hessian: Current approximation H.
        s: Parameter step ``p_{k+1} - p_k``.
        y: Gradient step ``g_{k+1} - g_k``.

    Returns:
        Updated approximation, or ``hessian`` unchanged if ``s^T H s <= 0``
        or ``s^T y <= 0``.
    """
    hs = hessian @ s
    sths = jnp.dot(s, hs)
    sty = jnp.dot(s, y)
    if not (float(sths) > 0.0 and float(sty) > 0.0):
        return hessian
    return hessian - jnp.outer(hs, hs) / sths + jnp.outer(y, y) / sty


@jaxtyped(typechecker=beartype)
def symmetrize(hessian: Float[Array, "n n"]) -> Float[Array, "n n"]:
    """Remove floating-point asymmetry: ``(H + H^T) / 2``."""
    return 0.5 * (hessian + hessian.T)


@jaxtyped(typechecker=beartype)
def diagonalize(hessian: Float[Array, "n n"]) -> Float[Array, "n n"]:
    """Keep only the diagonal of ``hessian``, discarding cross curvature."""
    return jnp.diag(jnp.diag(hessian))
