"""Damped Newton direction for the SOLNP subproblem.

The step solves the regularised quadratic model

    minimize  g^T u + 1/2 u^T (H + mu * D^2) u
    subject to A u = 0

where ``D`` is a diagonal trust scale that grows as a variable approaches
one of its bounds. With ``H + mu D^2 = L L^T``, the constrained solution is

    u = -L^{-T} (L^{-1} g - W y),   W = L^{-1} A^T,   y = argmin ||W y - L^{-1} g||

with ``y`` obtained from a QR factorisation of ``W``; ``y`` doubles as the
multiplier estimate. ``mu`` is tripled until ``p + u`` is strictly inside the
bounds.
"""

import math
from typing import NamedTuple, Optional

import jax.numpy as jnp
import jax.scipy.linalg as jsp_linalg
from jaxtyping import Array, Float

from solnp_jax.errors import NumericalError
from solnp_jax.types import BoundMode
from solnp_jax.utils import pair_min_max, qr_solve

# Trust scale of variables that are not close to any bound
DEFAULT_TRUST_SCALE = 0.01
# Growth factor of mu after each bounded trial step
MU_GROWTH = 3.0


class NewtonStep(NamedTuple):
    """A damped Newton trial point.

    Attributes:
        parameters: Trial point ``p + u``.
        multipliers: Least-squares multipliers of the linearised constraints.
        mu: Damping after the interior search.
        trials: Number of factorisations performed.
    """

    parameters: Float[Array, " n"]
    multipliers: Float[Array, " nc"]
    mu: float
    trials: int


def bound_gaps(
    parameters: Float[Array, " n"], bounds: Float[Array, "b 2"]
) -> Float[Array, "b 2"]:
    """Distances ``[p - lower, upper - p]`` of the bounded parameters."""
    head = parameters[: bounds.shape[0]]
    return jnp.stack([head - bounds[:, 0], bounds[:, 1] - head], axis=1)


def trust_scale(
    parameters: Float[Array, " n"],
    bounds: Optional[Float[Array, "b 2"]],
    mode: BoundMode,
) -> Float[Array, " n"]:
    """Per-variable scale: inverse distance to the nearest bound.

    Unbounded variables get ``0.01``, or the smallest bounded scale when that
    is smaller (only slacks are bounded).
    """
    dx = jnp.full(parameters.shape, DEFAULT_TRUST_SCALE, dtype=parameters.dtype)
    if not mode.has_any_bounds:
        return dx
    eps = jnp.finfo(parameters.dtype).eps
    n_bounded = bounds.shape[0]
    gap = pair_min_max(bound_gaps(parameters, bounds))[:, 0] + jnp.sqrt(eps)
    dx = dx.at[:n_bounded].set(1.0 / gap)
    if not mode.has_parameter_bounds:
        floor = jnp.minimum(jnp.min(dx[:n_bounded]), DEFAULT_TRUST_SCALE)
        dx = dx.at[n_bounded:].set(floor)
    return dx


def _damped_step(hessian, gradient, jacobian, dx, mu, multipliers):
    chol = jnp.linalg.cholesky(hessian + mu * jnp.diag(dx * dx))
    yg = jsp_linalg.solve_triangular(chol, gradient, lower=True)
    if jacobian is None or jacobian.shape[0] == 0:
        u = -jsp_linalg.solve_triangular(chol.T, yg, lower=False)
        return u, multipliers
    w = jsp_linalg.solve_triangular(chol, jacobian.T, lower=True)
    y = qr_solve(w, yg)
    u = -jsp_linalg.solve_triangular(chol.T, yg - w @ y, lower=False)
    return u, y


def newton_step(
    hessian: Float[Array, "n n"],
    gradient: Float[Array, " n"],
    jacobian: Optional[Float[Array, "nc n"]],
    parameters: Float[Array, " n"],
    bounds: Optional[Float[Array, "b 2"]],
    dx: Float[Array, " n"],
    mu: float,
    multipliers: Float[Array, " k"],
) -> NewtonStep:
    """Compute an interior damped Newton trial point.

    Args:
        hessian: Scaled curvature matrix.
        gradient: Merit gradient.
        jacobian: Constraint Jacobian, or ``None`` without constraints.
        parameters: Current scaled parameters.
        bounds: Scaled bounds of the leading parameters, or ``None``.
        dx: Trust scale from :func:`trust_scale`.
        mu: Initial damping.
        multipliers: Returned unchanged when there are no constraints.

    Returns:
        NewtonStep with the trial point and the inflated damping.

    Raises:
        NumericalError: If no finite interior step exists before ``mu``
            overflows.
    """
    trials = 0
    while True:
        trials += 1
        u, y = _damped_step(hessian, gradient, jacobian, dx, mu, multipliers)
        trial = parameters + u
        finite = bool(jnp.all(jnp.isfinite(trial)))
        if bounds is None:
            if finite:
                return NewtonStep(trial, y, mu, trials)
            mu = MU_GROWTH * mu
        else:
            interior = finite and float(jnp.min(bound_gaps(trial, bounds))) > 0.0
            mu = MU_GROWTH * mu
            if interior:
                return NewtonStep(trial, y, mu, trials)
        if not math.isfinite(mu):
            raise NumericalError(
                "Could not compute a finite Newton step inside the bounds."
            )
