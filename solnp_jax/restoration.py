"""Feasibility restoration for the SOLNP subproblem.

Before the descent loop starts, an infeasible linearisation
``A p = b_lin`` is repaired in one of two ways:

- Without any bounds, a single least-norm projection
  ``p <- p - A^T (A A^T)^{-1} c``.
- With bounds, an artificial variable ``t`` (starting at 1) is appended so
  that ``A p - t c`` is consistent, and a short sequence of affine-scaling
  steps drives ``t`` to zero while keeping every bounded variable strictly
  inside its bounds (ratio test with a 0.9 safety factor).
"""

from typing import NamedTuple

import jax.numpy as jnp
from jaxtyping import Array, Float

from solnp_jax.direction import bound_gaps
from solnp_jax.types import BoundMode
from solnp_jax.utils import pair_min_max, qr_solve

MAX_RESTORATION_STEPS = 10
RATIO_SAFETY = 0.9
# Floor for the scale of unbounded variables during restoration
UNBOUNDED_SCALE_FLOOR = 100.0


class RestorationResult(NamedTuple):
    """Result of the bounded restoration loop.

    Attributes:
        parameters: Restored parameter vector (artificial variable removed).
        complete: Whether the artificial variable vanished within the cap.
        steps: Number of restoration steps taken.
    """

    parameters: Float[Array, " n"]
    complete: bool
    steps: int


def project_onto_constraints(
    parameters: Float[Array, " n"],
    jacobian: Float[Array, "nc n"],
    constraints: Float[Array, " nc"],
) -> Float[Array, " n"]:
    """Least-norm correction removing the linearised constraint violation.

    Raises:
        SingularMatrixError: If ``A A^T`` has a zero pivot.
    """
    correction = qr_solve(jacobian @ jacobian.T, constraints, check_singular=True)
    return parameters - jacobian.T @ correction


def restore_feasibility(
    parameters: Float[Array, " n"],
    jacobian: Float[Array, "nc n"],
    constraints: Float[Array, " nc"],
    bounds: Float[Array, "b 2"],
    mode: BoundMode,
    tolerance: float,
) -> RestorationResult:
    """Reduce the constraint violation while staying inside the bounds.

    Args:
        parameters: Scaled parameter vector, strictly inside ``bounds``.
        jacobian: Constraint Jacobian ``A``.
        constraints: Constraint residuals at ``parameters``.
        bounds: Scaled bounds of the leading ``b`` parameters.
        mode: Bound mode of the problem (must have bounds).
        tolerance: The loop stops once the artificial variable is below this.

    Returns:
        RestorationResult with the best point found.
    """
    n_total = parameters.shape[0]
    n_bounded = bounds.shape[0]
    lower = bounds[:, 0]
    upper = bounds[:, 1]

    p = jnp.concatenate([parameters, jnp.ones(1, dtype=parameters.dtype)])
    a = jnp.concatenate([jacobian, -constraints[:, None]], axis=1)
    c = jnp.zeros(n_total + 1, dtype=parameters.dtype).at[n_total].set(1.0)
    dx = jnp.ones(n_total + 1, dtype=parameters.dtype)

    steps = 0
    go = 1.0
    while go >= tolerance:
        steps += 1
        gap = pair_min_max(bound_gaps(p, bounds))[:, 0]
        dx = dx.at[:n_bounded].set(gap).at[n_total].set(p[n_total])
        if not mode.has_parameter_bounds:
            floor = jnp.maximum(jnp.max(dx[:n_bounded]), UNBOUNDED_SCALE_FLOOR)
            dx = dx.at[n_bounded:n_total].set(floor)

        y = qr_solve((a * dx[None, :]).T, dx * c)
        v = dx * (dx * (c - a.T @ y))

        v_artificial = float(v[n_total])
        if v_artificial <= 0.0:
            go = 0.0
            steps = MAX_RESTORATION_STEPS
            continue

        # ratio test: largest step keeping the bounded variables feasible
        z_artificial = float(p[n_total]) / v_artificial
        head = p[:n_bounded]
        v_head = v[:n_bounded]
        safe = jnp.where(v_head == 0.0, 1.0, v_head)
        ratios = jnp.where(
            v_head < 0.0,
            -(upper - head) / safe,
            jnp.where(v_head > 0.0, (head - lower) / safe, jnp.inf),
        )
        z = min(z_artificial, float(jnp.min(ratios)))
        if z >= z_artificial:
            p = p - z * v
        else:
            p = p - RATIO_SAFETY * z * v

        go = float(p[n_total])
        if steps >= MAX_RESTORATION_STEPS:
            go = 0.0

    return RestorationResult(
        parameters=p[:n_total],
        complete=steps < MAX_RESTORATION_STEPS,
        steps=steps,
    )
