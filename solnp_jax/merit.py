"""Augmented-Lagrangian merit function and line search for SOLNP.

Inside the subproblem the constraints are replaced by their deviation from
the linearisation at the entry point,

    r(p) = c(p) - A p + b,

and the merit function is

    phi(p) = f(p) - y^T r(p) + rho * ||r(p)||^2

where ``y`` are the (scaled) multipliers from the previous major iteration
and ``rho`` the penalty. Inequality residuals are measured against their
slacks, ``h(p) - s``.

The line search is a derivative-free three-point bracketing search: it keeps
the merit at ``alpha = 0``, a midpoint, and ``alpha = 1`` (the Newton
point), repeatedly bisecting the side that straddles the minimum.
"""

from collections.abc import Callable
from typing import NamedTuple

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from solnp_jax.problem import CostEvaluator
from solnp_jax.scaling import ScaleVector
from solnp_jax.types import Scalar


class LineSearchResult(NamedTuple):
    """Result from the bracketing line search.

    Attributes:
        parameters: The accepted point.
        merit: Merit value at the accepted point.
        best_merit: Smallest merit among the three final trial points.
        steps: Number of bisection steps taken.
    """

    parameters: Float[Array, " n"]
    merit: float
    best_merit: float
    steps: int


def slack_residuals(
    cost: Float[Array, " m"],
    parameters: Float[Array, " n"],
    n_eq: int,
    n_ineq: int,
) -> Float[Array, " m"]:
    """Replace the inequality values of ``cost`` by ``h - slack``."""
    if n_ineq == 0:
        return cost
    start = 1 + n_eq
    return cost.at[start : start + n_ineq].add(-parameters[:n_ineq])


class AugmentedLagrangian(eqx.Module):
    """Merit function of one subproblem.

    Attributes:
        jacobian: Constraint Jacobian ``A`` at the entry point.
        offset: Linearisation offset ``b``.
        multipliers: Scaled multipliers ``y`` from the previous major iteration.
        rho: Penalty coefficient.
        n_eq: Number of equality constraints.
        n_ineq: Number of inequality constraints.
    """

    jacobian: Float[Array, "nc n"]
    offset: Float[Array, " nc"]
    multipliers: Float[Array, " k"]
    rho: float
    n_eq: int = eqx.field(static=True)
    n_ineq: int = eqx.field(static=True)

    @property
    def n_constraints(self) -> int:
        return self.n_eq + self.n_ineq

    def __call__(
        self, cost: Float[Array, " m"], parameters: Float[Array, " n"]
    ) -> Scalar:
        """Merit value from a scaled cost vector evaluated at ``parameters``."""
        cost = slack_residuals(cost, parameters, self.n_eq, self.n_ineq)
        if self.n_constraints == 0:
            return cost[0]
        residual = cost[1:] - self.jacobian @ parameters + self.offset
        return (
            cost[0]
            - jnp.dot(self.multipliers, residual)
            + self.rho * jnp.dot(residual, residual)
        )


def scaled_cost(
    evaluator: CostEvaluator,
    scale: ScaleVector,
    parameters: Float[Array, " n"],
    n_ineq: int,
) -> Float[Array, " m"]:
    """Evaluate the user cost function at a scaled parameter vector."""
    return scale.scale_cost(evaluator(scale.user_point(parameters, n_ineq)))


def merit_gradient(
    merit_at: Callable[[Float[Array, " n"]], float],
    parameters: Float[Array, " n"],
    merit: float,
    n_ineq: int,
    delta: float,
) -> Float[Array, " n"]:
    """Forward-difference gradient of the merit function.

    Only the decision variables are differenced; slack entries are zero since
    the slacks enter the problem through their bounds.
    """
    n_total = parameters.shape[0]
    grad = jnp.zeros(n_total, dtype=parameters.dtype)
    for i in range(n_ineq, n_total):
        shifted = parameters.at[i].add(delta)
        grad = grad.at[i].set((merit_at(shifted) - merit) / delta)
    return grad


def constraint_jacobian(
    cost_at: Callable[[Float[Array, " n"]], Float[Array, " m"]],
    parameters: Float[Array, " n"],
    cost: Float[Array, " m"],
    n_eq: int,
    n_ineq: int,
    delta: float,
) -> tuple[Float[Array, " n"], Float[Array, "nc n"]]:
    """Forward-difference objective gradient and constraint Jacobian.

    Columns of the slack variables are ``-I`` for the inequality rows and zero
    for the equality rows.

    Args:
        cost_at: Scaled cost function of the parameter vector.
        parameters: Scaled parameter vector ``[slacks | x]``.
        cost: Scaled cost vector at ``parameters``.
        n_eq: Number of equality constraints.
        n_ineq: Number of inequality constraints.
        delta: Finite-difference step.

    Returns:
        ``(gradient, jacobian)`` with shapes ``(n_total,)`` and
        ``(n_eq + n_ineq, n_total)``.
    """
    n_total = parameters.shape[0]
    n_constraints = n_eq + n_ineq
    grad = jnp.zeros(n_total, dtype=parameters.dtype)
    jac = jnp.zeros((n_constraints, n_total), dtype=parameters.dtype)
    if n_ineq > 0:
        jac = jac.at[n_eq:, :n_ineq].set(-jnp.eye(n_ineq, dtype=parameters.dtype))
    for i in range(n_ineq, n_total):
        shifted_cost = cost_at(parameters.at[i].add(delta))
        grad = grad.at[i].set((shifted_cost[0] - cost[0]) / delta)
        jac = jac.at[:, i].set((shifted_cost[1:] - cost[1:]) / delta)
    return grad, jac


@jaxtyped(typechecker=beartype)
def bracketing_line_search(
    merit_at: Callable[[Float[Array, " n"]], float],
    start: Float[Array, " n"],
    trial: Float[Array, " n"],
    merit: float,
    tolerance: float,
) -> LineSearchResult:
    """Three-point bracketing search along ``start -> trial``.

    Trial points are kept at ``alpha = (a0, a1, a2)`` with ``a0 = 0`` and
    ``a2 = 1`` initially. Each step places ``a1`` at the midpoint of
    ``[a0, a2]`` and moves one end of the bracket onto it. The search stops
    once the estimated relative improvement, or the bracket width, falls
    below ``tolerance``.

    Args:
        merit_at: Merit function of a scaled parameter vector.
        start: Current iterate (``alpha = 0``).
        trial: Newton point (``alpha = 1``).
        merit: Merit value at ``start``.
        tolerance: Stopping tolerance.

    Returns:
        LineSearchResult with the accepted point.
    """
    alpha = [0.0, 0.0, 1.0]
    points = [start, start, trial]
    values = [merit, merit, merit_at(trial)]

    steps = 0
    go = 1.0
    while go > tolerance:
        steps += 1
        alpha[1] = 0.5 * (alpha[0] + alpha[2])
        points[1] = (1.0 - alpha[1]) * start + alpha[1] * trial
        values[1] = merit_at(points[1])

        worst = max(values)
        if worst < merit:
            go = tolerance * (worst - min(values)) / (merit - worst)

        if values[1] >= values[0] or values[0] <= values[2]:
            values[2] = values[1]
            alpha[2] = alpha[1]
            points[2] = points[1]
        else:
            values[0] = values[1]
            alpha[0] = alpha[1]
            points[0] = points[1]

        if go >= tolerance:
            go = alpha[2] - alpha[0]

    if values[0] < values[1]:
        accepted = 0
    elif values[2] < values[1]:
        accepted = 2
    else:
        accepted = 1

    return LineSearchResult(
        parameters=points[accepted],
        merit=values[accepted],
        best_merit=min(values),
        steps=steps,
    )
