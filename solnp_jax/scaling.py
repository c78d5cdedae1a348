"""Rescaling of the subproblem to unit magnitudes.

Each inner solve works on quantities divided by a scale vector

    scale = [|f|, ||g||_inf * ones(n_eq), |p| or ones(n_total)]

clamped to ``[tolerance, 1/tolerance]``. The objective and equality parts
are only present when there are equality constraints; otherwise the vector
starts with a single ``1`` and the objective is left unscaled. The parameter
part uses the parameter magnitudes only when nothing is bounded; with bounds
present the bounds already fix the magnitude and the parameter scale is one.
"""

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from solnp_jax.problem import Problem
from solnp_jax.types import BoundMode, Scalar
from solnp_jax.utils import clamp, infinity_norm


class ScaleVector(eqx.Module):
    """Scale factors for one inner solve.

    Attributes:
        values: ``[objective, equality (n_eq), parameters (n_total)]``.
        n_eq: Number of equality constraints.
        n_constraints: Number of equality plus inequality constraints.
    """

    values: Float[Array, " k"]
    n_eq: int = eqx.field(static=True)
    n_constraints: int = eqx.field(static=True)

    @property
    def objective(self) -> Scalar:
        return self.values[0]

    @property
    def cost(self) -> Float[Array, " m"]:
        return self.values[: 1 + self.n_constraints]

    @property
    def constraints(self) -> Float[Array, " nc"]:
        return self.values[1 : 1 + self.n_constraints]

    @property
    def parameters(self) -> Float[Array, " n_total"]:
        return self.values[1 + self.n_eq :]

    @property
    def decision_variables(self) -> Float[Array, " n"]:
        return self.values[1 + self.n_constraints :]

    def scale_cost(self, cost: Float[Array, " m"]) -> Float[Array, " m"]:
        return cost / self.cost

    def scale_parameters(self, p: Float[Array, " n_total"]) -> Float[Array, " n_total"]:
        return p / self.parameters

    def unscale_parameters(self, p: Float[Array, " n_total"]) -> Float[Array, " n_total"]:
        return p * self.parameters

    def scale_bounds(self, bounds: Float[Array, "b 2"]) -> Float[Array, "b 2"]:
        n_bounded = bounds.shape[0]
        return bounds / self.parameters[:n_bounded, None]

    def scale_multipliers(self, y: Float[Array, " nc"]) -> Float[Array, " nc"]:
        if self.n_constraints == 0:
            return y
        return self.constraints * y / self.objective

    def unscale_multipliers(self, y: Float[Array, " nc"]) -> Float[Array, " nc"]:
        if self.n_constraints == 0:
            return y
        return self.objective * y / self.constraints

    def scale_hessian(self, h: Float[Array, "t t"]) -> Float[Array, "t t"]:
        s = self.parameters
        return h * jnp.outer(s, s) / self.objective

    def unscale_hessian(self, h: Float[Array, "t t"]) -> Float[Array, "t t"]:
        s = self.parameters
        return self.objective * h / jnp.outer(s, s)

    def user_point(self, p: Float[Array, " n_total"], n_ineq: int) -> Float[Array, " n"]:
        """Decision variables in user units from a scaled parameter vector."""
        return p[n_ineq:] * self.decision_variables


@jaxtyped(typechecker=beartype)
def compute_scale(
    problem: Problem,
    cost: Float[Array, " m"],
    parameters: Float[Array, " n_total"],
    tolerance: float,
) -> ScaleVector:
    """Derive the scale vector from the current cost and parameters.

    Args:
        problem: Problem layout (counts and bound mode).
        cost: Unscaled cost vector ``[f, g..., h...]``.
        parameters: Unscaled parameter vector ``[slacks | x]``.
        tolerance: Clamp range is ``[tolerance, 1/tolerance]``.

    Returns:
        The clamped scale vector.
    """
    n_eq = problem.n_eq
    if n_eq > 0:
        parts = [
            cost[:1],
            infinity_norm(cost[1 : 1 + n_eq]) * jnp.ones(n_eq, dtype=cost.dtype),
        ]
    else:
        parts = [jnp.ones(1, dtype=cost.dtype)]
    if problem.mode is BoundMode.UNBOUNDED:
        parts.append(parameters)
    else:
        parts.append(jnp.ones_like(parameters))
    values = clamp(jnp.abs(jnp.concatenate(parts)), tolerance, 1.0 / tolerance)
    return ScaleVector(values=values, n_eq=n_eq, n_constraints=problem.n_constraints)
