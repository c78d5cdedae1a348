"""Type definitions for SOLNP-JAX.

This module contains type aliases and small tagged types used throughout the
package. Array types use jaxtyping for runtime shape checking with beartype.
"""

import enum
from collections.abc import Callable
from typing import Any

from jaxtyping import Array, ArrayLike, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Cost function type: takes decision variables and args, returns the cost
# vector [objective, equality residuals..., inequality values...]
CostFn = Callable[[Vector, Any], ArrayLike]


class BoundMode(enum.Enum):
    """Which parts of the parameter vector carry bounds.

    The parameter vector is ``[slacks (n_ineq) | decision variables (n)]``.

    - ``UNBOUNDED``: no bounds at all (no inequality constraints and no
      parameter bounds).
    - ``SLACK_BOUNDED``: only the inequality slacks are bounded.
    - ``FULLY_BOUNDED``: the decision variables are bounded (and the slacks,
      when there are inequality constraints).
    """

    UNBOUNDED = "unbounded"
    SLACK_BOUNDED = "slack_bounded"
    FULLY_BOUNDED = "fully_bounded"

    @property
    def has_parameter_bounds(self) -> bool:
        return self is BoundMode.FULLY_BOUNDED

    @property
    def has_any_bounds(self) -> bool:
        return self is not BoundMode.UNBOUNDED


# Codes for non-fatal conditions encountered during a solve
class SolverWarning:
    """Constants for soft warnings recorded by the solver."""

    REDUNDANT_CONSTRAINTS = 1
    RESTORATION_INCOMPLETE = 2
    SUBPROBLEM_NOT_CONVERGED = 3


WARNING_MESSAGES = {
    SolverWarning.REDUNDANT_CONSTRAINTS: (
        "Constraint Jacobian is ill-conditioned; the constraints may be redundant."
    ),
    SolverWarning.RESTORATION_INCOMPLETE: (
        "Feasibility restoration did not reach a feasible point; "
        "continuing from the least infeasible point found."
    ),
    SolverWarning.SUBPROBLEM_NOT_CONVERGED: (
        "Subproblem reached its minor iteration limit before converging."
    ),
}
