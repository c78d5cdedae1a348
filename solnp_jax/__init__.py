"""SOLNP-JAX: augmented-Lagrangian SQP (SOLNP) on top of JAX.

This package provides an implementation of Ye's SOLNP algorithm for general
nonlinear programs with equality constraints, bounded inequality constraints
and box bounds. Gradients are estimated by forward finite differences of a
black-box cost function, so the objective and constraints never need to be
differentiable by JAX.
"""

from solnp_jax.direction import newton_step, trust_scale
from solnp_jax.errors import (
    NumericalError,
    PreconditionError,
    SingularMatrixError,
    SolnpWarning,
)
from solnp_jax.hessian import bfgs_update, diagonalize, symmetrize
from solnp_jax.merit import AugmentedLagrangian, bracketing_line_search
from solnp_jax.problem import (
    BoundsSpec,
    Problem,
    Range,
    RangeWithGuess,
    Unbounded,
    build_problem,
)
from solnp_jax.restoration import project_onto_constraints, restore_feasibility
from solnp_jax.solver import SOLNP, SOLNPState, SolveResult, solve
from solnp_jax.subproblem import SubproblemResult, solve_subproblem
from solnp_jax.types import BoundMode, CostFn, SolverWarning

__all__ = [
    # Main solver
    "SOLNP",
    "SOLNPState",
    "SolveResult",
    "solve",
    # Problem specification
    "BoundsSpec",
    "Unbounded",
    "Range",
    "RangeWithGuess",
    "Problem",
    "build_problem",
    # Types
    "BoundMode",
    "CostFn",
    "SolverWarning",
    # Errors
    "PreconditionError",
    "NumericalError",
    "SingularMatrixError",
    "SolnpWarning",
    # Subproblem
    "SubproblemResult",
    "solve_subproblem",
    "newton_step",
    "trust_scale",
    "project_onto_constraints",
    "restore_feasibility",
    # Merit function
    "AugmentedLagrangian",
    "bracketing_line_search",
    # Hessian utilities
    "bfgs_update",
    "symmetrize",
    "diagonalize",
]
