"""Inner subproblem solver of SOLNP.

One call performs a full "major iteration" worth of work on the augmented
Lagrangian of the current linearisation:

A. Rescale cost, parameters, bounds, multipliers and Hessian to unit
   magnitudes (:mod:`solnp_jax.scaling`).
B. If the current point violates the constraints, restore feasibility of the
   linearisation (:mod:`solnp_jax.restoration`).
C. Run a damped quasi-Newton descent on the merit function: finite-difference
   gradient, BFGS update, interior Newton step, bracketing line search.
D. Unscale and symmetrise the Hessian.

All inputs and outputs are in user units; every intermediate quantity is
scaled.
"""

import logging

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from solnp_jax.direction import newton_step, trust_scale
from solnp_jax.hessian import bfgs_update, symmetrize
from solnp_jax.merit import (
    AugmentedLagrangian,
    bracketing_line_search,
    constraint_jacobian,
    merit_gradient,
    scaled_cost,
    slack_residuals,
)
from solnp_jax.problem import CostEvaluator, Problem
from solnp_jax.restoration import project_onto_constraints, restore_feasibility
from solnp_jax.scaling import compute_scale
from solnp_jax.types import SolverWarning
from solnp_jax.utils import condition_number, infinity_norm

logger = logging.getLogger(__name__)


class SubproblemResult(eqx.Module):
    """Output of one inner solve, in user units.

    Attributes:
        parameters: Updated parameter vector ``[slacks | x]``.
        multipliers: Updated multiplier estimate.
        hessian: Updated, symmetric, curvature matrix.
        mu: Damping to carry into the next inner solve.
        reduction: Relative merit reduction of the last minor iteration.
        minor_iterations: Number of minor iterations performed.
        warnings: Soft warning codes raised during the solve.
    """

    parameters: Float[Array, " n_total"]
    multipliers: Float[Array, " k"]
    hessian: Float[Array, "n_total n_total"]
    mu: float
    reduction: float
    minor_iterations: int = eqx.field(static=True)
    warnings: tuple[int, ...] = eqx.field(static=True, default=())


def solve_subproblem(
    evaluator: CostEvaluator,
    problem: Problem,
    parameters: Float[Array, " n_total"],
    multipliers: Float[Array, " k"],
    cost: Float[Array, " m"],
    hessian: Float[Array, "n_total n_total"],
    mu: float,
    rho: float,
    max_iterations: int,
    delta: float,
    tolerance: float,
) -> SubproblemResult:
    """Solve the augmented-Lagrangian subproblem around ``parameters``.

    Args:
        evaluator: User cost function wrapper.
        problem: Problem layout and (unscaled) bounds.
        parameters: Current parameter vector ``[slacks | x]``.
        multipliers: Current multipliers (length ``n_eq + n_ineq``, or 1).
        cost: Cost vector at ``parameters`` as returned by the user function.
        hessian: Current curvature matrix.
        mu: Current damping.
        rho: Penalty coefficient.
        max_iterations: Cap on minor iterations.
        delta: Finite-difference step (in scaled units).
        tolerance: Convergence and restoration tolerance.

    Returns:
        SubproblemResult with the improved point.

    Raises:
        SingularMatrixError: If the unconstrained projection hits a zero pivot.
        NumericalError: If no finite interior Newton step can be found.
    """
    n_eq = problem.n_eq
    n_ineq = problem.n_ineq
    n_constraints = problem.n_constraints
    n_total = problem.n_total
    mode = problem.mode
    dtype = parameters.dtype
    notes = []

    # Phase A: rescale
    scale = compute_scale(problem, cost, parameters, tolerance)
    cost = scale.scale_cost(cost)
    p = scale.scale_parameters(parameters)
    bounds = None if problem.bounds is None else scale.scale_bounds(problem.bounds)
    entry_multipliers = scale.scale_multipliers(multipliers)
    hessian = scale.scale_hessian(hessian)

    def cost_at(q):
        return scaled_cost(evaluator, scale, q, n_ineq)

    jacobian = jnp.zeros((n_constraints, n_total), dtype=dtype)
    offset = jnp.zeros(n_constraints, dtype=dtype)
    gradient = jnp.zeros(n_total, dtype=dtype)
    recompute = True

    # Phase B: linearise and restore feasibility
    if n_constraints > 0:
        gradient, jacobian = constraint_jacobian(
            cost_at, p, cost, n_eq, n_ineq, delta
        )
        constraints = slack_residuals(cost, p, n_eq, n_ineq)[1:]
        if float(condition_number(jacobian)) > 1.0 / float(jnp.finfo(dtype).eps):
            notes.append(SolverWarning.REDUNDANT_CONSTRAINTS)
        offset = jacobian @ p - constraints

        recompute = False
        if float(infinity_norm(constraints)) >= tolerance:
            recompute = True
            if not mode.has_any_bounds:
                p = project_onto_constraints(p, jacobian, constraints)
            else:
                restored = restore_feasibility(
                    p, jacobian, constraints, bounds, mode, tolerance
                )
                p = restored.parameters
                if not restored.complete:
                    notes.append(SolverWarning.RESTORATION_INCOMPLETE)
                offset = jacobian @ p
                logger.debug("restoration: %d steps", restored.steps)

    merit_fn = AugmentedLagrangian(
        jacobian=jacobian,
        offset=offset,
        multipliers=entry_multipliers,
        rho=float(rho),
        n_eq=n_eq,
        n_ineq=n_ineq,
    )

    def merit_at(q):
        return float(merit_fn(cost_at(q), q))

    if recompute:
        cost = cost_at(p)
    merit = float(merit_fn(cost, p))

    # Phase C: quasi-Newton descent
    y = jnp.zeros_like(multipliers)
    prev_p = None
    prev_gradient = None
    reduction = 0.0
    minor = 0
    while minor < max_iterations:
        minor += 1
        if recompute:
            gradient = merit_gradient(merit_at, p, merit, n_ineq, delta)
        if prev_p is not None:
            hessian = bfgs_update(hessian, p - prev_p, gradient - prev_gradient)

        dx = trust_scale(p, bounds, mode)
        step = newton_step(
            hessian,
            gradient,
            jacobian if n_constraints > 0 else None,
            p,
            bounds,
            dx,
            mu / 10.0,
            y,
        )
        mu = step.mu
        y = step.multipliers

        search = bracketing_line_search(
            merit_at, p, step.parameters, merit, tolerance
        )

        prev_p = p
        prev_gradient = gradient
        recompute = True

        reduction = (merit - search.best_merit) / (1.0 + abs(merit))
        stalled = merit <= search.best_merit or reduction < tolerance
        p = search.parameters
        merit = search.merit
        if stalled:
            break

    # Phase D: unscale
    if reduction > tolerance:
        notes.append(SolverWarning.SUBPROBLEM_NOT_CONVERGED)
    logger.debug(
        "subproblem: %d minor iterations, merit %.6e, reduction %.3e",
        minor,
        merit,
        reduction,
    )
    return SubproblemResult(
        parameters=scale.unscale_parameters(p),
        multipliers=scale.unscale_multipliers(y),
        hessian=symmetrize(scale.unscale_hessian(hessian)),
        mu=float(mu),
        reduction=float(reduction),
        minor_iterations=minor,
        warnings=tuple(notes),
    )
