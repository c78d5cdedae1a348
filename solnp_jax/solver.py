"""SOLNP solver: the outer (major iteration) controller.

This module contains the ``SOLNP`` solver, an augmented-Lagrangian SQP method
for

    minimize    f(x)
    subject to  g(x) = 0
                l_h <= h(x) <= u_h
                l_x <= x <= u_x

driven entirely by a black-box cost function returning ``[f, g..., h...]``.
Inequalities are turned into equalities ``h(x) - s = 0`` with bounded slacks
``s`` that are stored in front of the decision variables.

Each major iteration hands the current point to the inner subproblem solver
(:func:`solnp_jax.subproblem.solve_subproblem`) and then adapts the penalty
from the trend of the constraint norm:

- the norm fell below ``10 * tol``: drop the penalty and cap ``mu``,
- the norm stayed below 5x its previous value: ``rho /= 5``,
- the norm grew by more than 10x: ``rho = 5 * max(rho, sqrt(tol))``,

and, when neither the objective nor the feasibility improved, discards the
multipliers and the off-diagonal curvature.

The solver exposes the ``init`` / ``step`` / ``terminate`` / ``postprocess``
lifecycle of an optimistix minimiser, run eagerly by :meth:`SOLNP.run`,
because the cost function is an arbitrary Python callable.
"""

import logging
import math
import warnings
from typing import Any, Optional, Union

import equinox as eqx
import jax.numpy as jnp
import optimistix as optx
from jaxtyping import Array, ArrayLike, Float

from solnp_jax.errors import PreconditionError, SolnpWarning
from solnp_jax.hessian import diagonalize
from solnp_jax.problem import (
    BoundsSpec,
    CostEvaluator,
    Problem,
    build_problem,
    initial_hessian,
)
from solnp_jax.subproblem import solve_subproblem
from solnp_jax.types import WARNING_MESSAGES, CostFn
from solnp_jax.utils import euclidean_norm

logger = logging.getLogger(__name__)


class SOLNPState(eqx.Module):
    """State carried across SOLNP major iterations.

    Attributes:
        problem: Problem layout, including the equality count.
        parameters: Current parameter vector ``[slacks | x]``.
        multipliers: Lagrange multiplier estimate.
        hessian: Curvature matrix.
        cost: Cost vector at ``parameters`` (user units).
        objective: Objective value at ``parameters``.
        rho: Penalty coefficient.
        mu: Damping of the Newton step.
        objective_change: Relative objective change of the last iteration.
        constraint_norm: Euclidean norm of the constraint residuals.
        iteration: Number of completed major iterations.
        converged: Whether the convergence test has passed.
        history: Objective values, one per completed iteration plus the start.
        warnings: Recorded ``(iteration, code)`` soft warnings.
    """

    problem: Problem
    parameters: Float[Array, " n_total"]
    multipliers: Float[Array, " k"]
    hessian: Float[Array, "n_total n_total"]
    cost: Float[Array, " m"]
    objective: float
    rho: float
    mu: float
    objective_change: float
    constraint_norm: float
    iteration: int
    converged: bool
    history: tuple[float, ...]
    warnings: tuple[tuple[int, int], ...]


class SolveResult(eqx.Module):
    """Outcome of a SOLNP solve.

    Attributes:
        value: Objective value at the optimum.
        optimum: Decision variables (slacks excluded).
        converged: Whether the convergence test passed.
        hessian: Final curvature matrix (symmetric).
        multipliers: Final Lagrange multiplier estimate.
        history: Objective value at the start and after every major iteration.
        iterations: Number of major iterations performed.
        n_evaluations: Number of cost function calls.
        warnings: Recorded ``(iteration, code)`` soft warnings, codes from
            :class:`solnp_jax.types.SolverWarning`.
        result: ``optx.RESULTS.successful`` or ``optx.RESULTS.max_steps_reached``.
    """

    value: float
    optimum: Float[Array, " n"]
    converged: bool
    hessian: Float[Array, "n_total n_total"]
    multipliers: Float[Array, " k"]
    history: Float[Array, " iterations"]
    iterations: int
    n_evaluations: int
    warnings: tuple[tuple[int, int], ...]
    result: optx.RESULTS


class SOLNP(eqx.Module):
    """SOLNP minimiser (augmented-Lagrangian SQP with finite differences).

    Attributes:
        rho: Initial penalty coefficient.
        max_major_iterations: Cap on major (outer) iterations.
        max_minor_iterations: Cap on minor iterations per subproblem.
        delta: Finite-difference step, relative to the scaled variables.
        tolerance: Convergence, feasibility and clamping tolerance.

    Example:
        >>> import jax.numpy as jnp
        >>> from solnp_jax import SOLNP
        >>>
        >>> def box(x, args):
        ...     return jnp.array([
        ...         -x[0] * x[1] * x[2],
        ...         4 * x[0] * x[1] + 2 * x[1] * x[2] + 2 * x[2] * x[0] - 100,
        ...     ])
        >>>
        >>> bounds = jnp.array([[1.0, 0.0, 10.0], [5.0, 0.0, 10.0], [5.0, 0.0, 10.0]])
        >>> result = SOLNP().run(box, bounds)
    """

    rho: float = eqx.field(default=1.0, converter=float)
    max_major_iterations: int = eqx.field(static=True, default=400)
    max_minor_iterations: int = eqx.field(static=True, default=800)
    delta: float = eqx.field(default=1e-7, converter=float)
    tolerance: float = eqx.field(default=1e-8, converter=float)

    def __check_init__(self):
        if not self.tolerance > 0.0:
            raise PreconditionError("Tolerance must be positive.")
        if math.isinf(self.tolerance * self.tolerance):
            raise PreconditionError("Tolerance is too large: its square overflows.")
        if not self.delta > 0.0:
            raise PreconditionError("Finite-difference step must be positive.")
        if self.rho < 0.0:
            raise PreconditionError("Penalty coefficient must be non-negative.")
        if self.max_major_iterations < 1 or self.max_minor_iterations < 1:
            raise PreconditionError("Iteration limits must be at least 1.")

    def _constraint_residuals(
        self,
        problem: Problem,
        parameters: Float[Array, " n_total"],
        cost: Float[Array, " m"],
    ) -> tuple[Float[Array, " n_total"], Float[Array, " nc"]]:
        """Constraint residuals, moving the slacks onto feasible inequality values.

        If every inequality value lies strictly inside its bounds the slacks
        are set to those values.
        """
        constraints = cost[1:]
        n_eq = problem.n_eq
        n_ineq = problem.n_ineq
        if n_ineq == 0:
            return parameters, constraints
        values = constraints[n_eq:]
        lower = problem.bounds[:n_ineq, 0]
        upper = problem.bounds[:n_ineq, 1]
        if bool(jnp.all(values > lower)) and bool(jnp.all(values < upper)):
            parameters = parameters.at[:n_ineq].set(values)
        constraints = constraints.at[n_eq:].set(values - parameters[:n_ineq])
        return parameters, constraints

    def init(
        self,
        evaluator: CostEvaluator,
        problem: Problem,
        hessian: Float[Array, "n_total n_total"],
    ) -> SOLNPState:
        """Evaluate the starting point and build the initial state.

        Raises:
            PreconditionError: If the cost vector is shorter than
                ``1 + n_ineq``.
        """
        parameters = problem.parameters
        cost = evaluator(problem.decision_variables(parameters))
        if cost.shape[0] < problem.n_ineq + 1:
            raise PreconditionError(
                "The number of constraints in the cost function does not match "
                f"the inequality specification: got {cost.shape[0]} values for "
                f"{problem.n_ineq} inequality constraints."
            )
        problem = problem.with_equality_count(cost.shape[0] - 1 - problem.n_ineq)

        rho = self.rho
        constraint_norm = 0.0
        if problem.n_constraints > 0:
            multipliers = jnp.zeros(problem.n_constraints, dtype=cost.dtype)
            parameters, constraints = self._constraint_residuals(
                problem, parameters, cost
            )
            constraint_norm = float(euclidean_norm(constraints))
            if max(constraint_norm - 10.0 * self.tolerance, problem.n_ineq) <= 0:
                rho = 0.0
        else:
            multipliers = jnp.zeros(1, dtype=cost.dtype)

        objective = float(cost[0])
        logger.debug(
            "SOLNP start: n=%d, n_eq=%d, n_ineq=%d, mode=%s, f=%.6e, |c|=%.3e",
            problem.n_parameters,
            problem.n_eq,
            problem.n_ineq,
            problem.mode.value,
            objective,
            constraint_norm,
        )
        return SOLNPState(
            problem=problem,
            parameters=parameters,
            multipliers=multipliers,
            hessian=hessian,
            cost=cost,
            objective=objective,
            rho=rho,
            mu=float(problem.n_parameters),
            objective_change=0.0,
            constraint_norm=constraint_norm,
            iteration=0,
            converged=False,
            history=(objective,),
            warnings=(),
        )

    def step(self, evaluator: CostEvaluator, state: SOLNPState) -> SOLNPState:
        """Perform one major iteration.

        This method:
        1. Solves the augmented-Lagrangian subproblem at the current point.
        2. Re-evaluates the cost function at the new point.
        3. Adapts the penalty from the constraint-norm trend.
        4. Resets multipliers and curvature when progress has stalled.
        5. Applies the convergence test.
        """
        problem = state.problem
        tol = self.tolerance
        iteration = state.iteration + 1

        sub = solve_subproblem(
            evaluator,
            problem,
            state.parameters,
            state.multipliers,
            state.cost,
            state.hessian,
            state.mu,
            state.rho,
            self.max_minor_iterations,
            self.delta,
            tol,
        )
        for code in sub.warnings:
            warnings.warn(
                f"Major iteration {iteration}: {WARNING_MESSAGES[code]}",
                SolnpWarning,
                stacklevel=2,
            )

        parameters = sub.parameters
        multipliers = sub.multipliers
        hessian = sub.hessian
        mu = sub.mu
        rho = state.rho

        cost = evaluator(problem.decision_variables(parameters))
        objective = float(cost[0])
        objective_change = (state.objective - objective) / max(abs(objective), 1.0)

        constraint_norm = state.constraint_norm
        if problem.n_constraints > 0:
            parameters, constraints = self._constraint_residuals(
                problem, parameters, cost
            )
            new_norm = float(euclidean_norm(constraints))

            if new_norm < 10.0 * tol:
                rho = 0.0
                mu = min(mu, tol)
            if new_norm < 5.0 * constraint_norm:
                rho = rho / 5.0
            elif new_norm > 10.0 * constraint_norm:
                rho = 5.0 * max(rho, math.sqrt(tol))

            if max(tol + objective_change, constraint_norm - new_norm) <= 0.0:
                multipliers = jnp.zeros_like(multipliers)
                hessian = diagonalize(hessian)

            constraint_norm = new_norm

        converged = math.hypot(objective_change, constraint_norm) <= tol

        logger.debug(
            "major %d: f=%.10e, df=%.3e, |c|=%.3e, rho=%.3e, mu=%.3e, "
            "minor=%d, reduction=%.3e",
            iteration,
            objective,
            objective_change,
            constraint_norm,
            rho,
            mu,
            sub.minor_iterations,
            sub.reduction,
        )

        return SOLNPState(
            problem=problem,
            parameters=parameters,
            multipliers=multipliers,
            hessian=hessian,
            cost=cost,
            objective=objective,
            rho=rho,
            mu=mu,
            objective_change=objective_change,
            constraint_norm=constraint_norm,
            iteration=iteration,
            converged=converged,
            history=state.history + (objective,),
            warnings=state.warnings + tuple((iteration, code) for code in sub.warnings),
        )

    def terminate(self, state: SOLNPState) -> bool:
        """Stop once converged or when the major iteration cap is reached."""
        return state.converged or state.iteration >= self.max_major_iterations

    def postprocess(self, evaluator: CostEvaluator, state: SOLNPState) -> SolveResult:
        """Build the user-facing result from the final state."""
        if state.converged:
            result = optx.RESULTS.successful
            logger.info(
                "SOLNP converged in %d major iterations (%d evaluations), f=%.10e",
                state.iteration,
                evaluator.n_evaluations,
                state.objective,
            )
        else:
            result = optx.RESULTS.max_steps_reached
            logger.info(
                "SOLNP stopped after %d major iterations without converging",
                state.iteration,
            )
        return SolveResult(
            value=state.objective,
            optimum=state.problem.decision_variables(state.parameters),
            converged=state.converged,
            hessian=state.hessian,
            multipliers=state.multipliers,
            history=jnp.asarray(state.history),
            iterations=state.iteration,
            n_evaluations=evaluator.n_evaluations,
            warnings=state.warnings,
            result=result,
        )

    def run(
        self,
        fn: CostFn,
        parameters: Union[BoundsSpec, ArrayLike],
        inequality: Union[BoundsSpec, ArrayLike, None] = None,
        hessian: Optional[ArrayLike] = None,
        args: Any = None,
    ) -> SolveResult:
        """Solve a problem.

        Args:
            fn: Cost function ``fn(x, args) -> [f, g..., h...]``.
            parameters: ``BoundsSpec`` or matrix with 1 (guess), 2
                (``[lower, upper]``) or 3 (``[guess, lower, upper]``) columns.
            inequality: ``BoundsSpec`` or matrix of inequality bounds with 2 or
                3 columns; ``None`` or a single column means none.
            hessian: Initial curvature matrix of size ``n + n_ineq``
                (default identity).
            args: Extra argument passed through to ``fn``.

        Returns:
            SolveResult.

        Raises:
            PreconditionError: On malformed input, before ``fn`` is called
                (cost-vector length is checked on the first call).
            SingularMatrixError: If the unconstrained feasibility projection
                is singular.
        """
        problem = build_problem(parameters, inequality)
        h0 = initial_hessian(hessian, problem)
        evaluator = CostEvaluator(fn, args)

        state = self.init(evaluator, problem, h0)
        while not self.terminate(state):
            state = self.step(evaluator, state)
        return self.postprocess(evaluator, state)


def solve(
    fn: CostFn,
    parameters: Union[BoundsSpec, ArrayLike],
    inequality: Union[BoundsSpec, ArrayLike, None] = None,
    hessian: Optional[ArrayLike] = None,
    *,
    args: Any = None,
    **options: Any,
) -> SolveResult:
    """Solve a nonlinear program with SOLNP.

    Keyword options are the fields of :class:`SOLNP` (``rho``,
    ``max_major_iterations``, ``max_minor_iterations``, ``delta``,
    ``tolerance``).

    Example:
        >>> import jax.numpy as jnp
        >>> from solnp_jax import solve
        >>>
        >>> def rosenbrock(x, args):
        ...     return (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2
        >>>
        >>> result = solve(rosenbrock, jnp.array([-2.0, -2.0]))
    """
    return SOLNP(**options).run(fn, parameters, inequality, hessian, args)
