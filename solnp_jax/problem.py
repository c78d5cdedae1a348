"""Problem data: bounds specifications, validation and the canonical layout.

User input arrives as matrices whose column count encodes the meaning
(1 column = guess, 2 = ``[lower, upper]``, 3 = ``[guess, lower, upper]``).
It is parsed once into one of the ``BoundsSpec`` variants and then into a
``Problem`` record holding the canonical parameter vector

    p = [inequality slacks (n_ineq) | decision variables (n)]

and the matching bounds matrix. Nothing downstream inspects column counts.
"""

import dataclasses
from typing import Any, Optional, Union

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float

from solnp_jax.errors import PreconditionError
from solnp_jax.types import BoundMode, CostFn


def _as_vector(value: ArrayLike) -> Float[Array, " n"]:
    return jnp.ravel(jnp.asarray(value, dtype=float))


class Unbounded(eqx.Module):
    """Free variables with an initial guess."""

    guess: Float[Array, " n"] = eqx.field(converter=_as_vector)


class Range(eqx.Module):
    """Bounded variables; the initial guess is the midpoint of the range."""

    lower: Float[Array, " n"] = eqx.field(converter=_as_vector)
    upper: Float[Array, " n"] = eqx.field(converter=_as_vector)

    def __check_init__(self):
        _check_bounds(self.lower, self.upper)

    @property
    def guess(self) -> Float[Array, " n"]:
        return 0.5 * (self.lower + self.upper)


class RangeWithGuess(eqx.Module):
    """Bounded variables with an explicit, strictly interior, initial guess."""

    guess: Float[Array, " n"] = eqx.field(converter=_as_vector)
    lower: Float[Array, " n"] = eqx.field(converter=_as_vector)
    upper: Float[Array, " n"] = eqx.field(converter=_as_vector)

    def __check_init__(self):
        _check_bounds(self.lower, self.upper)
        if self.guess.shape != self.lower.shape:
            raise PreconditionError("Initial guess and bounds have different lengths.")
        if bool(jnp.any(self.guess <= self.lower)) or bool(
            jnp.any(self.guess >= self.upper)
        ):
            raise PreconditionError("Initial values must be strictly within the bounds.")


BoundsSpec = Union[Unbounded, Range, RangeWithGuess]


def _check_bounds(lower, upper):
    if lower.shape != upper.shape:
        raise PreconditionError("Lower and upper bounds have different lengths.")
    if bool(jnp.any(upper - lower <= 0)):
        raise PreconditionError(
            "The lower bounds must be strictly less than the upper bounds."
        )


def _as_matrix(data: ArrayLike, name: str) -> np.ndarray:
    matrix = np.asarray(data, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    if matrix.ndim != 2:
        raise PreconditionError(f"{name} must be a vector or a matrix.")
    return matrix


def parameter_spec(data: Union[BoundsSpec, ArrayLike]) -> BoundsSpec:
    """Parse the parameter specification.

    Args:
        data: A ``BoundsSpec`` or a matrix with 1 (guess), 2 (``[lower, upper]``)
            or 3 (``[guess, lower, upper]``) columns. A 1-D array is a guess.

    Returns:
        The parsed specification.

    Raises:
        PreconditionError: On an empty or malformed specification.
    """
    if isinstance(data, (Unbounded, Range, RangeWithGuess)):
        spec = data
    else:
        matrix = _as_matrix(data, "Parameter array")
        if matrix.shape[0] == 0:
            raise PreconditionError("At least one parameter is required.")
        width = matrix.shape[1]
        if width == 1:
            spec = Unbounded(matrix[:, 0])
        elif width == 2:
            spec = Range(matrix[:, 0], matrix[:, 1])
        elif width == 3:
            spec = RangeWithGuess(matrix[:, 0], matrix[:, 1], matrix[:, 2])
        else:
            raise PreconditionError("Parameter array must have three columns or less.")
    if spec.guess.shape[0] == 0:
        raise PreconditionError("At least one parameter is required.")
    return spec


def inequality_spec(
    data: Union[BoundsSpec, ArrayLike, None],
) -> Optional[Union[Range, RangeWithGuess]]:
    """Parse the inequality constraint specification.

    ``None``, an empty matrix, a single column or an ``Unbounded`` spec all
    mean "no inequality constraints".
    """
    if data is None or isinstance(data, Unbounded):
        return None
    if isinstance(data, (Range, RangeWithGuess)):
        return data if data.lower.shape[0] > 0 else None
    matrix = _as_matrix(data, "Inequality array")
    width = matrix.shape[1]
    if matrix.shape[0] == 0 or width <= 1:
        return None
    if width == 2:
        return Range(matrix[:, 0], matrix[:, 1])
    if width == 3:
        return RangeWithGuess(matrix[:, 0], matrix[:, 1], matrix[:, 2])
    raise PreconditionError("Inequality constraints must have 2 or 3 columns.")


class Problem(eqx.Module):
    """Canonical, scale-free description of one problem.

    Attributes:
        parameters: Initial parameter vector ``[slacks | decision variables]``.
        bounds: Bounds of the first ``b`` parameters, shape
            ``(b, 2)``, or ``None`` in ``UNBOUNDED`` mode.
        n_parameters: Number of decision variables ``n``.
        n_ineq: Number of inequality constraints.
        n_eq: Number of equality constraints (known after the first cost call).
        mode: Which parts of the parameter vector are bounded.
    """

    parameters: Float[Array, " n_total"]
    bounds: Optional[Float[Array, "b 2"]]
    n_parameters: int = eqx.field(static=True)
    n_ineq: int = eqx.field(static=True)
    mode: BoundMode = eqx.field(static=True)
    n_eq: int = eqx.field(static=True, default=0)

    @property
    def n_constraints(self) -> int:
        return self.n_eq + self.n_ineq

    @property
    def n_total(self) -> int:
        return self.n_parameters + self.n_ineq

    def with_equality_count(self, n_eq: int) -> "Problem":
        return dataclasses.replace(self, n_eq=n_eq)

    def decision_variables(self, parameters: Float[Array, " n_total"]) -> Float[Array, " n"]:
        return parameters[self.n_ineq :]


def build_problem(
    parameters: Union[BoundsSpec, ArrayLike],
    inequality: Union[BoundsSpec, ArrayLike, None] = None,
) -> Problem:
    """Validate the user specifications and build the canonical ``Problem``."""
    param = parameter_spec(parameters)
    ineq = inequality_spec(inequality)

    guess = param.guess
    n = guess.shape[0]
    if isinstance(param, Unbounded):
        param_bounds = None
    else:
        param_bounds = jnp.stack([param.lower, param.upper], axis=1)

    if ineq is None:
        n_ineq = 0
        p0 = guess
        bounds = param_bounds
    else:
        n_ineq = ineq.lower.shape[0]
        p0 = jnp.concatenate([ineq.guess, guess])
        ineq_bounds = jnp.stack([ineq.lower, ineq.upper], axis=1)
        if param_bounds is None:
            bounds = ineq_bounds
        else:
            bounds = jnp.concatenate([ineq_bounds, param_bounds], axis=0)

    if param_bounds is not None:
        mode = BoundMode.FULLY_BOUNDED
    elif n_ineq > 0:
        mode = BoundMode.SLACK_BOUNDED
    else:
        mode = BoundMode.UNBOUNDED

    return Problem(
        parameters=p0,
        bounds=bounds,
        n_parameters=n,
        n_ineq=n_ineq,
        mode=mode,
    )


def initial_hessian(hessian: Optional[ArrayLike], problem: Problem) -> Float[Array, "n n"]:
    """Validate the user Hessian (default identity)."""
    size = problem.n_total
    if hessian is None:
        return jnp.eye(size)
    h = jnp.asarray(hessian, dtype=float)
    if h.ndim != 2 or h.shape != (size, size):
        raise PreconditionError(
            "The provided hessian matrix override was of invalid dimension: "
            f"expected ({size}, {size}), got {tuple(h.shape)}."
        )
    return h


class CostEvaluator:
    """Wraps the user cost function, counting calls and checking output length."""

    def __init__(self, fn: CostFn, args: Any = None):
        self.fn = fn
        self.args = args
        self.n_evaluations = 0
        self.size: Optional[int] = None

    def __call__(self, x: Float[Array, " n"]) -> Float[Array, " m"]:
        cost = jnp.ravel(jnp.asarray(self.fn(x, self.args), dtype=x.dtype))
        self.n_evaluations += 1
        if self.size is None:
            self.size = cost.shape[0]
        elif cost.shape[0] != self.size:
            raise PreconditionError(
                f"The cost function returned {cost.shape[0]} values, "
                f"expected {self.size}."
            )
        return cost
