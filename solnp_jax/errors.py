"""Exceptions and warning categories raised by SOLNP-JAX."""


class PreconditionError(ValueError):
    """The problem data is malformed.

    Raised before the cost function is evaluated (or on the first evaluation
    when the cost vector has the wrong length).
    """


class NumericalError(ArithmeticError):
    """A linear algebra step failed and the solve cannot continue."""


class SingularMatrixError(NumericalError):
    """A QR factorisation produced a zero pivot."""


class SolnpWarning(RuntimeWarning):
    """Non-fatal condition encountered during a solve."""
