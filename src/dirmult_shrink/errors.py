"""
Error and warning classes.

Structural problems with the input raise immediately. Conditions the fitting
engine can recover from are ``RuntimeWarning`` subclasses: they are counted in
the fit diagnostics and, where the result is less reliable, issued through
:func:`warnings.warn`.
"""


class DirMultError(Exception):
    """Base class for errors raised by dirmult_shrink."""
    pass


class InvalidInputError(DirMultError, ValueError):
    """Raised for malformed count matrices, options or weight vectors."""
    pass


class DomainError(DirMultError, ValueError):
    """Raised when a special function is evaluated outside x > 0."""
    pass


class FitWarning(RuntimeWarning):
    """Base class for recoverable conditions met while fitting."""
    pass


class DegenerateRowError(FitWarning):
    """A row with total count 0. Skipped and counted, never raised."""
    pass


class NumericalInstabilityError(FitWarning):
    """An alpha update went non-finite and was clamped to the floor."""
    pass


class NonConvergenceError(FitWarning):
    """The fit stopped before meeting its tolerance.

    Issued as a warning by the estimator. Raised only by
    :meth:`FittedModel.raise_for_convergence`.
    """
    pass
