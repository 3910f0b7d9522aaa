"""
Exception hierarchy for PyAnovaPower.

All exceptions inherit from PyAnovaPowerError so callers can catch any
library-specific error. Input-validation errors also inherit from
ValueError, which is what the power functions have always raised.

Every validation error is raised before any data is synthesized or any
model is fitted.
"""


class PyAnovaPowerError(Exception):
    """Base exception for all PyAnovaPower errors."""
    pass


class ValidationError(PyAnovaPowerError, ValueError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class InvalidDesignError(ValidationError):
    """
    The design cannot be analysed by the exact path.

    Raised for malformed design codes, a per-cell sample size below the
    number of design cells, unequal cell sizes, or a covariance matrix
    that cannot be realised by an exact sample.
    """
    pass


class NotPositiveSemidefiniteError(InvalidDesignError):
    """
    Covariance matrix is not positive semi-definite.

    Attributes:
        min_eigenvalue: Smallest eigenvalue of the offending matrix
    """

    def __init__(self, message: str, min_eigenvalue: float | None = None):
        super().__init__(message)
        self.min_eigenvalue = min_eigenvalue


class InvalidParameterError(ValidationError):
    """
    An analysis option is out of range or not recognised.

    Raised for alpha outside (0, 1), an unknown sphericity correction,
    an unknown marginal-means model, or a malformed comparison spec.
    """
    pass


class UnsupportedContrastError(ValidationError):
    """
    The requested contrast family cannot be used for exact power.

    Multiplicity-adjusted families (tukey, dunnett) have no single
    noncentral distribution and are rejected along with unknown names.
    """
    pass


class UnequalSampleSizeWarning(UserWarning):
    """Cell sizes differ; the exact path needs one n for every cell."""
    pass
