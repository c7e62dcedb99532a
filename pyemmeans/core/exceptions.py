"""
Exception hierarchy for pyemmeans.

All exceptions inherit from PyEmmeansError to allow catching any
library-specific error. The analysis-level errors raised by the fitting,
marginal-estimation and contrast stages carry the outcome variable and the
model name that triggered them, so a batch caller can report which
statistical claim failed.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""

from __future__ import annotations

from typing import Any


class PyEmmeansError(Exception):
    """Base exception for all pyemmeans errors.

    Attributes:
        outcome: Name of the response variable being analysed, if known.
        model: Name of the model specification, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        outcome: str | None = None,
        model: str | None = None,
    ):
        super().__init__(message)
        self.outcome = outcome
        self.model = model

    def __str__(self) -> str:
        base = super().__str__()
        context = []
        if self.outcome is not None:
            context.append(f"outcome={self.outcome!r}")
        if self.model is not None:
            context.append(f"model={self.model!r}")
        if context:
            return f"{base} [{', '.join(context)}]"
        return base


class ValidationError(PyEmmeansError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.
    """
    pass


class DomainViolation(ValidationError):
    """
    Outcome values are incompatible with the declared error family.

    Attributes:
        family: Name of the error family.
        n_invalid: Number of offending observations.
        expected: Human-readable description of the valid domain.
    """

    def __init__(
        self,
        message: str,
        *,
        family: str | None = None,
        n_invalid: int | None = None,
        expected: str | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.family = family
        self.n_invalid = n_invalid
        self.expected = expected


class NumericalError(PyEmmeansError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
        rank: Numerical rank, if computed
        expected_rank: Expected rank (typically the number of columns)
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
        rank: int | None = None,
        expected_rank: int | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.matrix_name = matrix_name
        self.condition_number = condition_number
        self.rank = rank
        self.expected_rank = expected_rank


class RankDeficiency(SingularMatrixError):
    """
    Fixed-effect design matrix does not have full column rank.

    Typical cause: a factor level (or level combination in an interaction)
    with zero observations.

    Attributes:
        aliased: Names of the columns that are linear combinations of
            earlier columns.
    """

    def __init__(
        self,
        message: str,
        *,
        aliased: tuple[str, ...] = (),
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.aliased = tuple(aliased)


class SingularCovariance(NumericalError):
    """
    A joint standard error could not be computed from the coefficient
    covariance matrix.

    Attributes:
        variance: The offending (non-positive or non-finite) variance.
    """

    def __init__(
        self,
        message: str,
        *,
        variance: float | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.variance = variance


class ConvergenceError(PyEmmeansError):
    """
    Iterative algorithm failed to converge.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations', 'non_finite')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold


class ConvergenceFailure(ConvergenceError):
    """
    A mixed-model fit did not reach a stable solution.

    Raised instead of returning a degenerate fit; the caller decides
    whether to skip the analysis or abort the batch.
    """
    pass


class EstimationError(PyEmmeansError):
    """Base class for marginal-mean and contrast request errors."""
    pass


class UnsupportedCell(EstimationError):
    """
    A requested reference-grid cell cannot be estimated.

    Raised when a factor level or covariate value was never observed, or
    when a nonlinear covariate would have to be averaged over.

    Attributes:
        cell: The requested (name, value) pairs.
        available: Observed values of the offending variable, if relevant.
    """

    def __init__(
        self,
        message: str,
        *,
        cell: tuple[tuple[str, Any], ...] | None = None,
        available: tuple[Any, ...] | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.cell = cell
        self.available = available


class InsufficientPairs(EstimationError):
    """
    Fewer than two marginal means are available for a pairwise comparison.

    Attributes:
        n_cells: Number of cells available in the offending stratum.
        stratum: The stratum label, or None when unstratified.
    """

    def __init__(
        self,
        message: str,
        *,
        n_cells: int = 0,
        stratum: str | None = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.n_cells = n_cells
        self.stratum = stratum
