"""
Core infrastructure for pyemmeans.

Shared abstractions used by the fitting, marginal-estimation and contrast
stages.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from pyemmeans.core.result import Result
from pyemmeans.core.exceptions import (
    PyEmmeansError,
    ValidationError,
    DimensionError,
    DomainViolation,
    NumericalError,
    SingularMatrixError,
    RankDeficiency,
    SingularCovariance,
    ConvergenceError,
    ConvergenceFailure,
    EstimationError,
    UnsupportedCell,
    InsufficientPairs,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "PyEmmeansError",
    "ValidationError",
    "DimensionError",
    "DomainViolation",
    "NumericalError",
    "SingularMatrixError",
    "RankDeficiency",
    "SingularCovariance",
    "ConvergenceError",
    "ConvergenceFailure",
    "EstimationError",
    "UnsupportedCell",
    "InsufficientPairs",
]
