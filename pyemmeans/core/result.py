"""
Generic result container for all pyemmeans computations.

The Result class provides a standardized envelope that the fitting,
marginal-estimation and contrast stages all use. This enables shared
tooling for timing, warnings and reporting while allowing each stage to
define its own parameter payload.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (converged, iterations, adjustment)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True) so a fitted model is never mutated after fitting
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for statistical computations.

    Type Parameters:
        P: The stage-specific parameter payload type

    Attributes:
        params: Stage-specific parameters (coefficients, estimates, contrasts)
        info: Structured metadata (method, convergence, diagnostics)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the routine that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=GLMMParams(...),
        ...     info={'method': 'Laplace', 'converged': True, 'n_iter': 212},
        ...     timing={'total_seconds': 0.5, 'optimization': 0.45},
        ...     backend_name='cpu_glmm'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
