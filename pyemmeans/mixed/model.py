"""
Model specification value types.

A ModelSpec is built once, before fitting, and never mutated. It names the
response column, the fixed-effect terms, the random-intercept structure and
the error family/link. Everything the fitting stage needs is explicit here or
in FitControl; nothing is read from module-level state.

Examples:
    # Beta GLMM with crossed random intercepts for subject and replicate bin
    >>> ModelSpec(
    ...     response='ramification_index',
    ...     fixed=('treatment',),
    ...     random=('subject', 'replicate_bin'),
    ...     family=FamilySpec('beta'),
    ... )

    # Sholl-style model: treatment × distance, distance as a spline basis
    >>> ModelSpec(
    ...     response='intersections',
    ...     fixed=('treatment', 'distance'),
    ...     interactions=(('treatment', 'distance'),),
    ...     covariates={'distance': CovariateSpec('spline', df=4)},
    ...     random=(RandomTerm('cell', nested_in='subject'),),
    ...     family=FamilySpec('negative_binomial'),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.families import FamilySpec


COVARIATE_KINDS = ('categorical', 'linear', 'spline')


@dataclass(frozen=True)
class CovariateSpec:
    """How a non-treatment predictor enters the fixed effects.

    Attributes:
        kind: 'categorical' (one indicator per non-reference level),
            'linear' (a single numeric column) or 'spline' (B-spline basis).
        df: Number of spline basis columns (spline only).
        degree: Spline polynomial degree (spline only).
        levels: Explicit level order for categorical predictors; the first
            level is the reference. None means sorted observed levels.
    """
    kind: str = 'categorical'
    df: int = 4
    degree: int = 3
    levels: tuple[Any, ...] | None = None

    def __post_init__(self):
        if self.kind not in COVARIATE_KINDS:
            raise ValidationError(
                f"kind must be one of {COVARIATE_KINDS}, got {self.kind!r}"
            )
        if self.kind == 'spline':
            if self.degree < 1:
                raise ValidationError(f"degree must be >= 1, got {self.degree}")
            if self.df < self.degree:
                raise ValidationError(
                    f"spline df ({self.df}) must be >= degree ({self.degree})"
                )
        if self.levels is not None:
            object.__setattr__(self, 'levels', tuple(self.levels))


@dataclass(frozen=True)
class RandomTerm:
    """One random-effects grouping term.

    ``RandomTerm('subject')`` is ``(1 | subject)``. With ``nested_in='animal'``
    it expands to ``(1 | animal) + (1 | animal:subject)``. ``slopes`` adds
    correlated random slopes for numeric columns: ``(1 + x | subject)``.
    """
    group: str
    nested_in: str | None = None
    slopes: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'slopes', tuple(self.slopes))

    def __str__(self) -> str:
        lhs = ' + '.join(('1',) + self.slopes)
        if self.nested_in is None:
            return f"({lhs} | {self.group})"
        return f"({lhs} | {self.nested_in}/{self.group})"


@dataclass(frozen=True)
class ModelSpec:
    """Immutable description of one mixed model.

    Attributes:
        response: Outcome column name.
        fixed: Fixed-effect term names, in order. Each is a factor unless
            listed in ``covariates`` with another kind.
        random: Random terms; plain strings are shorthand for
            ``RandomTerm(name)``. Several entries are crossed. May be empty.
        family: Error family and link.
        covariates: Per-term encoding overrides.
        interactions: Pairs of fixed terms whose product enters the model.
        name: Label used in reports and error messages.
    """
    response: str
    fixed: tuple[str, ...]
    random: tuple[RandomTerm | str, ...] = ()
    family: FamilySpec = field(default_factory=lambda: FamilySpec('gaussian'))
    covariates: Mapping[str, CovariateSpec] = field(default_factory=dict)
    interactions: tuple[tuple[str, str], ...] = ()
    name: str | None = None

    def __post_init__(self):
        if isinstance(self.fixed, str):
            object.__setattr__(self, 'fixed', (self.fixed,))
        fixed = tuple(self.fixed)
        if len(set(fixed)) != len(fixed):
            raise ValidationError(f"fixed: duplicate terms in {fixed}")
        if self.response in fixed:
            raise ValidationError(
                f"fixed: response {self.response!r} cannot also be a predictor"
            )
        object.__setattr__(self, 'fixed', fixed)

        if isinstance(self.random, (str, RandomTerm)):
            object.__setattr__(self, 'random', (self.random,))
        random = tuple(
            RandomTerm(term) if isinstance(term, str) else term
            for term in self.random
        )
        object.__setattr__(self, 'random', random)

        if isinstance(self.family, str):
            object.__setattr__(self, 'family', FamilySpec(self.family))

        for name in self.covariates:
            if name not in fixed:
                raise ValidationError(
                    f"covariates: {name!r} is not a fixed term. Fixed: {list(fixed)}"
                )
        object.__setattr__(
            self, 'covariates', MappingProxyType(dict(self.covariates))
        )

        pairs = []
        for pair in self.interactions:
            a, b = pair
            for term in (a, b):
                if term not in fixed:
                    raise ValidationError(
                        f"interactions: {term!r} is not a fixed term. "
                        f"Fixed: {list(fixed)}"
                    )
            if a == b:
                raise ValidationError(f"interactions: {a!r} paired with itself")
            pairs.append((a, b))
        object.__setattr__(self, 'interactions', tuple(pairs))

        if self.name is None:
            object.__setattr__(self, 'name', self.formula)

    def __hash__(self) -> int:
        return hash((self.response, self.fixed, self.random, self.family,
                     tuple(sorted(self.covariates.items())), self.interactions))

    def covariate(self, term: str) -> CovariateSpec:
        """Encoding for ``term`` (categorical unless overridden)."""
        return self.covariates.get(term, CovariateSpec('categorical'))

    @property
    def grouping_columns(self) -> tuple[str, ...]:
        """Data columns referenced by the random terms."""
        cols: list[str] = []
        for term in self.random:
            for col in (term.nested_in, term.group, *term.slopes):
                if col is not None and col not in cols:
                    cols.append(col)
        return tuple(cols)

    @property
    def formula(self) -> str:
        """R-style formula string, for display only."""
        rhs = list(self.fixed)
        for term in self.fixed:
            spec = self.covariates.get(term)
            if spec is not None and spec.kind == 'spline':
                rhs[rhs.index(term)] = f"bs({term}, df={spec.df})"
        rhs += [f"{a}:{b}" for a, b in self.interactions]
        rhs += [str(term) for term in self.random]
        return f"{self.response} ~ {' + '.join(rhs) if rhs else '1'}"


@dataclass(frozen=True)
class FitControl:
    """Optimizer settings for the fitting stage.

    Attributes:
        tol: Absolute tolerance on the Laplace deviance (outer loop).
        xtol: Absolute tolerance on the optimizer parameters (θ in units
            of the link-scale residual SD, and the log dispersion).
        max_iter: Outer-optimizer iteration cap; exceeding it raises
            ConvergenceFailure.
        pirls_tol: Relative tolerance on the penalized deviance (inner loop).
            Keep well below ``tol`` so the outer objective is smooth.
        pirls_max_iter: PIRLS iteration cap.
        singular_tol: Random-effect standard deviations below this
            fraction of the link-scale residual SD are reported as a
            singular (boundary) fit.
        max_restarts: Nelder-Mead is restarted from its own optimum until a
            restart no longer lowers the deviance; still improving after
            this many restarts raises ConvergenceFailure.
    """
    tol: float = 1e-6
    xtol: float = 1e-4
    max_iter: int = 4000
    pirls_tol: float = 1e-10
    pirls_max_iter: int = 50
    singular_tol: float = 1e-4
    max_restarts: int = 3

    def __post_init__(self):
        if self.tol <= 0 or self.xtol <= 0 or self.pirls_tol <= 0:
            raise ValidationError("tolerances must be positive")
        if self.max_iter < 1 or self.pirls_max_iter < 1:
            raise ValidationError("iteration caps must be >= 1")
        if self.max_restarts < 1:
            raise ValidationError(
                f"max_restarts must be >= 1, got {self.max_restarts}"
            )
