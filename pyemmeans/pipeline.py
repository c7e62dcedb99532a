"""
Fit → marginal means → contrasts, as one analysis.

An analysis is described by an immutable AnalysisConfig and produces an
immutable AnalysisReport. Nothing is shared between analyses: the data
are read, never modified, and every setting is passed explicitly.

Examples:
    >>> config = AnalysisConfig(
    ...     spec=ModelSpec('ramification_index', ('treatment',),
    ...                    random=('subject', 'replicate_bin'),
    ...                    family=FamilySpec('beta')),
    ...     emm_specs='treatment',
    ... )
    >>> report = run_analysis(df, config, out=sys.stdout)
    >>> report.contrasts.contrasts[0].p_value
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, TextIO

from pyemmeans.core.exceptions import PyEmmeansError, ValidationError
from pyemmeans.emmeans import emmeans, pairwise
from pyemmeans.emmeans.solution import ContrastSolution, EMMSolution
from pyemmeans.mixed import fit
from pyemmeans.mixed.model import FitControl, ModelSpec
from pyemmeans.mixed.solution import GLMMSolution


ON_ERROR = ('raise', 'skip')


@dataclass(frozen=True)
class AnalysisConfig:
    """One statistical claim: a model plus the comparison to report.

    Attributes:
        spec: Model to fit.
        emm_specs: Factor(s) whose marginal means are compared.
        by: Optional stratifying variable(s).
        at: Optional grid values (e.g. distances of interest).
        weights: Treatment of non-focal factors in the marginal means.
        adjust: Multiplicity adjustment for the contrasts.
        conf_level: Confidence level for all intervals.
        control: Optimizer settings.
    """
    spec: ModelSpec
    emm_specs: str | tuple[str, ...]
    by: str | tuple[str, ...] | None = None
    at: Mapping[str, Sequence[Any]] | None = None
    weights: str = 'equal'
    adjust: str = 'auto'
    conf_level: float = 0.95
    control: FitControl = field(default_factory=FitControl)

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class AnalysisReport:
    """Everything a presentation layer needs for one analysis."""
    config: AnalysisConfig
    model: GLMMSolution
    emm: EMMSolution
    contrasts: ContrastSolution

    @property
    def outcome(self) -> str:
        return self.config.spec.response

    @property
    def family(self) -> str:
        return self.config.spec.family.name

    @property
    def link(self) -> str:
        return self.config.spec.family.link

    @property
    def random_structure(self) -> tuple[str, ...]:
        return tuple(str(term) for term in self.config.spec.random)

    def summary(self) -> str:
        rule = "=" * 72
        return '\n'.join([
            rule,
            f"Analysis: {self.config.name}",
            rule,
            self.model.summary(),
            "",
            "Estimated marginal means",
            "-" * 24,
            self.emm.summary(),
            "",
            "Pairwise contrasts",
            "-" * 18,
            self.contrasts.summary(),
        ])


@dataclass(frozen=True)
class BatchReport:
    """Outcome of run_batch: completed reports and skipped failures."""
    reports: tuple[AnalysisReport, ...]
    failures: tuple[tuple[AnalysisConfig, PyEmmeansError], ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


def run_analysis(
    data: Any,
    config: AnalysisConfig,
    *,
    out: TextIO | None = None,
) -> AnalysisReport:
    """Fit the model, estimate marginal means and derive the contrasts.

    Args:
        data: DataFrame or mapping of column name → 1-D array.
        config: The analysis to run.
        out: Optional text stream receiving the report summary.

    Returns:
        AnalysisReport.

    Raises:
        PyEmmeansError: Any stage's error, carrying the outcome and model.
    """
    model = fit(data, config.spec, control=config.control)
    emm = emmeans(
        model, config.emm_specs, at=config.at, by=config.by,
        weights=config.weights, conf_level=config.conf_level,
    )
    contrasts = pairwise(emm, adjust=config.adjust)
    report = AnalysisReport(config=config, model=model, emm=emm,
                            contrasts=contrasts)
    if out is not None:
        out.write(report.summary())
        out.write("\n")
    return report


def run_batch(
    analyses: Sequence[AnalysisConfig],
    data: Any,
    *,
    on_error: str = 'raise',
    out: TextIO | None = None,
) -> BatchReport:
    """Run several independent analyses over the same data, in order.

    Args:
        analyses: Analysis configurations.
        data: Shared input data (read only).
        on_error: 'raise' aborts at the first failing analysis; 'skip'
            records the failure and continues.
        out: Optional text stream receiving each report summary and a line
            per skipped analysis.

    Returns:
        BatchReport with the completed reports and the skipped failures.
    """
    if on_error not in ON_ERROR:
        raise ValidationError(f"on_error must be one of {ON_ERROR}, got {on_error!r}")

    reports = []
    failures = []
    for config in analyses:
        try:
            reports.append(run_analysis(data, config, out=out))
        except PyEmmeansError as e:
            if on_error == 'raise':
                raise
            failures.append((config, e))
            if out is not None:
                out.write(f"SKIPPED {config.name}: {type(e).__name__}: {e}\n")
    return BatchReport(reports=tuple(reports), failures=tuple(failures))
