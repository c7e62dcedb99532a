"""
Solution wrappers for marginal means and contrasts.

EMMSolution and ContrastSolution wrap Result[EMMParams] /
Result[ContrastParams] and provide emmeans-style text summaries and
DataFrame views for a presentation layer.
"""

from __future__ import annotations

import pandas as pd

from pyemmeans.core.result import Result
from pyemmeans.emmeans._common import (
    Contrast, ContrastParams, EMMParams, MarginalEstimate,
    format_cell, format_level,
)


def _format_pvalue(p: float) -> str:
    """Format p-value like emmeans."""
    if p < 0.0001:
        return '<.0001'
    return f'{p:.4f}'


class EMMSolution:
    """Estimated marginal means on the link and response scales."""

    def __init__(self, _result: Result[EMMParams]):
        self._result = _result

    @property
    def params(self) -> EMMParams:
        return self._result.params

    @property
    def result(self) -> Result[EMMParams]:
        return self._result

    @property
    def estimates(self) -> tuple[MarginalEstimate, ...]:
        return self.params.estimates

    @property
    def conf_level(self) -> float:
        return self.params.conf_level

    @property
    def specs(self) -> tuple[str, ...]:
        return self.params.specs

    @property
    def by(self) -> tuple[str, ...]:
        return self.params.by

    def __len__(self) -> int:
        return len(self.params.estimates)

    def __iter__(self):
        return iter(self.params.estimates)

    def to_frame(self) -> pd.DataFrame:
        """One row per cell: the cell variables, then link- and response-scale
        estimates with their intervals."""
        records = []
        for est in self.params.estimates:
            row = dict(est.cell)
            row.update({
                'emmean': est.emmean,
                'SE': est.se,
                'lower.CL': est.lower,
                'upper.CL': est.upper,
                'response': est.response,
                'response.SE': est.response_se,
                'response.lower.CL': est.response_lower,
                'response.upper.CL': est.response_upper,
            })
            records.append(row)
        return pd.DataFrame.from_records(records)

    def summary(self) -> str:
        """emmeans-style table on both scales."""
        params = self.params
        lines = []
        current = object()
        name_width = max([12] + [len(format_level(lev)) for lev in params.levels])
        header = (f" {' '.join(params.specs):<{name_width}s} {'emmean':>9s} "
                  f"{'SE':>8s} {'lower.CL':>9s} {'upper.CL':>9s}   "
                  f"{'response':>9s} {'SE':>8s} {'lower.CL':>9s} {'upper.CL':>9s}")

        for level, stratum, est in zip(params.levels, params.strata, params.estimates):
            if stratum != current:
                if stratum is not None:
                    if lines:
                        lines.append("")
                    lines.append(f"{format_cell(stratum)}:")
                lines.append(header)
                current = stratum
            lines.append(
                f" {format_level(level):<{name_width}s} {est.emmean:9.4f} "
                f"{est.se:8.4f} {est.lower:9.4f} {est.upper:9.4f}   "
                f"{est.response:9.4f} {est.response_se:8.4f} "
                f"{est.response_lower:9.4f} {est.response_upper:9.4f}"
            )

        lines.append("")
        lines.append(
            f"Results are given on the {params.link_name} (not the response) "
            f"scale; response columns are back-transformed."
        )
        lines.append(f"Confidence level used: {params.conf_level:g}")
        return '\n'.join(lines)

    def __repr__(self) -> str:
        return (
            f"EMMSolution(specs={list(self.params.specs)}, "
            f"by={list(self.params.by)}, cells={len(self)})"
        )


class ContrastSolution:
    """Pairwise contrasts with multiplicity-adjusted inference."""

    def __init__(self, _result: Result[ContrastParams]):
        self._result = _result

    @property
    def params(self) -> ContrastParams:
        return self._result.params

    @property
    def result(self) -> Result[ContrastParams]:
        return self._result

    @property
    def contrasts(self) -> tuple[Contrast, ...]:
        return self.params.contrasts

    @property
    def method(self) -> str:
        """Adjustment method actually applied ('auto' resolved)."""
        return self.params.method

    def __len__(self) -> int:
        return len(self.params.contrasts)

    def __iter__(self):
        return iter(self.params.contrasts)

    def significant(self, alpha: float = 0.05) -> tuple[Contrast, ...]:
        """Contrasts whose adjusted p-value is below ``alpha``."""
        return tuple(c for c in self.params.contrasts if c.p_value < alpha)

    def to_frame(self) -> pd.DataFrame:
        """One row per contrast."""
        records = []
        for c in self.params.contrasts:
            row = {'contrast': c.label}
            if c.stratum is not None:
                row.update(dict(c.stratum))
            row.update({
                'estimate': c.estimate,
                'SE': c.se,
                'z.ratio': c.z,
                'p.value': c.p_value,
                'p.unadjusted': c.p_unadjusted,
                'lower.CL': c.lower,
                'upper.CL': c.upper,
                'effect.size': c.effect_size,
                'effect.lower.CL': c.effect_lower,
                'effect.upper.CL': c.effect_upper,
            })
            records.append(row)
        return pd.DataFrame.from_records(records)

    def summary(self) -> str:
        """emmeans-style contrast table."""
        params = self.params
        lines = []
        current = object()
        width = max([16] + [len(c.label) for c in params.contrasts])
        header = (f" {'contrast':<{width}s} {'estimate':>9s} {'SE':>8s} "
                  f"{'z.ratio':>8s} {'p.value':>8s} {'effect.size':>11s}")

        for c in params.contrasts:
            if c.stratum != current:
                if c.stratum is not None:
                    if lines:
                        lines.append("")
                    lines.append(f"{format_cell(c.stratum)}:")
                lines.append(header)
                current = c.stratum
            lines.append(
                f" {c.label:<{width}s} {c.estimate:9.4f} {c.se:8.4f} "
                f"{c.z:8.3f} {_format_pvalue(c.p_value):>8s} "
                f"{c.effect_size:11.4f}"
            )

        lines.append("")
        lines.append(f"Results are given on the {self._result.info['scale']} scale.")
        if params.method == 'tukey':
            lines.append("P value adjustment: tukey method for comparing a "
                         "family of estimates")
        elif params.method == 'none':
            lines.append("P values are not adjusted")
        else:
            lines.append(f"P value adjustment: {params.method} method for "
                         f"{params.n_tests} tests")
        lines.append(f"Effect sizes: estimate / sigma, sigma = {params.sigma:.4g}")
        return '\n'.join(lines)

    def __repr__(self) -> str:
        return (
            f"ContrastSolution(method={self.params.method!r}, "
            f"contrasts={len(self)})"
        )
