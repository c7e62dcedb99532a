"""
Solution wrapper for fitted mixed models.

GLMMSolution wraps Result[GLMMParams] and provides R-style summary output,
property accessors for common quantities, population-level prediction and
model comparison via likelihood ratio tests.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats

from pyemmeans.core.result import Result
from pyemmeans.core.validation import as_columns
from pyemmeans.families import Family
from pyemmeans.mixed._common import GLMMParams, VarCompSummary


def _significance_stars(p: float) -> str:
    """Return significance stars like R."""
    if p < 0.001:
        return '***'
    elif p < 0.01:
        return '**'
    elif p < 0.05:
        return '*'
    elif p < 0.1:
        return '.'
    else:
        return ' '


def _format_pvalue(p: float) -> str:
    """Format p-value like R."""
    if p < 2e-16:
        return '< 2e-16'
    elif p < 0.001:
        return f'{p:.2e}'
    else:
        return f'{p:.4f}'


class GLMMSolution:
    """Solution wrapper for a fitted generalized linear mixed model.

    Uses Wald z-statistics for inference on the fixed effects. The full
    coefficient covariance ``vcov`` and the term encoder are kept so that
    marginal means and contrasts can be built from the fit alone.
    """

    def __init__(self, _result: Result[GLMMParams]):
        self._result = _result

    @property
    def params(self) -> GLMMParams:
        return self._result.params

    @property
    def result(self) -> Result[GLMMParams]:
        return self._result

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    @property
    def family(self) -> Family:
        """The error family (with its link) the model was fitted with."""
        return self.params.spec.family.build()

    # --- Fixed effects ---

    @property
    def coefficients(self) -> NDArray:
        """Fixed effect estimates β̂."""
        return self.params.coefficients

    @property
    def coefficient_names(self) -> tuple[str, ...]:
        return self.params.coefficient_names

    @property
    def fixef(self) -> dict[str, float]:
        """Fixed effects as name → value dict."""
        return dict(zip(self.params.coefficient_names, self.params.coefficients))

    @property
    def se(self) -> NDArray:
        return self.params.se

    @property
    def vcov(self) -> NDArray:
        """Covariance matrix of the fixed effects, (p, p)."""
        return self.params.vcov

    @property
    def z_values(self) -> NDArray:
        """Wald z-statistics for fixed effects."""
        return self.params.z_values

    @property
    def p_values(self) -> NDArray:
        return self.params.p_values

    def coef_table(self) -> pd.DataFrame:
        """Coefficient table: Estimate, Std. Error, z value, Pr(>|z|)."""
        return pd.DataFrame(
            {
                'Estimate': self.params.coefficients,
                'Std. Error': self.params.se,
                'z value': self.params.z_values,
                'Pr(>|z|)': self.params.p_values,
            },
            index=list(self.params.coefficient_names),
        )

    # --- Random effects ---

    @property
    def ranef(self) -> dict[str, NDArray]:
        """Conditional modes of the random effects per grouping factor."""
        return self.params.random_effects

    @property
    def var_components(self) -> tuple[VarCompSummary, ...]:
        return self.params.var_components

    @property
    def icc(self) -> dict[str, float]:
        """ICC on the latent (link) scale.

        ICC = σ²_group / (Σ σ²_intercepts + σ²_latent)

        σ²_latent is the family's residual variance on the link scale,
        approximated by the delta method at the fitted means. For the
        gaussian identity model it is the residual variance itself.
        """
        intercepts = {}
        for vc in self.params.var_components:
            if vc.name == '(Intercept)' and vc.group not in intercepts:
                intercepts[vc.group] = vc.variance
        total = sum(intercepts.values()) + self.params.latent_variance
        return {group: var / total for group, var in intercepts.items()}

    # --- Family parameters ---

    @property
    def dispersion(self) -> float:
        """Estimated dispersion (σ², φ or θ, see ``dispersion_name``)."""
        return self.params.dispersion

    @property
    def sigma(self) -> float:
        """Family-specific scale used to standardize effect sizes."""
        return self.params.sigma

    # --- Model fit ---

    @property
    def log_likelihood(self) -> float:
        return self.params.log_likelihood

    @property
    def deviance(self) -> float:
        return self.params.deviance

    @property
    def aic(self) -> float:
        return self.params.aic

    @property
    def bic(self) -> float:
        return self.params.bic

    @property
    def fitted_values(self) -> NDArray:
        """Fitted values on the response scale (μ̂)."""
        return self.params.fitted_values

    @property
    def linear_predictor(self) -> NDArray:
        """Linear predictor (η̂ = Xβ̂ + Zb̂)."""
        return self.params.linear_predictor

    @property
    def residuals(self) -> NDArray:
        return self.params.residuals

    @property
    def converged(self) -> bool:
        return self.params.converged

    # --- Prediction ---

    def predict(self, data: Any, *, type: str = 'response') -> NDArray:
        """Population-level predictions (random effects set to zero).

        Args:
            data: DataFrame or mapping holding the fixed-effect columns.
            type: 'response' for g⁻¹(Xβ̂), 'link' for Xβ̂.

        Returns:
            (n,) array of predictions.

        Raises:
            ValidationError: Unknown factor levels or missing columns.
        """
        if type not in ('response', 'link'):
            raise ValueError(f"type must be 'response' or 'link', got {type!r}")
        columns = as_columns(data, self.params.spec.fixed)
        eta = self.params.encoder.encode(columns) @ self.params.coefficients
        if type == 'link':
            return eta
        return self.family.link.linkinv(eta)

    # --- Model comparison ---

    def compare(self, other: 'GLMMSolution') -> str:
        """Likelihood ratio test between two nested models.

        Both models must be fitted to the same observations with the same
        family.

        Args:
            other: The other model to compare against.

        Returns:
            Formatted LRT summary string.
        """
        if self.params.n_obs != other.params.n_obs:
            raise ValueError(
                f"Models were fitted to different numbers of observations "
                f"({self.params.n_obs} vs {other.params.n_obs})"
            )
        if self.params.family_name != other.params.family_name:
            raise ValueError(
                f"Models use different families ({self.params.family_name} "
                f"vs {other.params.family_name})"
            )

        if self.params.n_params >= other.params.n_params:
            full, reduced = self, other
        else:
            full, reduced = other, self
        n_full, n_reduced = full.params.n_params, reduced.params.n_params

        chi_sq = max(-2.0 * (reduced.log_likelihood - full.log_likelihood), 0.0)
        df = max(n_full - n_reduced, 1)
        p_value = float(stats.chi2.sf(chi_sq, df))

        lines = [
            "Likelihood Ratio Test",
            "=" * 50,
            f"  Reduced model: {reduced.params.spec.name}",
            f"    logLik: {reduced.log_likelihood:.4f}  (df = {n_reduced})",
            f"  Full model:    {full.params.spec.name}",
            f"    logLik: {full.log_likelihood:.4f}  (df = {n_full})",
            f"  Chi-squared: {chi_sq:.4f}  on {df} df",
            f"  p-value: {_format_pvalue(p_value)}",
        ]
        return '\n'.join(lines)

    # --- Summary ---

    def summary(self) -> str:
        """R-style summary in the layout of lme4/glmmTMB summary()."""
        params = self.params

        lines = []
        lines.append(
            "Generalized linear mixed model fit by maximum likelihood "
            "(Laplace Approximation)"
        )
        lines.append(f" Family: {params.family_name} ( {params.link_name} )")
        lines.append(f"Formula: {params.spec.formula}")
        lines.append("")

        if params.var_components:
            lines.append("Random effects:")
            lines.append(f" {'Groups':<16s} {'Name':<15s} {'Variance':>10s} "
                         f"{'Std.Dev.':>10s} {'Corr':>6s}")
            prev_group = None
            for vc in params.var_components:
                grp_label = vc.group if vc.group != prev_group else ''
                corr_str = f'{vc.corr:6.2f}' if vc.corr is not None else ''
                lines.append(
                    f" {grp_label:<16s} {vc.name:<15s} {vc.variance:10.4g} "
                    f"{vc.std_dev:10.4g} {corr_str}"
                )
                prev_group = vc.group
            group_parts = ', '.join(
                f'{name}, {n}' for name, n in params.n_groups.items()
            )
            lines.append(
                f"Number of obs: {params.n_obs}, groups:  {group_parts}"
            )
        else:
            lines.append("No random effects")
            lines.append(f"Number of obs: {params.n_obs}")
        lines.append("")

        lines.append(
            f"Dispersion parameter ({params.dispersion_name}): "
            f"{params.dispersion:.4g}"
        )
        lines.append("")

        lines.append("Conditional model:")
        width = max(15, max(len(n) for n in params.coefficient_names))
        header = (f" {'':>{width}s} {'Estimate':>10s} {'Std. Error':>10s} "
                  f"{'z value':>10s} {'Pr(>|z|)':>10s} {'':>4s}")
        lines.append(header)

        for i, name in enumerate(params.coefficient_names):
            p_str = _format_pvalue(params.p_values[i])
            stars = _significance_stars(params.p_values[i])
            lines.append(
                f" {name:>{width}s} {params.coefficients[i]:10.4f} "
                f"{params.se[i]:10.4f} "
                f"{params.z_values[i]:10.3f} {p_str:>10s} {stars}"
            )

        lines.append("---")
        lines.append("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
        lines.append("")

        lines.append(f"{'AIC':>10s} {'BIC':>10s} {'logLik':>10s} {'deviance':>10s}")
        lines.append(
            f"{params.aic:10.1f} {params.bic:10.1f} "
            f"{params.log_likelihood:10.1f} {params.deviance:10.1f}"
        )

        for w in self._result.warnings:
            lines.append("")
            lines.append(f"WARNING: {w}")

        return '\n'.join(lines)

    def __repr__(self) -> str:
        nfe = len(self.params.coefficients)
        nre = len(self.params.var_components)
        return (
            f"GLMMSolution({self.params.family_name}({self.params.link_name}), "
            f"n={self.params.n_obs}, "
            f"fixed={nfe}, "
            f"random={nre} var components)"
        )
