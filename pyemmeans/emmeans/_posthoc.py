"""
Multiplicity adjustment for pairwise comparisons of marginal means.

Tukey:
    Uses the studentized range distribution (scipy.stats.studentized_range)
    with infinite degrees of freedom, since the comparisons are Wald z
    tests. For k means and a pairwise z statistic, q = |z|·√2.

Bonferroni:
    Multiplies each p-value by the number of comparisons m; intervals use
    the z quantile at α / m.

Everything else (holm, hochberg, hommel, BH, BY, fdr, none) is delegated
to p_adjust with unadjusted intervals.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.emmeans._p_adjust import VALID_METHODS, p_adjust


ADJUST_METHODS = ('auto', 'tukey') + VALID_METHODS


def check_adjust(adjust: str) -> str:
    if adjust not in ADJUST_METHODS:
        raise ValidationError(
            f"adjust must be one of {ADJUST_METHODS}, got {adjust!r}"
        )
    return adjust


def z_critical(conf_level: float) -> float:
    """Two-sided standard-normal critical value."""
    return float(sp_stats.norm.ppf(1.0 - (1.0 - conf_level) / 2.0))


def tukey_pvalues(z: NDArray, k: int) -> NDArray:
    """Tukey-adjusted p-values for k means from pairwise z statistics."""
    q = np.abs(np.asarray(z, dtype=np.float64)) * np.sqrt(2.0)
    return np.minimum(sp_stats.studentized_range.sf(q, k, np.inf), 1.0)


def tukey_critical(conf_level: float, k: int) -> float:
    """Half-width multiplier (in SE units) of Tukey simultaneous intervals."""
    if k == 2:
        # the range of two normals is |Z|·√2, so the quantile is exact
        return z_critical(conf_level)
    return float(sp_stats.studentized_range.ppf(conf_level, k, np.inf)) / np.sqrt(2.0)


def bonferroni_critical(conf_level: float, m: int) -> float:
    """z critical value for Bonferroni intervals over m comparisons."""
    alpha = (1.0 - conf_level) / m
    return float(sp_stats.norm.ppf(1.0 - alpha / 2.0))


def adjust_pvalues(
    p_raw: NDArray,
    z: NDArray,
    family_ids: NDArray,
    family_sizes: dict[int, int],
    method: str,
    conf_level: float,
) -> tuple[NDArray, NDArray]:
    """Adjusted p-values and interval multipliers for one set of contrasts.

    Args:
        p_raw: Unadjusted two-sided p-values.
        z: Wald statistics.
        family_ids: Stratum index of each contrast (Tukey families).
        family_sizes: Stratum index → number of means compared in it.
        method: A resolved method name (not 'auto').
        conf_level: Confidence level of the intervals.

    Returns:
        (adjusted p-values, per-contrast critical values). Adjusted
        p-values are never below the raw ones.
    """
    m = len(p_raw)
    if method == 'tukey':
        p_adj = np.empty(m, dtype=np.float64)
        crit = np.empty(m, dtype=np.float64)
        for fam, k in family_sizes.items():
            mask = family_ids == fam
            p_adj[mask] = tukey_pvalues(z[mask], k)
            crit[mask] = tukey_critical(conf_level, k)
    elif method == 'bonferroni':
        p_adj = p_adjust(p_raw, 'bonferroni')
        crit = np.full(m, bonferroni_critical(conf_level, m))
    else:
        p_adj = p_adjust(p_raw, method)
        crit = np.full(m, z_critical(conf_level))

    return np.clip(np.maximum(p_adj, p_raw), 0.0, 1.0), crit
