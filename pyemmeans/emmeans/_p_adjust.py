"""
Multiple testing correction matching R's p.adjust().

Methods: holm, hochberg, hommel, bonferroni, BH, BY, fdr, none. The
contrast stage uses it for every adjustment that is not based on the
studentized range; it is also exported for direct use.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray, ArrayLike

from pyemmeans.core.exceptions import ValidationError

VALID_METHODS = (
    "holm", "hochberg", "hommel", "bonferroni", "BH", "BY", "fdr", "none"
)


def p_adjust(
    p: ArrayLike,
    method: str = "holm",
    n: int | None = None,
) -> NDArray[np.floating]:
    """
    Adjust p-values for multiple comparisons. Matches R p.adjust().

    Parameters
    ----------
    p : array-like
        Vector of p-values.
    method : str
        Adjustment method. One of: "holm" (default), "hochberg", "hommel",
        "bonferroni", "BH", "BY", "fdr" (alias for BH), "none".
    n : int or None
        Number of comparisons. Default len(p). Can be larger than len(p)
        when some p-values are omitted.

    Returns
    -------
    ndarray
        Adjusted p-values, same length as input, clipped to [0, 1].
        NaN positions in input stay NaN.
    """
    if method not in VALID_METHODS:
        raise ValidationError(
            f"method must be one of {VALID_METHODS}, got {method!r}"
        )

    p_arr = np.asarray(p, dtype=np.float64).ravel()
    result = p_arr.copy()
    valid = ~np.isnan(p_arr)
    pv = p_arr[valid]

    n_tests = len(pv) if n is None else n
    if n_tests < len(pv):
        raise ValidationError(f"n ({n}) must be >= number of p-values ({len(pv)})")

    if len(pv) == 0 or method == "none":
        return result

    adjust = _METHODS["BH" if method == "fdr" else method]
    result[valid] = np.clip(adjust(pv, n_tests), 0.0, 1.0)
    return result


def _step(pv: NDArray, factors: NDArray, descending: bool) -> NDArray:
    """Multiply sorted p-values by ``factors`` and enforce monotonicity.

    Step-down methods walk the p-values in ascending order and take a
    running maximum; step-up methods walk them in descending order and
    take a running minimum.
    """
    order = np.argsort(pv)
    if descending:
        order = order[::-1]
    scaled = pv[order] * factors
    accumulate = np.minimum.accumulate if descending else np.maximum.accumulate
    out = np.empty_like(pv)
    out[order] = accumulate(scaled)
    return out


def _bonferroni(pv: NDArray, n: int) -> NDArray:
    return pv * n


def _holm(pv: NDArray, n: int) -> NDArray:
    """Holm step-down (FWER, no assumptions)."""
    return _step(pv, np.arange(n, n - len(pv), -1, dtype=np.float64), False)


def _hochberg(pv: NDArray, n: int) -> NDArray:
    """Hochberg step-up (FWER, independence or PRDS)."""
    return _step(pv, np.arange(n - len(pv) + 1, n + 1, dtype=np.float64), True)


def _bh(pv: NDArray, n: int) -> NDArray:
    """Benjamini-Hochberg (FDR, independence or PRDS)."""
    ranks = np.arange(len(pv), 0, -1, dtype=np.float64)
    return _step(pv, n / ranks, True)


def _by(pv: NDArray, n: int) -> NDArray:
    """Benjamini-Yekutieli (FDR under arbitrary dependence)."""
    cm = np.sum(1.0 / np.arange(1, n + 1, dtype=np.float64))
    ranks = np.arange(len(pv), 0, -1, dtype=np.float64)
    return _step(pv, cm * n / ranks, True)


def _hommel(pv: NDArray, n: int) -> NDArray:
    """Hommel's method (FWER, independence or PRDS), as in R's p.adjust."""
    lp = len(pv)
    if lp <= 1:
        return pv.copy()

    work = np.concatenate([pv, np.ones(n - lp)]) if n > lp else pv.copy()
    m = len(work)
    order = np.argsort(work)
    sp = work[order]
    rank = np.argsort(order)

    i = np.arange(1, m + 1, dtype=np.float64)
    q = np.full(m, np.min(m * sp / i))
    pa = q.copy()

    for j in range(m - 1, 1, -1):
        head = m - j + 1
        q1 = np.min(j * sp[head:] / np.arange(2, j + 1, dtype=np.float64))
        q[:head] = np.minimum(j * sp[:head], q1)
        q[head:] = q[head - 1]
        pa = np.maximum(pa, q)

    return np.maximum(pa, sp)[rank[:lp]]


_METHODS = {
    "bonferroni": _bonferroni,
    "holm": _holm,
    "hochberg": _hochberg,
    "hommel": _hommel,
    "BH": _bh,
    "BY": _by,
}
