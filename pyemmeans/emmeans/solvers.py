"""
Solver entry points for marginal means and contrasts.

Public API:
    emmeans()  — estimated marginal means over a reference grid
    pairwise() — pairwise contrasts of marginal means with adjustment
"""

from __future__ import annotations

import warnings
from typing import Any, Mapping, Sequence

import numpy as np
from scipy import stats

from pyemmeans.core.result import Result
from pyemmeans.core.compute.timing import Timer
from pyemmeans.core.exceptions import (
    InsufficientPairs,
    PyEmmeansError,
    SingularCovariance,
    UnsupportedCell,
    ValidationError,
)
from pyemmeans.emmeans._common import (
    Cell, Contrast, ContrastParams, EMMParams, MarginalEstimate, format_cell,
    format_level,
)
from pyemmeans.emmeans._grid import reference_grid, as_name_tuple
from pyemmeans.emmeans._posthoc import adjust_pvalues, check_adjust, z_critical
from pyemmeans.emmeans.solution import EMMSolution, ContrastSolution
from pyemmeans.mixed.solution import GLMMSolution


def _check_conf_level(conf_level: float) -> float:
    if not 0.0 < conf_level < 1.0:
        raise ValidationError(f"conf_level must be in (0, 1), got {conf_level}")
    return float(conf_level)


def _attach_context(e: PyEmmeansError, outcome: str, model: str) -> None:
    if e.outcome is None:
        e.outcome = outcome
    if e.model is None:
        e.model = model


def _quadratic_se(L: np.ndarray, vcov: np.ndarray, what: str) -> float:
    var = float(L @ vcov @ L)
    if not np.isfinite(var) or var <= 0.0:
        raise SingularCovariance(
            f"{what}: variance {var:.3g} is not positive; the coefficient "
            f"covariance is singular in this direction",
            variance=var,
        )
    return float(np.sqrt(var))


def emmeans(
    model: GLMMSolution,
    specs: str | Sequence[str],
    *,
    at: Mapping[str, Sequence[Any]] | None = None,
    by: str | Sequence[str] | None = None,
    weights: str = 'equal',
    conf_level: float = 0.95,
) -> EMMSolution:
    """Estimated marginal means of a fitted model.

    For every reference-grid cell the linear function L is built from the
    model's term encoder; the estimate is L·β̂ with standard error
    sqrt(L V Lᵀ) and a Wald interval. Estimates are back-transformed to the
    response scale with the inverse link; the response-scale interval is
    the back-transformed link-scale interval.

    Args:
        model: Fitted model from ``pyemmeans.mixed.fit``.
        specs: Factor name(s) whose levels form the cells.
        at: name → values defining the grid for covariates.
        by: Variable(s) to stratify by.
        weights: 'equal' averages non-focal factors over their levels;
            'reference' holds them at the reference level.
        conf_level: Confidence level of the intervals.

    Returns:
        EMMSolution with one MarginalEstimate per cell.

    Raises:
        UnsupportedCell: A requested level or value was never observed, or
            a spline covariate would have to be averaged over.
        SingularCovariance: A cell's variance is not positive.

    Examples:
        >>> emm = emmeans(model, 'treatment')
        >>> emm = emmeans(model, 'treatment', by='distance',
        ...               at={'distance': [10, 20, 30]})
    """
    params = model.params
    try:
        return _emmeans(model, specs, at, by, weights, conf_level)
    except PyEmmeansError as e:
        _attach_context(e, params.spec.response, params.spec.name)
        raise


def _emmeans(model, specs, at, by, weights, conf_level) -> EMMSolution:
    timer = Timer()
    timer.start()
    params = model.params
    conf_level = _check_conf_level(conf_level)
    link = model.family.link

    with timer.section('grid'):
        grid = reference_grid(params.encoder, specs, by=by, at=at, weights=weights)
        L = np.vstack([g.L for g in grid])

    with timer.section('estimates'):
        crit = z_critical(conf_level)
        est = L @ params.coefficients
        estimates = []
        warn_list = []
        for g, eta in zip(grid, est):
            se = _quadratic_se(g.L, params.vcov, format_cell(g.cell))
            lower, upper = eta - crit * se, eta + crit * se
            if not link.in_range(np.array([eta]))[0]:
                raise UnsupportedCell(
                    f"{format_cell(g.cell)}: link-scale estimate {eta:.4g} "
                    f"has no mean under the {link.name} link",
                    cell=g.cell,
                )
            bounds = link.linkinv(np.array([lower, upper]))
            out_of_range = ~link.in_range(np.array([lower, upper]))
            if np.any(out_of_range):
                # the interval crosses the pole of g⁻¹; that side is unbounded
                bounds = np.where(out_of_range, np.inf, bounds)
                msg = (f"{format_cell(g.cell)}: confidence interval "
                       f"[{lower:.4g}, {upper:.4g}] leaves the range of the "
                       f"{link.name} link; response-scale bound set to inf")
                warn_list.append(msg)
                warnings.warn(msg, RuntimeWarning, stacklevel=3)
            estimates.append(MarginalEstimate(
                cell=g.cell,
                emmean=float(eta),
                se=se,
                lower=float(lower),
                upper=float(upper),
                response=float(link.linkinv(np.array([eta]))[0]),
                response_se=float(np.abs(link.mu_eta(np.array([eta]))[0]) * se),
                response_lower=float(np.min(bounds)),
                response_upper=float(np.max(bounds)),
            ))

    timer.stop()

    specs_t = as_name_tuple(specs)
    by_t = as_name_tuple(by)
    emm_params = EMMParams(
        estimates=tuple(estimates),
        specs=specs_t,
        by=by_t,
        levels=tuple(g.level for g in grid),
        strata=tuple(g.stratum for g in grid),
        linfct=L,
        coefficients=params.coefficients,
        vcov=params.vcov,
        sigma=params.sigma,
        family_name=params.family_name,
        link_name=params.link_name,
        conf_level=conf_level,
        weights=weights,
        outcome=params.spec.response,
        model_name=params.spec.name,
    )

    result = Result(
        params=emm_params,
        info={
            'specs': specs_t,
            'by': by_t,
            'weights': weights,
            'conf_level': conf_level,
            'n_cells': len(estimates),
            'family': params.family_name,
            'link': params.link_name,
            'inference': 'asymptotic (z)',
        },
        timing=timer.result(),
        backend_name='cpu_emmeans',
        warnings=tuple(warn_list),
    )
    return EMMSolution(_result=result)


def pairwise(
    emm: EMMSolution,
    *,
    adjust: str = 'auto',
    levels: Sequence[Any] | None = None,
    conf_level: float | None = None,
) -> ContrastSolution:
    """Pairwise contrasts of marginal means, within each stratum.

    For cells ordered ``levels[0], levels[1], ...`` the contrast for pair
    (i, j), i < j, is ``emmean(levels[j]) - emmean(levels[i])`` with
    standard error from ``(L_j - L_i) V (L_j - L_i)ᵀ``.

    Args:
        emm: Marginal means from ``emmeans``.
        adjust: 'auto' (Tukey unstratified, Bonferroni over all pairs of all
            strata when stratified), 'tukey', 'bonferroni', 'holm',
            'hochberg', 'hommel', 'BH', 'BY', 'fdr' or 'none'.
        levels: Order (and subset) of the ``specs`` levels to compare.
            Default: grid order.
        conf_level: Confidence level; default that of ``emm``.

    Returns:
        ContrastSolution recording the adjustment actually used.

    Raises:
        InsufficientPairs: A stratum has fewer than two cells.
        UnsupportedCell: ``levels`` names a level not in the grid.
        SingularCovariance: A contrast variance is not positive.

    Examples:
        >>> con = pairwise(emmeans(model, 'treatment'))
        >>> con.contrasts[0].label
        'Treatment - Control'
    """
    params = emm.params
    try:
        return _pairwise(emm, adjust, levels, conf_level)
    except PyEmmeansError as e:
        _attach_context(e, params.outcome, params.model_name)
        raise


def _stratum_label(stratum: Cell | None) -> str | None:
    return None if stratum is None else format_cell(stratum)


def _pairwise(emm, adjust, levels, conf_level) -> ContrastSolution:
    timer = Timer()
    timer.start()
    params = emm.params
    check_adjust(adjust)
    conf_level = _check_conf_level(
        params.conf_level if conf_level is None else conf_level
    )

    strata: list[Cell | None] = []
    for s in params.strata:
        if s not in strata:
            strata.append(s)
    stratified = len(params.by) > 0

    if adjust == 'auto':
        method = 'bonferroni' if stratified else 'tukey'
    else:
        method = adjust

    with timer.section('contrasts'):
        rows = []          # (level1, level2, stratum, D)
        family_ids = []
        family_sizes: dict[int, int] = {}
        for fam, stratum in enumerate(strata):
            idx = [i for i, s in enumerate(params.strata) if s == stratum]
            available = [params.levels[i] for i in idx]
            if levels is None:
                order = available
            else:
                order = list(levels)
                for lev in order:
                    if lev not in available:
                        raise UnsupportedCell(
                            f"level {lev!r} is not in the grid. "
                            f"Available: {available}",
                            cell=((params.specs[0], lev),),
                            available=tuple(available),
                        )
            if len(order) < 2:
                raise InsufficientPairs(
                    f"{len(order)} marginal mean(s) available"
                    + (f" in stratum {_stratum_label(stratum)}" if stratum else "")
                    + "; at least 2 are needed for pairwise comparison",
                    n_cells=len(order),
                    stratum=_stratum_label(stratum),
                )
            row_of = {params.levels[i]: params.linfct[i] for i in idx}
            family_sizes[fam] = len(order)
            for i in range(len(order)):
                for j in range(i + 1, len(order)):
                    D = row_of[order[j]] - row_of[order[i]]
                    rows.append((order[i], order[j], stratum, D))
                    family_ids.append(fam)

        est = np.array([D @ params.coefficients for *_, D in rows])
        se = np.array([
            _quadratic_se(D, params.vcov,
                          f"contrast {format_level(l2)} - {format_level(l1)}")
            for l1, l2, _, D in rows
        ])
        z = est / se
        p_raw = 2.0 * stats.norm.sf(np.abs(z))

    with timer.section('adjustment'):
        p_adj, crit = adjust_pvalues(
            p_raw, z, np.array(family_ids), family_sizes, method, conf_level,
        )

    sigma = params.sigma
    contrasts = []
    for k, (l1, l2, stratum, _) in enumerate(rows):
        lower = est[k] - crit[k] * se[k]
        upper = est[k] + crit[k] * se[k]
        contrasts.append(Contrast(
            level1=l1,
            level2=l2,
            stratum=stratum,
            estimate=float(est[k]),
            se=float(se[k]),
            z=float(z[k]),
            p_value=float(p_adj[k]),
            p_unadjusted=float(p_raw[k]),
            lower=float(lower),
            upper=float(upper),
            effect_size=float(est[k] / sigma),
            effect_lower=float(lower / sigma),
            effect_upper=float(upper / sigma),
        ))

    timer.stop()

    con_params = ContrastParams(
        contrasts=tuple(contrasts),
        method=method,
        conf_level=conf_level,
        n_tests=len(contrasts),
        sigma=sigma,
        specs=params.specs,
        by=params.by,
        outcome=params.outcome,
        model_name=params.model_name,
    )
    result = Result(
        params=con_params,
        info={
            'adjust': method,
            'requested_adjust': adjust,
            'n_contrasts': len(contrasts),
            'n_strata': len(strata),
            'conf_level': conf_level,
            'scale': params.link_name,
        },
        timing=timer.result(),
        backend_name='cpu_pairwise',
    )
    return ContrastSolution(_result=result)
