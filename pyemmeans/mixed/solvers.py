"""
Solver entry point for mixed models.

Public API:
    fit() — fit a generalized linear mixed model (Laplace approximation)
"""

from __future__ import annotations

import warnings
from typing import Any

import numpy as np
import scipy.linalg as sla
from scipy.optimize import minimize
from scipy import stats

from pyemmeans.core.result import Result
from pyemmeans.core.compute.timing import Timer
from pyemmeans.core.exceptions import ConvergenceFailure, PyEmmeansError
from pyemmeans.families import Family

from pyemmeans.mixed.model import ModelSpec, FitControl
from pyemmeans.mixed._common import GLMMParams, VarCompSummary
from pyemmeans.mixed._random_effects import (
    RandomEffectSpec, covariance_blocks, diagonal_theta_indices,
    theta_lower_bounds, theta_start,
)
from pyemmeans.mixed._deviance import (
    laplace_deviance, laplace_objective, split_params,
)
from pyemmeans.mixed.design import MixedDesign
from pyemmeans.mixed.solution import GLMMSolution


_LOG_DISPERSION_BOUNDS = (np.log(1e-8), np.log(1e8))
_SIMPLEX_STEP = 0.5
_MIN_THETA_SCALE = 1e-12


def fit(
    data: Any,
    spec: ModelSpec,
    *,
    control: FitControl = FitControl(),
) -> GLMMSolution:
    """Fit a generalized linear mixed model.

    Maximum likelihood via the Laplace approximation: Penalized IRLS
    (PIRLS) for the inner loop and bounded Nelder-Mead for the outer
    optimization over the random-effect factors θ and the log dispersion.
    A model with no random terms is fitted by the same machinery (a plain
    GLM with a free dispersion).

    Args:
        data: DataFrame or mapping of column name → 1-D array.
        spec: Model specification (response, fixed and random terms,
            family and link).
        control: Optimizer settings.

    Returns:
        GLMMSolution with fixed effects, their covariance, random effects,
        dispersion and model fit statistics.

    Raises:
        ValidationError: Missing columns or malformed inputs.
        DomainViolation: Outcome incompatible with the family.
        RankDeficiency: Fixed-effect design not of full column rank.
        ConvergenceFailure: The optimizer hit its iteration cap, the final
            PIRLS did not converge, or the estimates are not finite.

    Every raised PyEmmeansError carries ``outcome`` and ``model``.

    Examples:
        # Beta GLMM with crossed random intercepts
        >>> spec = ModelSpec(
        ...     response='ramification_index', fixed=('treatment',),
        ...     random=('subject', 'replicate_bin'), family=FamilySpec('beta'),
        ... )
        >>> model = fit(df, spec)
        >>> print(model.summary())
    """
    try:
        return _fit(data, spec, control)
    except PyEmmeansError as e:
        if e.outcome is None:
            e.outcome = spec.response
        if e.model is None:
            e.model = spec.name
        raise


def _fit(data: Any, spec: ModelSpec, control: FitControl) -> GLMMSolution:
    timer = Timer()
    timer.start()

    with timer.section('setup'):
        design = MixedDesign.from_data(data, spec)
        family = design.family
        specs = design.specs

        # θ is optimized in units of a moment estimate of the link-scale
        # residual SD, so the start and the simplex follow the data's scale
        theta_scale = _theta_scale(family, design.y)
        theta0 = theta_start(specs)
        lb = theta_lower_bounds(specs)
        n_theta = len(theta0)
        x0 = np.append(theta0, np.log(family.dispersion_start(design.y)))
        bounds = [(None if np.isinf(b) else b, None) for b in lb]
        bounds.append(_LOG_DISPERSION_BOUNDS)
        args = (design.X, design.Z, design.y, specs, family, n_theta,
                control.pirls_tol, control.pirls_max_iter, theta_scale)

    # Optimize (θ, log φ) via the Laplace-approximated deviance, restarting
    # from the optimum until a restart no longer lowers the deviance
    with timer.section('optimization'):
        opt_result = _nelder_mead(x0, args, bounds, control)
        n_iter = int(opt_result.nit)
        n_fev = int(opt_result.nfev)
        _check_optimizer(opt_result, n_iter, control)

        n_restarts = 0
        while True:
            restart = _nelder_mead(opt_result.x, args, bounds, control)
            n_iter += int(restart.nit)
            n_fev += int(restart.nfev)
            _check_optimizer(restart, n_iter, control)
            improvement = opt_result.fun - restart.fun
            if restart.fun < opt_result.fun:
                opt_result = restart
            n_restarts += 1
            if improvement <= _restart_tol(control, opt_result.fun):
                break
            if n_restarts >= control.max_restarts:
                raise ConvergenceFailure(
                    f"Deviance still decreasing after {n_restarts} restarts "
                    f"(last improvement {improvement:.3g})",
                    iterations=n_iter,
                    final_change=float(improvement),
                    reason='not_stationary',
                    threshold=_restart_tol(control, opt_result.fun),
                )

    theta_hat, dispersion = split_params(opt_result.x, n_theta, theta_scale)

    # Final PIRLS solve at the optimum
    with timer.section('final_solve'):
        with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            ev = laplace_deviance(
                theta_hat, dispersion, design.X, design.Z, design.y, specs,
                family, pirls_tol=control.pirls_tol,
                pirls_max_iter=control.pirls_max_iter,
            )
        pirls = ev.pirls
        if not pirls.converged:
            raise ConvergenceFailure(
                f"PIRLS did not converge after {pirls.n_iter} iterations "
                f"at the optimum",
                iterations=pirls.n_iter,
                reason='max_iterations',
                threshold=control.pirls_tol,
            )

    with timer.section('inference'):
        beta = pirls.pls.beta
        p = design.p
        vcov = sla.cho_solve((pirls.pls.RX, True), np.eye(p))
        vcov = 0.5 * (vcov + vcov.T)
        if not (np.all(np.isfinite(beta)) and np.all(np.isfinite(vcov))):
            raise ConvergenceFailure(
                "Non-finite fixed-effect estimates or covariance at the optimum",
                iterations=n_iter,
                reason='non_finite',
            )
        se = np.sqrt(np.maximum(np.diag(vcov), 0.0))
        z_vals = beta / se
        p_vals = 2.0 * stats.norm.sf(np.abs(z_vals))

    with timer.section('variance_components'):
        var_comps = _extract_var_components(theta_hat, specs)
        n_groups_dict = {s.group_name: s.n_groups for s in specs}
        random_effs = _extract_blups(pirls.pls.b, specs)

    warn_list = []
    for group, term, idx in diagonal_theta_indices(specs):
        if theta_hat[idx] < control.singular_tol * theta_scale:
            label = '(Intercept)' if term == '1' else term
            msg = (f"Singular fit: random-effect SD for {group} {label} is "
                   f"{theta_hat[idx]:.2e} (boundary estimate)")
            warn_list.append(msg)
            warnings.warn(msg, RuntimeWarning, stacklevel=3)

    with timer.section('model_fit'):
        wt = np.ones(design.n, dtype=np.float64)
        deviance = family.deviance(design.y, pirls.mu, wt, dispersion)
        n_params = p + n_theta + 1
        ll = ev.log_likelihood
        aic = -2.0 * ll + 2.0 * n_params
        bic = -2.0 * ll + np.log(design.n) * n_params

    timer.stop()

    params = GLMMParams(
        coefficients=beta,
        coefficient_names=design.encoder.column_names,
        se=se,
        vcov=vcov,
        z_values=z_vals,
        p_values=p_vals,
        var_components=tuple(var_comps),
        n_groups=n_groups_dict,
        random_effects=random_effs,
        theta=theta_hat,
        family_name=family.name,
        link_name=family.link.name,
        dispersion=dispersion,
        dispersion_name=family.dispersion_name,
        sigma=family.sigma(dispersion),
        latent_variance=family.latent_variance(pirls.mu, dispersion),
        log_likelihood=ll,
        deviance=deviance,
        aic=float(aic),
        bic=float(bic),
        n_obs=design.n,
        n_params=n_params,
        converged=True,
        n_iter=n_iter,
        pirls_iter=pirls.n_iter,
        fitted_values=pirls.mu,
        linear_predictor=pirls.eta,
        residuals=design.y - pirls.mu,
        spec=spec,
        encoder=design.encoder,
    )

    result = Result(
        params=params,
        info={
            'method': 'Laplace',
            'family': family.name,
            'link': family.link.name,
            'optimizer': 'Nelder-Mead',
            'converged': True,
            'n_iter': n_iter,
            'n_fev': n_fev,
            'n_restarts': n_restarts,
            'theta_scale': theta_scale,
            'pirls_iter': pirls.n_iter,
            'objective': float(opt_result.fun),
        },
        timing=timer.result(),
        backend_name='cpu_glmm',
        warnings=tuple(warn_list),
    )

    return GLMMSolution(_result=result)


# =====================================================================
# Helpers
# =====================================================================

def _theta_scale(family: Family, y: np.ndarray) -> float:
    """Moment estimate of the link-scale residual SD at the starting values."""
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        v = family.latent_variance(family.initialize(y), family.dispersion_start(y))
    if not np.isfinite(v) or v <= 0:
        return 1.0
    return max(float(np.sqrt(v)), _MIN_THETA_SCALE)


def _initial_simplex(x0: np.ndarray, bounds: list[tuple]) -> np.ndarray:
    """Simplex with one step per coordinate, pointing away from an upper bound."""
    steps = np.full(len(x0), _SIMPLEX_STEP)
    for i, (_, upper) in enumerate(bounds):
        if upper is not None and x0[i] + steps[i] > upper:
            steps[i] = -steps[i]
    return np.vstack([x0, x0 + np.diag(steps)])


def _nelder_mead(x0: np.ndarray, args: tuple, bounds: list[tuple],
                 control: FitControl):
    return minimize(
        laplace_objective,
        x0,
        args=args,
        method='Nelder-Mead',
        bounds=bounds,
        options={
            'maxiter': control.max_iter,
            'xatol': control.xtol,
            'fatol': control.tol,
            'initial_simplex': _initial_simplex(x0, bounds),
        },
    )


def _check_optimizer(opt_result, n_iter: int, control: FitControl) -> None:
    if not opt_result.success or not np.isfinite(opt_result.fun):
        raise ConvergenceFailure(
            f"Optimizer did not converge after {n_iter} iterations: "
            f"{opt_result.message}",
            iterations=n_iter,
            reason='max_iterations' if opt_result.status in (1, 2) else 'non_finite',
            threshold=control.tol,
        )


def _restart_tol(control: FitControl, deviance: float) -> float:
    """Smallest deviance decrease from a restart that counts as progress."""
    return 10.0 * control.tol * max(1.0, abs(deviance))

def _extract_var_components(
    theta: np.ndarray,
    specs: list[RandomEffectSpec],
) -> list[VarCompSummary]:
    """Extract variance component summaries from θ.

    The covariance of the random effects of factor k is T_k T_k' (on the
    link scale). Correlations are reported against the first term.
    """
    var_comps = []
    for spec, cov_matrix in zip(specs, covariance_blocks(theta, specs)):
        term_names = ['(Intercept)' if t == '1' else t for t in spec.terms]

        for i in range(spec.n_terms):
            var_i = cov_matrix[i, i]
            sd_i = np.sqrt(max(var_i, 0.0))

            if i > 0 and cov_matrix[0, 0] > 0 and var_i > 0:
                corr = cov_matrix[i, 0] / (np.sqrt(cov_matrix[0, 0]) * sd_i)
                corr = float(np.clip(corr, -1.0, 1.0))
            else:
                corr = None

            var_comps.append(VarCompSummary(
                group=spec.group_name,
                name=term_names[i],
                variance=float(var_i),
                std_dev=float(sd_i),
                corr=corr,
            ))

    return var_comps


def _extract_blups(b: np.ndarray, specs: list[RandomEffectSpec]) -> dict[str, np.ndarray]:
    """Extract conditional modes per grouping factor from the flat b vector.

    b is structured as [b_group1, b_group2, ...] where each block has
    J_k * q_k elements in term-major order.

    Returns dict: group_name → (J_k, q_k) array.
    """
    result = {}
    offset = 0
    for spec in specs:
        block_size = spec.n_groups * spec.n_terms
        b_block = b[offset:offset + block_size]
        result[spec.group_name] = b_block.reshape(spec.n_terms, spec.n_groups).T.copy()
        offset += block_size
    return result
