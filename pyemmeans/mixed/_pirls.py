"""
Penalized Iteratively Reweighted Least Squares (PIRLS) for GLMM.

For a GLMM with given θ (and hence Λ_θ) and a given dispersion, PIRLS
iteratively finds the conditional modes of the random effects and the
fixed effects by solving a sequence of penalized weighted least squares
problems.

This is the inner loop of GLMM estimation. The outer loop optimizes θ
and the dispersion to minimize the Laplace-approximated deviance.

The working weights come from Fisher scoring on the mean:

    d = dμ/dη,   w = I(μ) d²,   z = η + s(y, μ) / (I(μ) d)

with s the score dℓ/dμ and I the expected information. For exponential
families this is the textbook IRLS update; the beta family needs the
general form because its score is not linear in y.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), Section 3.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from pyemmeans.families import Family
from pyemmeans.mixed._pls import solve_pls, PLSResult


_MAX_HALVINGS = 10
_MIN_WEIGHT = 1e-10


@dataclass(frozen=True)
class PIRLSResult:
    """Result from PIRLS convergence.

    Attributes:
        pls: The final PLS result (contains beta, u, b, L, RX).
        mu: Fitted values on the response scale (n,).
        eta: Linear predictor Xβ + Zb (n,).
        cond_loglik: Conditional log-likelihood log f(y | b) at the modes.
        penalized_deviance: -2 cond_loglik + ‖u‖².
        converged: Whether PIRLS converged.
        n_iter: Number of PIRLS iterations.
    """
    pls: PLSResult
    mu: NDArray
    eta: NDArray
    cond_loglik: float
    penalized_deviance: float
    converged: bool
    n_iter: int


def _working_system(
    y: NDArray, mu: NDArray, eta: NDArray, family: Family, dispersion: float,
) -> tuple[NDArray, NDArray]:
    """Working response z and weights w for one Fisher-scoring step."""
    d = family.link.mu_eta(eta)
    info = family.information(mu, dispersion)
    score = family.score(y, mu, dispersion)
    w = np.maximum(info * d ** 2, _MIN_WEIGHT)
    z = eta + score / (info * d)
    return z, w


def solve_pirls(
    X: NDArray,
    Z: NDArray,
    y: NDArray,
    Lambda: NDArray,
    family: Family,
    dispersion: float,
    tol: float = 1e-8,
    max_iter: int = 50,
) -> PIRLSResult:
    """Penalized IRLS for GLMM (inner loop).

    For given θ (hence Λ) and dispersion, iterates:

    1. Compute working response z and weights w at the current μ
    2. Solve penalized WLS: minimize ‖√W(z - Xβ - ZΛu)‖² + ‖u‖²
    3. Update η = Xβ + ZΛu, μ = g⁻¹(η); halve the step while the
       penalized deviance increases
    4. Check convergence on the relative penalized-deviance change

    After convergence the weights are refreshed at the final μ and the
    system solved once more so that L and RX describe the mode.

    Args:
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q).
        y: Response vector (n,).
        Lambda: Relative covariance factor (q, q).
        family: Family providing link, score and information.
        dispersion: Family dispersion parameter, held fixed.
        tol: Convergence tolerance on relative deviance change.
        max_iter: Maximum PIRLS iterations.

    Returns:
        PIRLSResult with converged (or last) estimates.

    Raises:
        SingularMatrixError: If the fixed-effect block becomes singular.
    """
    link = family.link
    n = len(y)
    wt = np.ones(n, dtype=np.float64)

    def penalized_deviance(mu_: NDArray, u_: NDArray) -> float:
        return -2.0 * family.log_likelihood(y, mu_, wt, dispersion) + float(u_ @ u_)

    mu = family.clip_mu(family.initialize(y))
    eta = link.link(mu)

    beta_old: NDArray | None = None
    u_old: NDArray | None = None
    pdev_old = np.inf
    converged = False
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        z, w = _working_system(y, mu, eta, family, dispersion)
        pls = solve_pls(X, Z, z, Lambda, weights=w)

        beta, u = pls.beta, pls.u
        eta = X @ beta + Z @ (Lambda @ u)
        mu = family.clip_mu(link.linkinv(eta))
        pdev = penalized_deviance(mu, u)

        if beta_old is not None:
            halvings = 0
            while not (np.isfinite(pdev) and pdev <= pdev_old) and halvings < _MAX_HALVINGS:
                beta = 0.5 * (beta + beta_old)
                u = 0.5 * (u + u_old)
                eta = X @ beta + Z @ (Lambda @ u)
                mu = family.clip_mu(link.linkinv(eta))
                pdev = penalized_deviance(mu, u)
                halvings += 1

        if np.isfinite(pdev_old) and abs(pdev - pdev_old) / (abs(pdev_old) + 0.1) < tol:
            converged = True
            pdev_old = pdev
            beta_old, u_old = beta, u
            break
        pdev_old = pdev
        beta_old, u_old = beta, u

    z, w = _working_system(y, mu, eta, family, dispersion)
    final = solve_pls(X, Z, z, Lambda, weights=w)
    final = PLSResult(
        beta=beta_old, u=u_old, b=Lambda @ u_old, pwrss=final.pwrss,
        L=final.L, RX=final.RX, eta=eta,
    )

    return PIRLSResult(
        pls=final,
        mu=mu,
        eta=eta,
        cond_loglik=family.log_likelihood(y, mu, wt, dispersion),
        penalized_deviance=float(pdev_old),
        converged=converged,
        n_iter=n_iter,
    )
