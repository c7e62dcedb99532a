"""
Penalized weighted least squares (PWLS) solver.

For fixed θ (and hence fixed Λ_θ) and fixed working weights W, this solves

    minimize ‖√W (z - Xβ - ZΛu)‖² + ‖u‖²

where u = Λ⁻¹b are the "spherical" random effects and z is the PIRLS
working response. It is the linear-algebra kernel of the inner loop.

The solution proceeds block-wise via the L factor of Λ'Z'WZΛ + I and the
Schur complement RX RX' = X'WX - CX'CX. Without random effects (q = 0)
it reduces to weighted least squares.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48. Section 3.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray
import scipy.linalg as sla

from pyemmeans.core.exceptions import SingularMatrixError


@dataclass(frozen=True)
class PLSResult:
    """Result from penalized weighted least squares solve.

    Attributes:
        beta: Fixed effects estimates (p,).
        u: Spherical random effects (q,).
        b: Conditional modes b = Λu (q,).
        pwrss: Penalized weighted residual sum of squares.
        L: Cholesky factor of (Λ'Z'WZΛ + I), shape (q, q).
        RX: Lower Cholesky factor of the Schur complement, shape (p, p).
            RX RX' is the precision of β given θ and W.
        eta: Linear predictor Xβ + Zb (n,).
    """
    beta: NDArray
    u: NDArray
    b: NDArray
    pwrss: float
    L: NDArray
    RX: NDArray
    eta: NDArray

    @property
    def log_det_L(self) -> float:
        """log|L|² = log det(Λ'Z'WZΛ + I); 0 without random effects."""
        if self.L.shape[0] == 0:
            return 0.0
        return 2.0 * float(np.sum(np.log(np.diag(self.L))))


def _cholesky(A: NDArray, name: str) -> NDArray:
    try:
        return np.linalg.cholesky(A)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(
            f"{name} is not positive definite",
            matrix_name=name,
            condition_number=float(np.linalg.cond(A)),
        ) from e


def solve_pls(
    X: NDArray,
    Z: NDArray,
    z: NDArray,
    Lambda: NDArray,
    weights: NDArray,
) -> PLSResult:
    """Solve the penalized weighted least squares problem.

    The normal equations of the penalized system are:

        [Λ'Z'WZΛ + I   Λ'Z'WX ] [u]   [Λ'Z'Wz]
        [X'WZΛ         X'WX   ] [β] = [X'Wz  ]

    u is eliminated through L, β comes from the Schur complement, then u
    is back-substituted.

    Args:
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q), possibly q = 0.
        z: Working response (n,).
        Lambda: Relative covariance factor (q, q), block-diagonal.
        weights: Working weights (n,), strictly positive.

    Returns:
        PLSResult with all estimates.

    Raises:
        SingularMatrixError: If the Schur complement is not positive definite.
    """
    q = Z.shape[1]

    sqrt_w = np.sqrt(weights)
    Xw = X * sqrt_w[:, np.newaxis]
    zw = z * sqrt_w

    Xt_X = Xw.T @ Xw
    Xt_z = Xw.T @ zw

    if q == 0:
        RX = _cholesky(Xt_X, "X'WX")
        tmp = sla.solve_triangular(RX, Xt_z, lower=True)
        beta = sla.solve_triangular(RX.T, tmp, lower=False)
        u = np.zeros(0, dtype=np.float64)
        b = u
        eta = X @ beta
        L = np.zeros((0, 0), dtype=np.float64)
    else:
        ZLam = (Z * sqrt_w[:, np.newaxis]) @ Lambda

        # L = cholesky(Λ'Z'WZΛ + I); always PD because of the + I
        L = np.linalg.cholesky(ZLam.T @ ZLam + np.eye(q))

        ZLam_t_z = ZLam.T @ zw
        ZLam_t_X = ZLam.T @ Xw

        cu = sla.solve_triangular(L, ZLam_t_z, lower=True)
        CX = sla.solve_triangular(L, ZLam_t_X, lower=True)

        RX = _cholesky(Xt_X - CX.T @ CX, "RX'RX")
        tmp = sla.solve_triangular(RX, Xt_z - CX.T @ cu, lower=True)
        beta = sla.solve_triangular(RX.T, tmp, lower=False)

        # L L' u = Λ'Z'W(z - Xβ)
        cu_final = sla.solve_triangular(L, ZLam_t_z - ZLam_t_X @ beta, lower=True)
        u = sla.solve_triangular(L.T, cu_final, lower=False)
        b = Lambda @ u
        eta = X @ beta + Z @ b

    pwrss = float(np.sum(weights * (z - eta) ** 2)) + float(u @ u)

    return PLSResult(beta=beta, u=u, b=b, pwrss=pwrss, L=L, RX=RX, eta=eta)
