"""Tests for the penalized weighted least squares solver and PIRLS."""

import numpy as np
import pytest

from pyemmeans.families import Beta, Gaussian, NegativeBinomial
from pyemmeans.mixed._pls import solve_pls
from pyemmeans.mixed._pirls import solve_pirls
from pyemmeans.mixed._deviance import laplace_deviance, laplace_objective


@pytest.fixture
def small_system(rng):
    n, p, J = 40, 2, 5
    X = np.column_stack([np.ones(n), rng.standard_normal(n)])
    groups = np.repeat(np.arange(J), n // J)
    Z = np.zeros((n, J))
    Z[np.arange(n), groups] = 1.0
    z = X @ np.array([1.0, -0.5]) + rng.standard_normal(J)[groups] + 0.3 * rng.standard_normal(n)
    w = rng.uniform(0.5, 2.0, n)
    return X, Z, z, w


class TestSolvePLS:

    def test_no_random_effects_is_wls(self, small_system):
        X, _, z, w = small_system
        Z = np.zeros((len(z), 0))
        result = solve_pls(X, Z, z, np.zeros((0, 0)), weights=w)
        W = np.diag(w)
        expected = np.linalg.solve(X.T @ W @ X, X.T @ W @ z)
        np.testing.assert_allclose(result.beta, expected, rtol=1e-10)
        assert result.u.shape == (0,)
        assert result.log_det_L == 0.0

    def test_zero_lambda_reduces_to_wls(self, small_system):
        X, Z, z, w = small_system
        result = solve_pls(X, Z, z, np.zeros((5, 5)), weights=w)
        W = np.diag(w)
        expected = np.linalg.solve(X.T @ W @ X, X.T @ W @ z)
        np.testing.assert_allclose(result.beta, expected, rtol=1e-10)
        np.testing.assert_allclose(result.u, 0.0, atol=1e-12)

    def test_matches_augmented_normal_equations(self, small_system):
        X, Z, z, w = small_system
        Lambda = 0.8 * np.eye(5)
        result = solve_pls(X, Z, z, Lambda, weights=w)

        A = np.hstack([Z @ Lambda, X])
        penalty = np.diag(np.r_[np.ones(5), np.zeros(2)])
        lhs = A.T @ (A * w[:, np.newaxis]) + penalty
        rhs = A.T @ (w * z)
        sol = np.linalg.solve(lhs, rhs)

        np.testing.assert_allclose(result.u, sol[:5], rtol=1e-8, atol=1e-10)
        np.testing.assert_allclose(result.beta, sol[5:], rtol=1e-8)
        np.testing.assert_allclose(result.b, Lambda @ result.u)

    def test_log_det(self, small_system):
        X, Z, z, w = small_system
        Lambda = 1.3 * np.eye(5)
        result = solve_pls(X, Z, z, Lambda, weights=w)
        ZL = Z @ Lambda
        _, logdet = np.linalg.slogdet(ZL.T @ (ZL * w[:, np.newaxis]) + np.eye(5))
        assert result.log_det_L == pytest.approx(logdet, rel=1e-10)

    def test_rx_inverts_to_fixed_effect_precision(self, small_system):
        X, _, z, w = small_system
        result = solve_pls(X, np.zeros((len(z), 0)), z, np.zeros((0, 0)), weights=w)
        np.testing.assert_allclose(result.RX @ result.RX.T, X.T @ (X * w[:, np.newaxis]),
                                   rtol=1e-10)


class TestSolvePIRLS:

    def test_gaussian_identity_is_one_step(self, small_system):
        X, Z, y, _ = small_system
        Lambda = np.eye(5)
        pirls = solve_pirls(X, Z, y, Lambda, Gaussian(), dispersion=0.09)
        direct = solve_pls(X, Z, y, Lambda, weights=np.full(len(y), 1 / 0.09))
        assert pirls.converged
        np.testing.assert_allclose(pirls.pls.beta, direct.beta, rtol=1e-8)

    def test_negative_binomial_converges(self, rng):
        n = 60
        X = np.column_stack([np.ones(n), np.repeat([0.0, 1.0], n // 2)])
        y = rng.negative_binomial(10, 10 / (10 + np.exp(1.5 + 0.5 * X[:, 1]))).astype(float)
        pirls = solve_pirls(X, np.zeros((n, 0)), y, np.zeros((0, 0)),
                            NegativeBinomial(), dispersion=10.0)
        assert pirls.converged
        # without random effects the NB score equations give the group means
        np.testing.assert_allclose(
            np.exp(pirls.pls.beta[0]), y[:n // 2].mean(), rtol=1e-6
        )

    def test_beta_fitted_means_in_unit_interval(self, rng):
        n = 50
        X = np.ones((n, 1))
        y = rng.beta(9.0, 81.0, n)
        pirls = solve_pirls(X, np.zeros((n, 0)), y, np.zeros((0, 0)),
                            Beta(), dispersion=90.0)
        assert pirls.converged
        assert np.all((pirls.mu > 0) & (pirls.mu < 1))


class TestLaplaceDeviance:

    def test_objective_matches_deviance(self, small_system):
        from pyemmeans.mixed._random_effects import parse_random_effects
        from pyemmeans.mixed.model import RandomTerm

        X, Z, y, _ = small_system
        groups = np.repeat(np.arange(5), 8)
        specs = parse_random_effects((RandomTerm('g'),), {'g': groups}, len(y))
        ev = laplace_deviance(np.array([0.9]), 0.2, X, Z, y, specs, Gaussian())
        obj = laplace_objective(np.array([0.9, np.log(0.2)]), X, Z, y, specs,
                                Gaussian(), 1)
        assert obj == pytest.approx(ev.deviance)
        assert ev.log_likelihood == pytest.approx(-0.5 * ev.deviance)

    def test_gaussian_laplace_is_exact(self, small_system):
        """For the gaussian identity model the Laplace deviance is -2 log L."""
        from pyemmeans.mixed._random_effects import parse_random_effects
        from pyemmeans.mixed.model import RandomTerm
        from scipy import stats

        X, Z, y, _ = small_system
        groups = np.repeat(np.arange(5), 8)
        specs = parse_random_effects((RandomTerm('g'),), {'g': groups}, len(y))
        theta, sigma2 = 0.9, 0.2
        ev = laplace_deviance(np.array([theta]), sigma2, X, Z, y, specs, Gaussian())

        # marginal: y ~ N(Xβ̂, σ²I + θ² Z Z') evaluated at the conditional β̂
        V = sigma2 * np.eye(len(y)) + theta ** 2 * Z @ Z.T
        marginal = stats.multivariate_normal(X @ ev.pirls.pls.beta, V).logpdf(y)
        assert ev.log_likelihood == pytest.approx(marginal, rel=1e-8)
