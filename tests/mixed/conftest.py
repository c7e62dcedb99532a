"""
Shared fixtures for mixed model tests.

Provides realistic datasets with known structure for each family.
"""

import numpy as np
import pytest
from scipy import special


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(2024)


@pytest.fixture(scope="module")
def beta_crossed():
    """Unaggregated proportions: treatment + (1 | subject) + (1 | replicate_bin).

    25 subjects (13 Control, 12 Treatment) × 9 replicate bins = 225 rows.
    Means 0.09 vs 0.10, precision φ = 800, subject SD 0.02 on the logit scale.
    """
    rng = np.random.default_rng(101)
    n_subjects, n_bins = 25, 9
    subject = np.repeat(np.arange(n_subjects), n_bins)
    replicate_bin = np.tile(np.arange(n_bins), n_subjects)
    treated = subject >= 13
    treatment = np.where(treated, 'Treatment', 'Control')

    subject_effect = rng.normal(0.0, 0.02, n_subjects)
    bin_effect = rng.normal(0.0, 0.01, n_bins)
    eta = (np.where(treated, special.logit(0.10), special.logit(0.09))
           + subject_effect[subject] + bin_effect[replicate_bin])
    mu = special.expit(eta)
    phi = 800.0
    y = rng.beta(mu * phi, (1.0 - mu) * phi)

    return {
        'ramification_index': y,
        'treatment': treatment,
        'subject': np.array([f"s{s:02d}" for s in subject]),
        'replicate_bin': replicate_bin,
    }


@pytest.fixture(scope="module")
def nb_counts():
    """Sholl-style counts: treatment × distance + (1 | subject).

    2 treatments × 8 subjects each × 6 distances, negative binomial with
    size θ = 5.
    """
    rng = np.random.default_rng(202)
    n_per_group, distances = 8, np.array([10, 20, 30, 40, 50, 60])
    n_subjects = 2 * n_per_group
    subject = np.repeat(np.arange(n_subjects), len(distances))
    distance = np.tile(distances, n_subjects)
    treated = subject >= n_per_group

    subject_effect = rng.normal(0.0, 0.15, n_subjects)
    log_mu = (np.log(12.0) - 0.03 * (distance - 10)
              + 0.3 * treated + subject_effect[subject])
    mu = np.exp(log_mu)
    theta = 5.0
    y = rng.negative_binomial(theta, theta / (theta + mu)).astype(float)

    return {
        'intersections': y,
        'treatment': np.where(treated, 'Treatment', 'Control'),
        'distance': distance,
        'subject': subject,
    }


@pytest.fixture(scope="module")
def gaussian_intercept():
    """y ~ treatment + (1 | subject), gaussian.

    20 subjects × 6 observations, treatment effect 2.0, subject SD 1.5,
    residual SD 1.0.
    """
    rng = np.random.default_rng(303)
    n_subjects, n_per = 20, 6
    subject = np.repeat(np.arange(n_subjects), n_per)
    treated = subject >= 10
    subject_effect = rng.normal(0.0, 1.5, n_subjects)
    y = 10.0 + 2.0 * treated + subject_effect[subject] + rng.normal(0.0, 1.0, len(subject))
    return {
        'soma_area': y,
        'treatment': np.where(treated, 'Treatment', 'Control'),
        'subject': subject,
    }


@pytest.fixture(scope="module")
def gamma_intercept():
    """Positive skewed outcome: treatment + (1 | subject), gamma with log link.

    16 subjects × 8 observations, shape 5 (φ = 0.2), treatment ratio e^0.4.
    """
    rng = np.random.default_rng(404)
    n_subjects, n_per = 16, 8
    subject = np.repeat(np.arange(n_subjects), n_per)
    treated = subject >= 8
    subject_effect = rng.normal(0.0, 0.1, n_subjects)
    mu = np.exp(np.log(50.0) + 0.4 * treated + subject_effect[subject])
    shape = 5.0
    y = rng.gamma(shape, mu / shape)
    return {
        'branch_length': y,
        'treatment': np.where(treated, 'Treatment', 'Control'),
        'subject': subject,
    }
