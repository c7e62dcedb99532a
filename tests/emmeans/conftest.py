"""
Shared fitted models for marginal means and contrast tests.

Models are fitted once per module; every dataset has its own seed so the
fits do not depend on test order.
"""

import numpy as np
import pytest
from scipy import special

from pyemmeans.families import FamilySpec
from pyemmeans.mixed import CovariateSpec, ModelSpec, fit


@pytest.fixture(scope="module")
def dose_data():
    """Three treatment arms, 6 subjects each × 5 replicate bins, beta outcome."""
    rng = np.random.default_rng(11)
    arms = np.array(['Control', 'LowDose', 'HighDose'])
    means = {'Control': 0.09, 'LowDose': 0.10, 'HighDose': 0.13}
    n_subjects, n_bins = 18, 5
    subject = np.repeat(np.arange(n_subjects), n_bins)
    treatment = arms[subject // 6]
    subject_effect = rng.normal(0.0, 0.05, n_subjects)
    eta = special.logit([means[t] for t in treatment]) + subject_effect[subject]
    mu = special.expit(eta)
    phi = 500.0
    y = rng.beta(mu * phi, (1.0 - mu) * phi)
    return {
        'ramification_index': y,
        'treatment': treatment,
        'subject': subject,
    }


@pytest.fixture(scope="module")
def dose_model(dose_data):
    spec = ModelSpec(
        response='ramification_index', fixed=('treatment',),
        random=('subject',), family=FamilySpec('beta'), name='dose',
    )
    return fit(dose_data, spec)


@pytest.fixture(scope="module")
def sholl_data():
    """Intersection counts at three distances, treatment × distance."""
    rng = np.random.default_rng(22)
    distances = np.array([10, 20, 30])
    n_subjects = 12
    subject = np.repeat(np.arange(n_subjects), len(distances) * 2)
    distance = np.tile(np.repeat(distances, 2), n_subjects)
    treated = subject >= 6
    subject_effect = rng.normal(0.0, 0.1, n_subjects)
    log_mu = (np.log(15.0) - 0.02 * (distance - 10) + 0.25 * treated
              + 0.1 * treated * (distance == 30) + subject_effect[subject])
    theta = 8.0
    y = rng.negative_binomial(theta, theta / (theta + np.exp(log_mu))).astype(float)
    return {
        'intersections': y,
        'treatment': np.where(treated, 'Treatment', 'Control'),
        'distance': distance,
        'subject': subject,
    }


@pytest.fixture(scope="module")
def sholl_model(sholl_data):
    spec = ModelSpec(
        response='intersections', fixed=('treatment', 'distance'),
        interactions=(('treatment', 'distance'),),
        random=('subject',), family=FamilySpec('negative_binomial'),
    )
    return fit(sholl_data, spec)


@pytest.fixture(scope="module")
def spline_model():
    """Counts over ten distances with distance entering as a B-spline."""
    rng = np.random.default_rng(33)
    distances = np.arange(10, 101, 10)
    n_subjects = 10
    subject = np.repeat(np.arange(n_subjects), len(distances))
    distance = np.tile(distances, n_subjects)
    treated = subject >= 5
    log_mu = (np.log(20.0) - 0.0004 * (distance - 40) ** 2 + 0.2 * treated
              + rng.normal(0.0, 0.1, n_subjects)[subject])
    theta = 8.0
    y = rng.negative_binomial(theta, theta / (theta + np.exp(log_mu))).astype(float)
    data = {
        'intersections': y,
        'treatment': np.where(treated, 'Treatment', 'Control'),
        'distance': distance,
        'subject': subject,
    }
    spec = ModelSpec(
        response='intersections', fixed=('treatment', 'distance'),
        covariates={'distance': CovariateSpec('spline', df=4)},
        random=('subject',), family=FamilySpec('negative_binomial'),
    )
    return fit(data, spec)


@pytest.fixture(scope="module")
def linear_model(sholl_data):
    """Same counts with distance entering as a single linear slope."""
    spec = ModelSpec(
        response='intersections', fixed=('treatment', 'distance'),
        covariates={'distance': CovariateSpec('linear')},
        random=('subject',), family=FamilySpec('negative_binomial'),
        name='sholl_linear',
    )
    return fit(sholl_data, spec)


@pytest.fixture(scope="module")
def gamma_inverse_model():
    """Gamma outcome with the canonical inverse link, no grouping."""
    rng = np.random.default_rng(44)
    treatment = np.repeat(['Control', 'Treatment'], 20)
    mu = np.where(treatment == 'Control', 50.0, 60.0)
    shape = 5.0
    y = rng.gamma(shape, mu / shape)
    spec = ModelSpec(
        response='branch_length', fixed=('treatment',),
        family=FamilySpec('gamma'), name='branch_gamma',
    )
    return fit({'branch_length': y, 'treatment': treatment}, spec)
