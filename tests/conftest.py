"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture(scope="module")
def two_group_beta():
    """Deterministic two-group proportions, no grouping structure.

    Control n=13 around 0.09, Treatment n=12 around 0.10.
    """
    control = 0.09 + np.linspace(-0.04, 0.04, 13)
    treated = 0.10 + np.linspace(-0.04, 0.04, 12)
    return {
        'ramification_index': np.concatenate([control, treated]),
        'treatment': np.array(['Control'] * 13 + ['Treatment'] * 12),
    }
