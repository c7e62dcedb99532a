"""
Tests for the pyemmeans exception hierarchy.

Validates:
    - Inheritance chain (all exceptions catchable via PyEmmeansError)
    - Diagnostic attributes on each analysis-level error
    - outcome / model context in str()
"""

import pytest

from pyemmeans.core.exceptions import (
    ConvergenceError,
    ConvergenceFailure,
    DimensionError,
    DomainViolation,
    EstimationError,
    InsufficientPairs,
    NumericalError,
    PyEmmeansError,
    RankDeficiency,
    SingularCovariance,
    SingularMatrixError,
    UnsupportedCell,
    ValidationError,
)


# ═══════════════════════════════════════════════════════════════════════
# Inheritance hierarchy
# ═══════════════════════════════════════════════════════════════════════


class TestInheritance:
    """Every exception is catchable via PyEmmeansError."""

    @pytest.mark.parametrize("exc, parent", [
        (ValidationError("x"), PyEmmeansError),
        (DimensionError("x"), ValidationError),
        (DomainViolation("x"), ValidationError),
        (NumericalError("x"), PyEmmeansError),
        (SingularMatrixError("x"), NumericalError),
        (RankDeficiency("x"), SingularMatrixError),
        (SingularCovariance("x"), NumericalError),
        (ConvergenceError("x", iterations=1), PyEmmeansError),
        (ConvergenceFailure("x", iterations=1), ConvergenceError),
        (EstimationError("x"), PyEmmeansError),
        (UnsupportedCell("x"), EstimationError),
        (InsufficientPairs("x"), EstimationError),
    ])
    def test_parent(self, exc, parent):
        with pytest.raises(parent):
            raise exc

    def test_estimation_errors_are_not_validation_errors(self):
        assert not issubclass(UnsupportedCell, ValidationError)
        assert not issubclass(InsufficientPairs, ValidationError)


# ═══════════════════════════════════════════════════════════════════════
# Diagnostic attributes
# ═══════════════════════════════════════════════════════════════════════


class TestAttributes:

    def test_context_defaults_to_none(self):
        err = PyEmmeansError("boom")
        assert err.outcome is None
        assert err.model is None
        assert str(err) == "boom"

    def test_context_in_str(self):
        err = ValidationError("boom", outcome="soma_area", model="m1")
        assert str(err) == "boom [outcome='soma_area', model='m1']"

    def test_domain_violation(self):
        err = DomainViolation("bad", family="beta", n_invalid=3,
                              expected="0 < y < 1", outcome="ri")
        assert err.family == "beta"
        assert err.n_invalid == 3
        assert err.expected == "0 < y < 1"
        assert err.outcome == "ri"

    def test_rank_deficiency(self):
        err = RankDeficiency("rank", matrix_name="X", rank=2, expected_rank=3,
                             aliased=["group2y"])
        assert err.aliased == ("group2y",)
        assert err.rank == 2
        assert err.expected_rank == 3
        assert err.matrix_name == "X"

    def test_singular_covariance(self):
        err = SingularCovariance("neg", variance=-1e-12)
        assert err.variance == -1e-12

    def test_convergence_failure(self):
        err = ConvergenceFailure("slow", iterations=4000, reason="max_iterations",
                                 threshold=1e-6, model="m")
        assert err.iterations == 4000
        assert err.reason == "max_iterations"
        assert err.threshold == 1e-6
        assert err.final_change is None
        assert err.model == "m"

    def test_unsupported_cell(self):
        err = UnsupportedCell("nope", cell=(("distance", 999),),
                              available=(10, 20))
        assert err.cell == (("distance", 999),)
        assert err.available == (10, 20)

    def test_insufficient_pairs(self):
        err = InsufficientPairs("one", n_cells=1, stratum="distance = 10")
        assert err.n_cells == 1
        assert err.stratum == "distance = 10"
