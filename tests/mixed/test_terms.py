"""Tests for fixed-effect term encoding."""

import numpy as np
import pytest

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.families import FamilySpec
from pyemmeans.mixed.model import CovariateSpec, ModelSpec
from pyemmeans.mixed._terms import (
    build_encoder,
    encode_treatment,
    interaction_columns,
    spline_basis,
    spline_knots,
)


class TestEncodeTreatment:

    def test_baseline_dropped(self):
        X = encode_treatment(np.array(['a', 'b', 'c', 'a']), ('a', 'b', 'c'))
        np.testing.assert_array_equal(X, [[0, 0], [1, 0], [0, 1], [0, 0]])

    def test_unknown_level(self):
        with pytest.raises(ValidationError, match="not among the levels"):
            encode_treatment(np.array(['a', 'z']), ('a', 'b'), name='treatment')


class TestSpline:

    def test_basis_shape(self):
        x = np.linspace(10, 100, 10)
        knots = spline_knots(x, df=4, degree=3)
        assert spline_basis(x, knots, 3).shape == (10, 4)

    def test_boundary_rows(self):
        x = np.array([10.0, 40.0, 100.0])
        knots = spline_knots(np.linspace(10, 100, 10), df=4, degree=3)
        B = spline_basis(x, knots, 3)
        # the dropped first function carries all the weight at the lower end
        np.testing.assert_allclose(B[0], 0.0, atol=1e-12)
        assert B[2].sum() == pytest.approx(1.0)

    def test_too_few_distinct_values(self):
        with pytest.raises(ValidationError, match="distinct"):
            spline_knots(np.array([1.0, 2.0, 3.0]), df=6, degree=3)

    def test_outside_range(self):
        knots = spline_knots(np.linspace(10, 100, 10), df=4, degree=3)
        with pytest.raises(ValidationError, match="outside the spline range"):
            spline_basis(np.array([120.0]), knots, 3, name='distance')


class TestInteractions:

    def test_shape_and_order(self):
        A = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        B = np.array([[2.0], [3.0], [4.0]])
        np.testing.assert_array_equal(
            interaction_columns(A, B), [[2.0, 0.0], [0.0, 3.0], [4.0, 4.0]]
        )


class TestBuildEncoder:

    @pytest.fixture
    def columns(self):
        return {
            'treatment': np.array(['Control', 'Treatment'] * 6),
            'distance': np.repeat([10, 20, 30], 4),
            'age': np.linspace(1.0, 12.0, 12),
        }

    def test_column_names(self, columns):
        spec = ModelSpec(
            response='y', fixed=('treatment', 'distance'),
            interactions=(('treatment', 'distance'),),
        )
        encoder = build_encoder(spec, columns)
        assert encoder.column_names == (
            '(Intercept)', 'treatmentTreatment', 'distance20', 'distance30',
            'treatmentTreatment:distance20', 'treatmentTreatment:distance30',
        )
        X = encoder.encode(columns)
        assert X.shape == (12, 6)

    def test_declared_levels_set_reference(self, columns):
        spec = ModelSpec(
            response='y', fixed=('treatment',),
            covariates={'treatment': CovariateSpec(levels=('Treatment', 'Control'))},
        )
        encoder = build_encoder(spec, columns)
        assert encoder.column_names == ('(Intercept)', 'treatmentControl')
        assert encoder.term('treatment').levels == ('Treatment', 'Control')

    def test_undeclared_observed_level(self, columns):
        spec = ModelSpec(
            response='y', fixed=('treatment',),
            covariates={'treatment': CovariateSpec(levels=('Control', 'Other'))},
        )
        with pytest.raises(ValidationError, match="declared levels"):
            build_encoder(spec, columns)

    def test_linear_covariate_center(self, columns):
        spec = ModelSpec(response='y', fixed=('age',),
                         covariates={'age': CovariateSpec('linear')})
        info = build_encoder(spec, columns).term('age')
        assert info.kind == 'linear'
        assert info.center == pytest.approx(6.5)

    def test_spline_labels(self):
        columns = {'distance': np.tile(np.arange(10, 101, 10), 2)}
        spec = ModelSpec(response='y', fixed=('distance',),
                         covariates={'distance': CovariateSpec('spline', df=4)})
        encoder = build_encoder(spec, columns)
        assert encoder.column_names[1:] == (
            'bs(distance)1', 'bs(distance)2', 'bs(distance)3', 'bs(distance)4',
        )

    def test_single_level_factor(self):
        spec = ModelSpec(response='y', fixed=('treatment',))
        with pytest.raises(ValidationError, match="at least 2 levels"):
            build_encoder(spec, {'treatment': np.array(['Control'] * 4)})

    def test_missing_predictor_on_encode(self, columns):
        spec = ModelSpec(response='y', fixed=('treatment',))
        encoder = build_encoder(spec, columns)
        with pytest.raises(ValidationError, match="Missing predictor"):
            encoder.encode({'distance': columns['distance']})


class TestModelSpec:

    def test_string_shorthand(self):
        spec = ModelSpec(response='ri', fixed='treatment', random='subject',
                         family='beta')
        assert spec.fixed == ('treatment',)
        assert spec.random[0].group == 'subject'
        assert spec.family == FamilySpec('beta')

    def test_formula(self):
        spec = ModelSpec(
            response='intersections', fixed=('treatment', 'distance'),
            interactions=(('treatment', 'distance'),),
            covariates={'distance': CovariateSpec('spline', df=4)},
            random=('subject',),
            family=FamilySpec('negative_binomial'),
        )
        assert spec.formula == (
            'intersections ~ treatment + bs(distance, df=4) + '
            'treatment:distance + (1 | subject)'
        )
        assert spec.name == spec.formula

    def test_response_as_predictor(self):
        with pytest.raises(ValidationError, match="response"):
            ModelSpec(response='y', fixed=('y',))

    def test_covariate_not_fixed(self):
        with pytest.raises(ValidationError, match="not a fixed term"):
            ModelSpec(response='y', fixed=('treatment',),
                      covariates={'age': CovariateSpec('linear')})

    def test_grouping_columns(self):
        from pyemmeans.mixed.model import RandomTerm
        spec = ModelSpec(response='y', fixed=('treatment',),
                         random=(RandomTerm('cell', nested_in='animal'), 'bin'))
        assert spec.grouping_columns == ('animal', 'cell', 'bin')
