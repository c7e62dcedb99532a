"""Tests for estimated marginal means over a reference grid."""

from dataclasses import replace

import numpy as np
import pytest
from scipy import special, stats

from pyemmeans.core.exceptions import UnsupportedCell, ValidationError
from pyemmeans.emmeans import EMMSolution, MarginalEstimate, emmeans
from pyemmeans.mixed import GLMMSolution


class TestBetaMarginalMeans:

    @pytest.fixture(scope="class")
    def emm(self, dose_model):
        return emmeans(dose_model, 'treatment')

    def test_one_estimate_per_level(self, emm):
        assert isinstance(emm, EMMSolution)
        assert len(emm) == 3
        assert [e.cell for e in emm] == [
            (('treatment', 'Control'),),
            (('treatment', 'HighDose'),),
            (('treatment', 'LowDose'),),
        ]
        assert all(isinstance(e, MarginalEstimate) for e in emm)

    def test_link_scale_matches_coefficients(self, emm, dose_model):
        b = dose_model.fixef
        control, high, low = (e.emmean for e in emm)
        assert control == pytest.approx(b['(Intercept)'])
        assert high == pytest.approx(b['(Intercept)'] + b['treatmentHighDose'])
        assert low == pytest.approx(b['(Intercept)'] + b['treatmentLowDose'])

    def test_se_is_quadratic_form(self, emm, dose_model):
        L = emm.params.linfct
        expected = np.sqrt(np.einsum('ij,jk,ik->i', L, dose_model.vcov, L))
        np.testing.assert_allclose([e.se for e in emm], expected)

    def test_response_scale_in_unit_interval(self, emm):
        for e in emm:
            assert 0 < e.response_lower < e.response < e.response_upper < 1
            assert e.response == pytest.approx(special.expit(e.emmean))

    def test_response_interval_is_back_transformed(self, emm):
        for e in emm:
            assert e.response_lower == pytest.approx(special.expit(e.lower))
            assert e.response_upper == pytest.approx(special.expit(e.upper))

    def test_delta_method_se(self, emm):
        for e in emm:
            mu = special.expit(e.emmean)
            assert e.response_se == pytest.approx(mu * (1 - mu) * e.se)

    def test_wald_interval(self, emm):
        crit = stats.norm.ppf(0.975)
        for e in emm:
            assert e.lower == pytest.approx(e.emmean - crit * e.se)
            assert e.upper == pytest.approx(e.emmean + crit * e.se)

    def test_ordering_of_means(self, emm):
        control, high, low = (e.response for e in emm)
        assert high > control

    def test_narrower_interval_at_lower_confidence(self, dose_model, emm):
        emm90 = emmeans(dose_model, 'treatment', conf_level=0.90)
        for e95, e90 in zip(emm, emm90):
            assert (e90.upper - e90.lower) < (e95.upper - e95.lower)
        assert emm90.conf_level == 0.90

    def test_restrict_levels_with_at(self, dose_model):
        emm = emmeans(dose_model, 'treatment',
                      at={'treatment': ['Control', 'LowDose']})
        assert [e.cell[0][1] for e in emm] == ['Control', 'LowDose']

    def test_to_frame(self, emm):
        df = emm.to_frame()
        assert list(df.columns) == [
            'treatment', 'emmean', 'SE', 'lower.CL', 'upper.CL',
            'response', 'response.SE', 'response.lower.CL', 'response.upper.CL',
        ]
        assert df['treatment'].tolist() == ['Control', 'HighDose', 'LowDose']

    def test_summary(self, emm):
        s = emm.summary()
        assert "logit" in s
        assert "Confidence level used: 0.95" in s
        assert "HighDose" in s

    def test_repr(self, emm):
        assert repr(emm) == "EMMSolution(specs=['treatment'], by=[], cells=3)"

    def test_result_info(self, emm):
        assert emm.result.info['inference'] == 'asymptotic (z)'
        assert emm.result.backend_name == 'cpu_emmeans'


class TestAveragingAndStrata:

    def test_equal_weights_average_other_factor(self, sholl_model):
        b = sholl_model.fixef
        emm = emmeans(sholl_model, 'treatment')
        control, treated = (e.emmean for e in emm)
        assert control == pytest.approx(
            b['(Intercept)'] + (b['distance20'] + b['distance30']) / 3
        )
        assert treated == pytest.approx(
            b['(Intercept)'] + b['treatmentTreatment']
            + (b['distance20'] + b['distance30']
               + b['treatmentTreatment:distance20']
               + b['treatmentTreatment:distance30']) / 3
        )

    def test_reference_weights_hold_reference_level(self, sholl_model):
        b = sholl_model.fixef
        emm = emmeans(sholl_model, 'treatment', weights='reference')
        control, treated = (e.emmean for e in emm)
        assert control == pytest.approx(b['(Intercept)'])
        assert treated == pytest.approx(b['(Intercept)'] + b['treatmentTreatment'])

    def test_by_orders_cells_by_stratum(self, sholl_model):
        emm = emmeans(sholl_model, 'treatment', by='distance')
        assert len(emm) == 6
        assert emm.params.strata[:2] == ((('distance', 10),), (('distance', 10),))
        assert emm.params.levels[:2] == ('Control', 'Treatment')
        assert emm.estimates[0].cell == (('treatment', 'Control'), ('distance', 10))
        assert emm.by == ('distance',)

    def test_by_with_at_subset(self, sholl_model):
        emm = emmeans(sholl_model, 'treatment', by='distance',
                      at={'distance': [10, 30]})
        assert len(emm) == 4
        assert {s[0][1] for s in emm.params.strata} == {10, 30}

    def test_response_scale_non_negative(self, sholl_model):
        emm = emmeans(sholl_model, 'treatment', by='distance')
        for e in emm:
            assert e.response > 0
            assert e.response == pytest.approx(np.exp(e.emmean))

    def test_two_factor_specs(self, sholl_model):
        emm = emmeans(sholl_model, ('treatment', 'distance'))
        assert len(emm) == 6
        assert emm.params.levels[0] == ('Control', 10)

    def test_stratified_summary_has_headers(self, sholl_model):
        s = emmeans(sholl_model, 'treatment', by='distance').summary()
        assert "distance = 10:" in s
        assert "distance = 30:" in s


class TestSplineCovariate:

    def test_spline_cannot_be_averaged(self, spline_model):
        with pytest.raises(UnsupportedCell, match="spline"):
            emmeans(spline_model, 'treatment')

    def test_spline_pinned_by_single_value(self, spline_model):
        emm = emmeans(spline_model, 'treatment', at={'distance': [50]})
        assert len(emm) == 2

    def test_spline_averaging_over_several_values(self, spline_model):
        with pytest.raises(UnsupportedCell):
            emmeans(spline_model, 'treatment', at={'distance': [20, 50]})

    def test_spline_as_stratum(self, spline_model):
        emm = emmeans(spline_model, 'treatment', by='distance')
        assert len(emm) == 20


class TestLinearCovariate:

    def test_held_at_mean_by_default(self, linear_model, sholl_data):
        b = linear_model.fixef
        emm = emmeans(linear_model, 'treatment')
        control, treated = (e.emmean for e in emm)
        center = np.mean(sholl_data['distance'])
        assert control == pytest.approx(b['(Intercept)'] + b['distance'] * center)
        assert treated - control == pytest.approx(b['treatmentTreatment'])

    def test_observed_values_as_strata(self, linear_model):
        emm = emmeans(linear_model, 'treatment', by='distance',
                      at={'distance': [10, 30]})
        assert len(emm) == 4
        b = linear_model.fixef
        assert emm.estimates[0].emmean == pytest.approx(
            b['(Intercept)'] + 10 * b['distance']
        )

    def test_value_between_observed_is_rejected(self, linear_model):
        with pytest.raises(UnsupportedCell) as exc_info:
            emmeans(linear_model, 'treatment', by='distance',
                    at={'distance': [15]})
        assert exc_info.value.cell == (('distance', 15),)
        assert exc_info.value.available == (10, 20, 30)
        assert exc_info.value.model == 'sholl_linear'

    def test_value_outside_observed_is_rejected(self, linear_model):
        with pytest.raises(UnsupportedCell, match="never observed"):
            emmeans(linear_model, 'treatment', at={'distance': [45]})


def _with_params(model, **changes):
    params = replace(model.params, **changes)
    return GLMMSolution(_result=replace(model.result, params=params))


class TestInverseLink:

    def test_response_is_reciprocal(self, gamma_inverse_model):
        emm = emmeans(gamma_inverse_model, 'treatment')
        assert emm.result.warnings == ()
        for e in emm:
            assert e.response == pytest.approx(1.0 / e.emmean)
            assert e.response_lower == pytest.approx(1.0 / e.upper)
            assert e.response_upper == pytest.approx(1.0 / e.lower)

    def test_interval_crossing_zero_is_unbounded(self, gamma_inverse_model):
        wide = _with_params(gamma_inverse_model,
                            vcov=gamma_inverse_model.vcov * 1e4)
        with pytest.warns(RuntimeWarning, match="inverse link"):
            emm = emmeans(wide, 'treatment')
        for e in emm:
            assert e.lower < 0 < e.emmean
            assert e.response_upper == np.inf
            assert e.response_lower == pytest.approx(1.0 / e.upper)
        assert len(emm.result.warnings) == 2

    def test_non_positive_estimate_raises(self, gamma_inverse_model):
        flipped = _with_params(gamma_inverse_model,
                               coefficients=-gamma_inverse_model.coefficients)
        with pytest.raises(UnsupportedCell, match="inverse link") as exc_info:
            emmeans(flipped, 'treatment')
        assert exc_info.value.cell == (('treatment', 'Control'),)
        assert exc_info.value.model == 'branch_gamma'


class TestErrors:

    def test_unobserved_value(self, sholl_model):
        with pytest.raises(UnsupportedCell) as exc_info:
            emmeans(sholl_model, 'treatment', by='distance', at={'distance': [999]})
        assert exc_info.value.cell == (('distance', 999),)
        assert exc_info.value.available == (10, 20, 30)
        assert exc_info.value.outcome == 'intersections'

    def test_unknown_level(self, dose_model):
        with pytest.raises(UnsupportedCell, match="Placebo"):
            emmeans(dose_model, 'treatment', at={'treatment': ['Placebo']})

    def test_unknown_spec(self, dose_model):
        with pytest.raises(ValidationError, match="genotype"):
            emmeans(dose_model, 'genotype')

    def test_specs_and_by_overlap(self, sholl_model):
        with pytest.raises(ValidationError, match="both specs and by"):
            emmeans(sholl_model, 'treatment', by='treatment')

    def test_unknown_weights(self, dose_model):
        with pytest.raises(ValidationError, match="weights"):
            emmeans(dose_model, 'treatment', weights='proportional')

    def test_bad_conf_level(self, dose_model):
        with pytest.raises(ValidationError, match="conf_level"):
            emmeans(dose_model, 'treatment', conf_level=95)

    def test_error_carries_model_name(self, dose_model):
        with pytest.raises(ValidationError) as exc_info:
            emmeans(dose_model, 'genotype')
        assert exc_info.value.model == 'dose'
