"""
Tests for design-based totals, means, variances and regression.
"""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from meps_data import analysis_sample
from survey_design import SurveyDesign


@pytest.fixture
def small_design_data():
    """
    Two strata with two PSUs each; PSU numbers repeat across strata.

    Scores (y with unit weights) give PSU totals 3, 5 | 10, 14.
    """
    return pd.DataFrame({
        'stratum': [1, 1, 1, 2, 2, 2],
        'psu': [1, 1, 2, 1, 2, 2],
        'w': [1.0] * 6,
        'y': [1.0, 2.0, 5.0, 10.0, 4.0, 10.0],
    })


@pytest.fixture(scope="module")
def design(pooled):
    df = analysis_sample(pooled, 'totexp')
    return SurveyDesign(df, weights='poolwt', strata='stratum', cluster='psu')


class TestVariance:

    def test_hand_computed_variance(self, small_design_data):
        design = SurveyDesign(small_design_data, 'w', 'stratum', 'psu')
        # stratum 1: 2 * ((3-4)^2 + (5-4)^2) = 4; stratum 2: 2 * ((10-12)^2 + (14-12)^2) = 16
        var = design.variance(small_design_data['y'].to_numpy())
        assert var.shape == (1, 1)
        assert var[0, 0] == pytest.approx(20.0)

    def test_psus_nested_within_strata(self, small_design_data):
        design = SurveyDesign(small_design_data, 'w', 'stratum', 'psu')
        assert design.n_strata == 2
        assert design.n_psu == 4
        assert design.degf == 2

    def test_lonely_psu_adjust(self, small_design_data):
        data = pd.concat([small_design_data, pd.DataFrame(
            {'stratum': [3], 'psu': [1], 'w': [1.0], 'y': [7.0]})], ignore_index=True)
        design = SurveyDesign(data, 'w', 'stratum', 'psu', lonely_psu='adjust')
        assert design.singleton_strata == [3]
        # Lonely PSU centered on the grand mean of PSU totals: (3+5+10+14+7)/5 = 7.8
        var = design.variance(data['y'].to_numpy())
        assert var[0, 0] == pytest.approx(20.0 + (7.0 - 7.8) ** 2)

    def test_lonely_psu_remove(self, small_design_data):
        data = pd.concat([small_design_data, pd.DataFrame(
            {'stratum': [3], 'psu': [1], 'w': [1.0], 'y': [7.0]})], ignore_index=True)
        design = SurveyDesign(data, 'w', 'stratum', 'psu', lonely_psu='remove')
        assert design.variance(data['y'].to_numpy())[0, 0] == pytest.approx(20.0)

    def test_lonely_psu_fail(self, small_design_data):
        data = small_design_data[~((small_design_data['stratum'] == 2) & (small_design_data['psu'] == 2))]
        with pytest.raises(ValueError, match="single PSU"):
            SurveyDesign(data, 'w', 'stratum', 'psu', lonely_psu='fail')

    def test_singleton_stratum_gives_finite_mean_se(self, small_design_data):
        data = small_design_data[~((small_design_data['stratum'] == 2) & (small_design_data['psu'] == 2))]
        design = SurveyDesign(data, 'w', 'stratum', 'psu', lonely_psu='adjust')
        est = design.mean('y')
        assert np.isfinite(est['se'].iloc[0])
        assert est['se'].iloc[0] > 0

    def test_score_length_checked(self, small_design_data):
        design = SurveyDesign(small_design_data, 'w', 'stratum', 'psu')
        with pytest.raises(ValueError):
            design.variance(np.ones(3))


class TestConstruction:

    def test_missing_columns(self, small_design_data):
        with pytest.raises(KeyError):
            SurveyDesign(small_design_data, 'weight', 'stratum', 'psu')

    def test_invalid_lonely_option(self, small_design_data):
        with pytest.raises(ValueError):
            SurveyDesign(small_design_data, 'w', 'stratum', 'psu', lonely_psu='certainty')

    def test_missing_design_values(self, small_design_data):
        data = small_design_data.copy()
        data.loc[0, 'psu'] = np.nan
        with pytest.raises(ValueError):
            SurveyDesign(data, 'w', 'stratum', 'psu')

    def test_data_is_not_shared(self, small_design_data):
        design = SurveyDesign(small_design_data, 'w', 'stratum', 'psu')
        copy = design.data
        copy.loc[0, 'y'] = 999.0
        small_design_data.loc[1, 'y'] = -1.0
        assert design.data.loc[0, 'y'] == 1.0
        assert design.data.loc[1, 'y'] == 2.0


class TestDescriptive:

    def test_population_total_is_weight_sum(self, design):
        totals = design.total(by='female')
        data = design.data
        for _, row in totals.iterrows():
            expected = data.loc[data['female'] == row['female'], 'poolwt'].sum()
            assert row['total'] == pytest.approx(expected)
            assert row['se'] > 0

    def test_total_invariant_to_row_order(self, pooled):
        df = analysis_sample(pooled, 'totexp')
        shuffled = df.sample(frac=1.0, random_state=7)
        a = SurveyDesign(df, 'poolwt', 'stratum', 'psu').total(by='female')
        b = SurveyDesign(shuffled, 'poolwt', 'stratum', 'psu').total(by='female')
        np.testing.assert_allclose(a['total'], b['total'], rtol=1e-12)
        np.testing.assert_allclose(a['se'], b['se'], rtol=1e-9)

    def test_mean_matches_weighted_average(self, design):
        data = design.data
        est = design.mean('totexp', by=['female', 'post'])
        assert len(est) == 4
        for _, row in est.iterrows():
            sub = data[(data['female'] == row['female']) & (data['post'] == row['post'])]
            assert row['mean'] == pytest.approx(np.average(sub['totexp'], weights=sub['poolwt']))
            assert row['ci_lower'] < row['mean'] < row['ci_upper']

    def test_mean_skips_missing_values(self, small_design_data):
        data = small_design_data.copy()
        data.loc[0, 'y'] = np.nan
        design = SurveyDesign(data, 'w', 'stratum', 'psu')
        est = design.mean('y')
        assert est['mean'].iloc[0] == pytest.approx(np.mean([2.0, 5.0, 10.0, 4.0, 10.0]))
        assert est['n'].iloc[0] == 5

    def test_overall_estimate_has_no_group_columns(self, design):
        est = design.mean('totexp')
        assert list(est.columns) == ['mean', 'se', 'n', 'ci_lower', 'ci_upper']


class TestRegression:

    def test_coefficients_match_wls(self, design):
        result = design.wls("totexp ~ female + time")
        data = design.data
        X = sm.add_constant(data[['female', 'time']])
        expected = sm.WLS(data['totexp'], X, weights=data['poolwt']).fit().params
        np.testing.assert_allclose(result.params.to_numpy(), expected.to_numpy(), rtol=1e-8)

    def test_refit_is_deterministic(self, design):
        a = design.wls("totexp ~ female * time")
        b = design.wls("totexp ~ female * time")
        assert np.array_equal(a.params.to_numpy(), b.params.to_numpy())
        assert np.array_equal(a.cov.to_numpy(), b.cov.to_numpy())

    def test_residual_df(self, design):
        result = design.wls("totexp ~ female + time")
        assert result.df_resid == design.degf + 1 - 3

    def test_covariance_is_symmetric_psd(self, design):
        cov = design.wls("totexp ~ female * time").cov.to_numpy()
        np.testing.assert_allclose(cov, cov.T, rtol=1e-10)
        assert np.all(np.linalg.eigvalsh(cov) > 0)

    def test_summary_frame_columns(self, design):
        table = design.wls("totexp ~ female").summary_frame()
        assert list(table.columns) == ['term', 'estimate', 'se', 't', 'p_value', 'ci_lower', 'ci_upper']
        assert table['term'].tolist() == ['Intercept', 'female']

    def test_contrast_of_single_coefficient(self, design):
        result = design.wls("totexp ~ female + time")
        out = result.contrast([0, 1, 0])
        assert out['estimate'].iloc[0] == pytest.approx(result.params['female'])
        assert out['se'].iloc[0] == pytest.approx(result.bse['female'])

    def test_invalid_margins_kind(self, design):
        result = design.wls("totexp ~ female + time")
        with pytest.raises(ValueError):
            result.margins('female', kind='elasticity')
