"""
itsa_models.py - Interrupted time-series specifications

Two parameterizations of the same comparative ITSA, both fit through the
survey design:

1. Triple interaction
       y ~ female + post + time + post:female + female:time + post:female:time
   The post:female:time coefficient is the difference-in-differences in
   slopes (female vs. male, post vs. pre).

2. Linear spline with one knot at the intervention year
       spline_pre  = time
       spline_post = max(time - knot, 0)
       y ~ female + spline_pre + post + spline_post
           + female:spline_pre + female:post + female:spline_post
   spline_post is the change in slope after the knot, so female:spline_pre is
   the pre-period slope gap and female:spline_post is the slope
   difference-in-differences as a direct model term. post and female:post are
   the immediate level changes at the knot.

Marginal effects are computed from the triple-interaction model.

Date: 2026
"""

import numpy as np
import pandas as pd

import itsa_config as cfg
from survey_design import SurveyDesign

TRIPLE_RHS = "female + post + time + post:female + female:time + post:female:time"
SPLINE_RHS = ("female + spline_pre + post + spline_post"
              " + female:spline_pre + female:post + female:spline_post")

# Terms reported in the comparison tables, keyed by factor sets
DID_TERM_TRIPLE = ('post', 'female', 'time')
DID_TERM_SPLINE = ('female', 'spline_post')


def knot_time(df, cutoff=None):
    """Intervention year on the time scale (years since the first pooled year)."""
    cutoff = cfg.CUTOFF_YEAR if cutoff is None else cutoff
    return cutoff - (df['year'] - df['time']).iloc[0]


def add_spline_terms(df, knot):
    """
    Add the linear-spline basis for a knot on the time scale.

    spline_pre runs over the whole series; spline_post counts years past the
    knot, so its coefficient is a change in slope, not the post-period slope.
    """
    out = df.copy()
    out['spline_pre'] = out['time']
    out['spline_post'] = np.maximum(out['time'] - knot, 0)
    return out


def build_design(df, lonely_psu=None):
    """Survey design over the pooled analysis sample."""
    design = SurveyDesign(
        df, weights='poolwt', strata='stratum', cluster='psu',
        lonely_psu=lonely_psu or cfg.LONELY_PSU,
    )
    print(f"  {design}")
    if design.singleton_strata:
        print(f"  Note: {len(design.singleton_strata)} single-PSU strata "
              f"(lonely_psu='{design.lonely_psu}')")
    return design


def find_term(params, factors):
    """
    Name of the coefficient whose factors match, in any order.

    patsy may order interaction factors differently from the formula text.
    """
    target = set(factors)
    for name in params.index:
        if set(name.split(':')) == target:
            return name
    raise KeyError(f"No coefficient for term {':'.join(factors)}")


def fit_triple_interaction(design, outcome=None):
    outcome = outcome or cfg.OUTCOME
    return design.wls(f"{outcome} ~ {TRIPLE_RHS}")


def fit_linear_spline(design, outcome=None):
    """Fit the spline model; the design data must carry spline_pre/spline_post."""
    outcome = outcome or cfg.OUTCOME
    return design.wls(f"{outcome} ~ {SPLINE_RHS}")


def coefficient_table(result, model_name):
    table = result.summary_frame()
    table.insert(0, 'model', model_name)
    table['df_resid'] = result.df_resid
    table['n_obs'] = result.nobs
    return table


def compare_did(triple, spline):
    """Side-by-side DiD estimates from the two parameterizations."""
    rows = []
    for label, result, factors in [
        ('Triple interaction (post:female:time)', triple, DID_TERM_TRIPLE),
        ('Linear spline (female:spline_post)', spline, DID_TERM_SPLINE),
    ]:
        name = find_term(result.params, factors)
        ci = result.conf_int().loc[name]
        rows.append({
            'model': label,
            'term': name,
            'estimate': result.params[name],
            'se': result.bse[name],
            'p_value': result.pvalues[name],
            'ci_lower': ci['ci_lower'],
            'ci_upper': ci['ci_upper'],
        })
    return pd.DataFrame(rows)


# =============================================================================
# MARGINAL EFFECTS
# =============================================================================

def group_differences(result):
    """Female - male average difference, holding the period at 0 and at 1."""
    return result.margins('female', at={'post': [0, 1]}, kind='contrast')


def period_slopes(result):
    """Average slope of time for each group within each period."""
    return result.margins('time', at={'female': [0, 1], 'post': [0, 1]}, kind='slope')


def slope_differences(result):
    """
    Female - male slope difference within each period.

    A cross-group contrast of the period_slopes vectors; the post-period row
    minus the pre-period row is the difference-in-differences.
    """
    rows, vectors = [], []
    for post in (0, 1):
        female = result.marginal_effect_vector('time', {'female': 1, 'post': post}, kind='slope')
        male = result.marginal_effect_vector('time', {'female': 0, 'post': post}, kind='slope')
        vectors.append(female - male)
        rows.append({'post': post})
    out = result.contrast(np.vstack(vectors))
    return pd.concat([pd.DataFrame(rows), out], axis=1)


# =============================================================================
# FITTED AND COUNTERFACTUAL LINES
# =============================================================================

def fitted_lines(result, years, cutoff=None, first_year=None):
    """
    Fitted values per group and year from the triple-interaction model.

    Returns one row per (female, year) with:
    - fitted: prediction with the observed period
    - counterfactual: post-period prediction with post=0 (pre-period trend
      extended), NaN for pre-period years
    """
    cutoff = cfg.CUTOFF_YEAR if cutoff is None else cutoff
    first_year = min(years) if first_year is None else first_year

    grid = pd.MultiIndex.from_product([[0, 1], sorted(years)], names=['female', 'year']).to_frame(index=False)
    grid['time'] = grid['year'] - first_year
    grid['post'] = (grid['year'] >= cutoff).astype(int)

    grid['fitted'] = result.predict(grid).to_numpy()

    counter = grid.assign(post=0)
    grid['counterfactual'] = np.where(grid['post'] == 1, result.predict(counter).to_numpy(), np.nan)
    return grid
