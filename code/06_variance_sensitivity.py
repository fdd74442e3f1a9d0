"""
06_variance_sensitivity.py
==========================
Standard error sensitivity to the variance estimator.

The triple-interaction coefficients are identical under every method below;
only the standard errors change:
1. Naive WLS - treats weighted records as independent (ignores the design)
2. Heteroskedasticity-robust WLS (HC1)
3. One-way clustering by PSU - ignores stratification
4. Design-based (Taylor linearization over strata and PSUs) - the estimator
   used everywhere else in the pipeline

Ignoring the sampling design silently produces wrong standard errors; this
table shows by how much for the MEPS pooled sample.

Date: 2026
"""

import os
import sys
import warnings

import pandas as pd
from linearmodels.iv import IV2SLS
from scipy import stats

import itsa_config as cfg
from itsa_models import build_design, fit_triple_interaction
from meps_data import analysis_sample, load_pooled_data

# Suppress dependency warnings (statsmodels, linearmodels) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)


def psu_clustered_fit(result):
    """Re-fit the same WLS with one-way PSU clustering (linearmodels)."""
    model = result.wls_fit.model
    data = result.design.data.iloc[result.rows]
    clusters = data.groupby([result.design.strata, result.design.cluster]).ngroup()

    dependent = pd.Series(model.endog, index=data.index, name='y')
    exog = pd.DataFrame(model.exog, columns=model.exog_names, index=data.index)
    weights = pd.Series(model.weights, index=data.index)

    return IV2SLS(dependent, exog, None, None, weights=weights).fit(
        cov_type='clustered', clusters=clusters)


def compare_standard_errors(result):
    """One row per coefficient with SEs under each estimator."""
    naive = result.wls_fit
    robust = naive.model.fit(cov_type='HC1')
    clustered = psu_clustered_fit(result)

    out = pd.DataFrame({
        'term': result.params.index,
        'estimate': result.params.to_numpy(),
        'se_naive': naive.bse.to_numpy(),
        'se_hc1': robust.bse.to_numpy(),
        'se_psu_cluster': clustered.std_errors.to_numpy(),
        'se_design': result.bse.to_numpy(),
    })
    for col in ['se_naive', 'se_hc1', 'se_psu_cluster']:
        out[f'{col}_ratio'] = out[col] / out['se_design']

    # Significance at 5% under naive vs design-based inference
    p_naive = 2 * stats.t.sf((out['estimate'] / out['se_naive']).abs(), naive.df_resid)
    p_design = 2 * stats.t.sf((out['estimate'] / out['se_design']).abs(), result.df_resid)
    out['p_naive'] = p_naive
    out['p_design'] = p_design
    out['inference_changes'] = (p_naive < 0.05) != (p_design < 0.05)
    return out


def main():
    """Run variance estimator comparison."""
    print("=" * 70)
    print("VARIANCE ESTIMATOR SENSITIVITY")
    print("=" * 70)

    try:
        pooled = load_pooled_data()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        return 1

    df = analysis_sample(pooled, cfg.OUTCOME)
    design = build_design(df)
    triple = fit_triple_interaction(design)

    results = compare_standard_errors(triple)

    print("\n--- Standard Error Comparison (triple interaction) ---")
    print(f"  {'term':<22} {'naive':>9} {'HC1':>9} {'PSU':>9} {'design':>9}")
    for _, row in results.iterrows():
        flag = '  ** inference changes' if row['inference_changes'] else ''
        print(f"  {row['term']:<22} {row['se_naive']:>9,.2f} {row['se_hc1']:>9,.2f} "
              f"{row['se_psu_cluster']:>9,.2f} {row['se_design']:>9,.2f}{flag}")

    print(f"\n  Average SE ratio vs design-based: naive {results['se_naive_ratio'].mean():.3f}, "
          f"HC1 {results['se_hc1_ratio'].mean():.3f}, PSU {results['se_psu_cluster_ratio'].mean():.3f}")

    os.makedirs(cfg.OUTPUT_TABLES, exist_ok=True)
    output_path = os.path.join(cfg.OUTPUT_TABLES, 'variance_sensitivity.csv')
    results.to_csv(output_path, index=False)
    print(f"\nResults saved to: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
