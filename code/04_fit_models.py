"""
04_fit_models.py
================
Survey-weighted interrupted time-series models.

Fits two parameterizations of the comparative ITSA (female vs. male,
pre vs. post the cutoff year):

1. Triple interaction: post:female:time is the difference-in-differences
   in slopes.
2. Linear spline (knot at the cutoff year): post / female:post are the
   immediate level changes and female:spline_post is the slope
   difference-in-differences.

Coefficients come from weighted least squares on the pooled weights;
confidence intervals use the design-based covariance and t(df_resid).
The two DiD estimates should be close.

Date: 2026
"""

import os
import sys
import warnings

import numpy as np
import pandas as pd

import itsa_config as cfg
from itsa_models import (add_spline_terms, build_design, coefficient_table, compare_did,
                         fit_linear_spline, fit_triple_interaction, fitted_lines, knot_time)
from meps_data import analysis_sample, load_pooled_data

# Suppress dependency warnings (statsmodels, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)


def print_coefficients(table):
    for _, row in table.iterrows():
        stars = '***' if row['p_value'] < 0.01 else '**' if row['p_value'] < 0.05 else '*' if row['p_value'] < 0.1 else ''
        print(f"  {row['term']:<22} {row['estimate']:>11,.2f} (SE: {row['se']:>9,.2f})  "
              f"95% CI [{row['ci_lower']:>10,.2f}, {row['ci_upper']:>10,.2f}] {stars}")


def fit_models(df, outcome=None):
    """Fit both specifications on one design. Returns (design, triple, spline)."""
    knot = knot_time(df)
    design = build_design(add_spline_terms(df, knot))
    triple = fit_triple_interaction(design, outcome)
    spline = fit_linear_spline(design, outcome)
    return design, triple, spline


def main():
    """Fit and report the ITSA models."""
    print("=" * 70)
    print(f"ITSA MODELS: {cfg.OUTCOME} (cutoff {cfg.CUTOFF_YEAR})")
    print("=" * 70)

    try:
        pooled = load_pooled_data()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        return 1

    df = analysis_sample(pooled, cfg.OUTCOME)
    design, triple, spline = fit_models(df)

    print(f"\nDesign df: {design.degf}, residual df: {triple.df_resid} (triple), "
          f"{spline.df_resid} (spline)")

    print("\n--- Model 1: Triple Interaction ---")
    triple_table = coefficient_table(triple, 'triple_interaction')
    print_coefficients(triple_table)

    print("\n--- Model 2: Linear Spline ---")
    spline_table = coefficient_table(spline, 'linear_spline')
    print_coefficients(spline_table)

    # =========================================================================
    # DiD comparison
    # =========================================================================
    print("\n--- Difference-in-Differences Comparison ---")
    did = compare_did(triple, spline)
    for _, row in did.iterrows():
        print(f"  {row['model']:<40} ${row['estimate']:>9,.2f} "
              f"(95% CI [{row['ci_lower']:,.2f}, {row['ci_upper']:,.2f}], p={row['p_value']:.4f})")
    gap = abs(did['estimate'].iloc[0] - did['estimate'].iloc[1])
    print(f"  Absolute difference between parameterizations: ${gap:,.2f}")

    # Determinism check: refit on the same design
    refit = fit_triple_interaction(design)
    if not np.array_equal(refit.params.to_numpy(), triple.params.to_numpy()):
        print("  WARNING: Refit produced different coefficients")

    os.makedirs(cfg.OUTPUT_TABLES, exist_ok=True)
    coefs = pd.concat([triple_table, spline_table], ignore_index=True)
    coefs.insert(1, 'outcome', cfg.OUTCOME)
    coefs.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'itsa_coefficients.csv'), index=False)
    did.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'did_comparison.csv'), index=False)
    fitted_lines(triple, sorted(df['year'].unique())).to_csv(
        os.path.join(cfg.OUTPUT_TABLES, 'itsa_fitted_lines.csv'), index=False)
    print(f"\nTables saved to: {cfg.OUTPUT_TABLES}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
