"""
05_marginal_effects.py
======================
Marginal effects from the triple-interaction model.

Average marginal effects over the (design-weighted) analysis sample:
1. Group difference (female - male) holding the period at pre and at post
2. Slope of time for each group within each period
3. Female - male slope difference within each period

Standard errors come from the design-based covariance of the coefficients.
Many margins tools cannot test equality of slopes across groups directly;
here it is an ordinary linear contrast (3), and the post-period row minus
the pre-period row reproduces the post:female:time coefficient.

Date: 2026
"""

import os
import sys
import warnings

import itsa_config as cfg
from itsa_models import (build_design, find_term, fit_triple_interaction, group_differences,
                         period_slopes, slope_differences, DID_TERM_TRIPLE)
from meps_data import analysis_sample, load_pooled_data

# Suppress dependency warnings (statsmodels, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

PERIOD_LABELS = {0: 'Pre', 1: 'Post'}


def main():
    """Compute and report marginal effects."""
    print("=" * 70)
    print(f"MARGINAL EFFECTS: {cfg.OUTCOME}")
    print("=" * 70)

    try:
        pooled = load_pooled_data()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        return 1

    df = analysis_sample(pooled, cfg.OUTCOME)
    design = build_design(df)
    triple = fit_triple_interaction(design)

    print("\n--- Group Difference (Female - Male) by Period ---")
    diffs = group_differences(triple)
    for _, row in diffs.iterrows():
        print(f"  {PERIOD_LABELS[row['post']]:<5} ${row['estimate']:>9,.2f} (SE: {row['se']:,.2f}, "
              f"95% CI [{row['ci_lower']:,.2f}, {row['ci_upper']:,.2f}])")

    print("\n--- Slope of Time by Group and Period ---")
    slopes = period_slopes(triple)
    for _, row in slopes.iterrows():
        print(f"  {cfg.GROUP_LABELS[row['female']]:<7} {PERIOD_LABELS[row['post']]:<5} "
              f"${row['estimate']:>9,.2f}/yr (SE: {row['se']:,.2f})")

    print("\n--- Slope Difference (Female - Male) by Period ---")
    slope_diffs = slope_differences(triple)
    for _, row in slope_diffs.iterrows():
        print(f"  {PERIOD_LABELS[row['post']]:<5} ${row['estimate']:>9,.2f}/yr (SE: {row['se']:,.2f}, "
              f"p={row['p_value']:.4f})")

    did_name = find_term(triple.params, DID_TERM_TRIPLE)
    implied = slope_diffs['estimate'].iloc[1] - slope_diffs['estimate'].iloc[0]
    print(f"\n  Post - pre slope difference: ${implied:,.2f} "
          f"(model {did_name}: ${triple.params[did_name]:,.2f})")

    os.makedirs(cfg.OUTPUT_TABLES, exist_ok=True)
    diffs.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'margins_group_difference.csv'), index=False)
    slopes.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'margins_period_slopes.csv'), index=False)
    slope_diffs.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'margins_slope_difference.csv'), index=False)
    print(f"\nTables saved to: {cfg.OUTPUT_TABLES}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
