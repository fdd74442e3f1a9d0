"""
03_descriptive_estimates.py
===========================
Survey-weighted descriptive statistics.

All estimates go through the survey design (pooled weights, variance
strata, PSUs), so standard errors reflect the MEPS sampling design:
1. Weighted population totals by group
2. Weighted mean outcomes by group and period (pre/post)
3. Weighted mean outcomes by group and year (points in the ITSA figure)

Because weights are divided by the number of pooled years, totals are
average annual population counts.

Date: 2026
"""

import os
import sys
import warnings

import pandas as pd

import itsa_config as cfg
from itsa_models import build_design
from meps_data import analysis_sample, load_pooled_data

# Suppress dependency warnings (statsmodels, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

OUTCOMES = ['totexp', 'ertexp']


def population_totals(design):
    """Weighted population size by group."""
    totals = design.total(by='female')
    totals.insert(1, 'group', totals['female'].map(cfg.GROUP_LABELS))
    return totals


def means_by_group_period(design, outcomes=OUTCOMES):
    frames = []
    for var in outcomes:
        est = design.mean(var, by=['female', 'post'])
        est.insert(0, 'outcome', var)
        frames.append(est)
    out = pd.concat(frames, ignore_index=True)
    out.insert(2, 'group', out['female'].map(cfg.GROUP_LABELS))
    return out


def means_by_group_year(design, outcome):
    out = design.mean(outcome, by=['female', 'year'])
    out.insert(0, 'outcome', outcome)
    return out


def main():
    """Run descriptive survey estimates."""
    print("=" * 70)
    print("SURVEY-WEIGHTED DESCRIPTIVE ESTIMATES")
    print("=" * 70)

    try:
        pooled = load_pooled_data()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        return 1

    df = analysis_sample(pooled, cfg.OUTCOME)
    design = build_design(df)

    os.makedirs(cfg.OUTPUT_TABLES, exist_ok=True)

    # =========================================================================
    # Population totals
    # =========================================================================
    print("\n--- Weighted Population Totals (average annual) ---")
    totals = population_totals(design)
    for _, row in totals.iterrows():
        print(f"  {row['group']:<7} {row['total']:>15,.0f}  (SE: {row['se']:,.0f}, n={row['n']:,})")
    totals.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'population_totals.csv'), index=False)

    # =========================================================================
    # Means by group and period
    # =========================================================================
    print("\n--- Weighted Means by Group and Period ---")
    period_means = means_by_group_period(design)
    for _, row in period_means.iterrows():
        period = 'post' if row['post'] == 1 else 'pre'
        print(f"  {row['outcome']:<7} {row['group']:<7} {period:<5} "
              f"${row['mean']:>9,.2f}  (SE: {row['se']:,.2f}, "
              f"95% CI [{row['ci_lower']:,.2f}, {row['ci_upper']:,.2f}])")
    period_means.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'means_by_group_period.csv'), index=False)

    # Raw pre/post difference-in-differences of the means (no trend adjustment)
    pivot = period_means[period_means['outcome'] == cfg.OUTCOME].pivot(
        index='female', columns='post', values='mean')
    change = pivot[1] - pivot[0]
    print(f"\n  {cfg.OUTCOME} pre->post change: male ${change.loc[0]:,.2f}, "
          f"female ${change.loc[1]:,.2f}, difference ${change.loc[1] - change.loc[0]:,.2f}")

    # =========================================================================
    # Means by group and year (figure points)
    # =========================================================================
    print("\n--- Weighted Means by Group and Year ---")
    year_means = means_by_group_year(design, cfg.OUTCOME)
    for _, row in year_means.iterrows():
        print(f"  {cfg.GROUP_LABELS[row['female']]:<7} {row['year']}  ${row['mean']:>9,.2f}  (SE: {row['se']:,.2f})")
    year_means.to_csv(os.path.join(cfg.OUTPUT_TABLES, 'means_by_group_year.csv'), index=False)

    print(f"\nTables saved to: {cfg.OUTPUT_TABLES}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
