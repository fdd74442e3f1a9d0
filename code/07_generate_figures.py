#!/usr/bin/env python3
"""
07_generate_figures.py
======================
Generate the ITSA figure.

Reads from pre-computed CSV tables (single source of truth):
- tables/means_by_group_year.csv (03_descriptive_estimates.py)
- tables/itsa_fitted_lines.csv (04_fit_models.py)

The figure overlays, for each group:
- survey-weighted mean outcome per year (points, with 95% CI bars)
- fitted triple-interaction segments, split at the intervention year
- dashed counterfactual: the pre-period trend projected into the post period
and marks the intervention year with a vertical line.

Date: 2026
"""

import os
import sys
import warnings

import matplotlib.pyplot as plt
import pandas as pd

import itsa_config as cfg

# Suppress dependency warnings (matplotlib, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

# Style settings
plt.style.use('seaborn-v0_8-whitegrid')
COLORS = {
    0: '#3498DB',  # Male - blue
    1: '#E74C3C',  # Female - red
}
MARKERS = {0: 'o', 1: 's'}

OUTCOME_LABELS = {
    'totexp': 'Total Annual Expenditure ($)',
    'ertexp': 'Emergency Room Expenditure ($)',
}


def load_table(name):
    path = os.path.join(cfg.OUTPUT_TABLES, name)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Table not found: {path}")
    return pd.read_csv(path)


def plot_itsa(year_means, lines, cutoff, outcome, output_path):
    """
    Draw the comparative ITSA figure and save it to output_path.

    year_means: columns female, year, mean, ci_lower, ci_upper
    lines: columns female, year, post, fitted, counterfactual
    """
    fig, ax = plt.subplots(1, 1, figsize=(8, 5))

    for group, label in cfg.GROUP_LABELS.items():
        color = COLORS[group]

        pts = year_means[year_means['female'] == group].sort_values('year')
        ax.errorbar(pts['year'], pts['mean'],
                    yerr=[pts['mean'] - pts['ci_lower'], pts['ci_upper'] - pts['mean']],
                    fmt=MARKERS[group], color=color, capsize=3, alpha=0.8,
                    label=f'{label} (weighted mean)')

        fit = lines[lines['female'] == group].sort_values('year')
        for post in (0, 1):
            seg = fit[fit['post'] == post]
            ax.plot(seg['year'], seg['fitted'], '-', color=color, linewidth=2.5,
                    label=f'{label} (fitted)' if post == 0 else '_nolegend_')

        # Counterfactual starts from the last pre-period fitted point
        last_pre = fit[fit['post'] == 0].tail(1)
        cf = fit[fit['post'] == 1]
        cf_years = pd.concat([last_pre['year'], cf['year']])
        cf_values = pd.concat([last_pre['fitted'], cf['counterfactual']])
        ax.plot(cf_years, cf_values, '--', color=color, linewidth=1.5, alpha=0.8,
                label=f'{label} (counterfactual)')

    ax.axvline(x=cutoff, color='gray', linestyle=':', linewidth=2)
    ax.annotate(f'Intervention ({cutoff})', xy=(cutoff, 1), xycoords=('data', 'axes fraction'),
                xytext=(5, -15), textcoords='offset points', fontsize=9, style='italic')

    ax.set_xlabel('Survey Year', fontsize=11)
    ax.set_ylabel(OUTCOME_LABELS.get(outcome, outcome), fontsize=11)
    ax.set_title('Interrupted Time Series: Female vs. Male', fontsize=12, fontweight='bold')
    ax.set_xticks(sorted(year_means['year'].unique()))
    ax.legend(loc='upper left', fontsize=8)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close(fig)
    print(f"  Saved: {output_path}")


def main():
    """Generate the ITSA figure from CSV tables."""
    print("=" * 70)
    print("GENERATING ITSA FIGURE (from CSV tables)")
    print("=" * 70)

    try:
        year_means = load_table('means_by_group_year.csv')
        lines = load_table('itsa_fitted_lines.csv')
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        print("Run 03_descriptive_estimates.py and 04_fit_models.py first.")
        return 1

    year_means = year_means[year_means['outcome'] == cfg.OUTCOME]

    os.makedirs(cfg.OUTPUT_FIGURES, exist_ok=True)
    output_path = os.path.join(cfg.OUTPUT_FIGURES, f'itsa_{cfg.OUTCOME}.png')
    plot_itsa(year_means, lines, cfg.CUTOFF_YEAR, cfg.OUTCOME, output_path)

    print(f"\nFigures saved to: {cfg.OUTPUT_FIGURES}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
