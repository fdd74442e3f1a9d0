#!/usr/bin/env python3
"""
run_all.py - Master Pipeline for the MEPS ITSA Walkthrough

This script reproduces all outputs in the correct order:
1. Download MEPS FYC files (2016-2021) and the pooled linkage file
2. Build the pooled person-year dataset
3. Survey-weighted descriptive estimates
4. ITSA models (triple interaction, linear spline)
5. Marginal effects
6. Variance estimator sensitivity
7. ITSA figure

Prerequisites:
- Network access to meps.ahrq.gov for stage 1 (or files already in data/raw/)
- Python packages from pyproject.toml

Environment Variables:
- MEPS_ITSA_TIMEOUT: Per-stage timeout in seconds (default: 1800)
- MEPS_ITSA_CUTOFF_YEAR, MEPS_ITSA_OUTCOME: passed through to every stage

Date: 2026
"""

import os
import sys
import subprocess
from datetime import datetime

import itsa_config as cfg

# Paths - code/ holds the stage scripts; outputs live next to it
CODE_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = cfg.BASE_DIR

# Default per-stage timeout (seconds). Override with environment variable MEPS_ITSA_TIMEOUT.
TIMEOUT_SECONDS = int(os.environ.get('MEPS_ITSA_TIMEOUT', '1800'))

STAGES = [
    {
        'script': '01_fetch_meps.py',
        'description': 'Download MEPS Public-Use Files',
        'outputs': [
            'data/raw/h192.dta', 'data/raw/h201.dta', 'data/raw/h209.dta',
            'data/raw/h216.dta', 'data/raw/h224.dta', 'data/raw/h233.dta',
            'data/raw/h36u21.dta',
        ],
    },
    {
        'script': '02_build_pooled.py',
        'description': 'Build Pooled Person-Year Dataset',
        'outputs': ['data/processed/meps_pooled_2016_2021.csv'],
    },
    {
        'script': '03_descriptive_estimates.py',
        'description': 'Survey-Weighted Descriptive Estimates',
        'outputs': [
            'tables/population_totals.csv',
            'tables/means_by_group_period.csv',
            'tables/means_by_group_year.csv',
        ],
    },
    {
        'script': '04_fit_models.py',
        'description': 'ITSA Models (Triple Interaction, Linear Spline)',
        'outputs': [
            'tables/itsa_coefficients.csv',
            'tables/did_comparison.csv',
            'tables/itsa_fitted_lines.csv',
        ],
    },
    {
        'script': '05_marginal_effects.py',
        'description': 'Marginal Effects',
        'outputs': [
            'tables/margins_group_difference.csv',
            'tables/margins_period_slopes.csv',
            'tables/margins_slope_difference.csv',
        ],
    },
    {
        'script': '06_variance_sensitivity.py',
        'description': 'Variance Estimator Sensitivity',
        'outputs': ['tables/variance_sensitivity.csv'],
        'optional': True,
    },
    {
        'script': '07_generate_figures.py',
        'description': 'ITSA Figure (from CSV tables)',
        'outputs': [f'figures/itsa_{cfg.OUTCOME}.png'],
    },
]


def run_script(script_path, description):
    """Run a Python script and report status."""
    print(f"\n{'='*70}")
    print(f"RUNNING: {description}")
    print(f"Script: {script_path}")
    print(f"{'='*70}")

    if not os.path.exists(script_path):
        print(f"ERROR: Script not found: {script_path}")
        return False

    try:
        result = subprocess.run(
            [sys.executable, script_path],
            cwd=BASE_DIR,
            capture_output=True,
            text=True,
            timeout=TIMEOUT_SECONDS
        )
    except subprocess.TimeoutExpired:
        print(f"ERROR: Script timed out after {TIMEOUT_SECONDS} seconds")
        return False

    print(result.stdout)
    if result.stderr:
        print("STDERR:", result.stderr)

    if result.returncode != 0:
        print(f"ERROR: Script exited with code {result.returncode}")
        return False

    print(f"SUCCESS: {description}")
    return True


def main():
    """Run the full ITSA pipeline."""
    print("=" * 70)
    print("MEPS INTERRUPTED TIME-SERIES PIPELINE")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Per-stage timeout: {TIMEOUT_SECONDS} seconds")
    print("=" * 70)

    results = []

    for i, stage in enumerate(STAGES, 1):
        print(f"\n\n{'#'*70}")
        print(f"STAGE {i}/{len(STAGES)}: {stage['description']}")
        print(f"{'#'*70}")

        success = run_script(os.path.join(CODE_DIR, stage['script']), stage['description'])

        if not success and stage.get('optional', False):
            print("  (Optional stage - continuing pipeline)")
            success = True

        results.append({
            'stage': i,
            'description': stage['description'],
            'success': success,
            'optional': stage.get('optional', False)
        })

        if not success:
            # Later stages depend on this one's outputs
            print("  Required stage failed - stopping pipeline")
            break

        for output in stage['outputs']:
            if os.path.exists(os.path.join(BASE_DIR, output)):
                print(f"  Output: {output}")
            else:
                print(f"  WARNING: Expected output not found: {output}")

    # Summary
    print("\n\n" + "="*70)
    print("PIPELINE SUMMARY")
    print("="*70)

    all_success = len(results) == len(STAGES)
    for r in results:
        status = "SUCCESS" if r['success'] else "FAILED"
        optional_note = " (optional)" if r['optional'] else ""
        print(f"  Stage {r['stage']}: {r['description']} - {status}{optional_note}")
        if not r['success']:
            all_success = False

    print("\n" + "-"*70)
    if all_success:
        print("ALL REQUIRED STAGES COMPLETED SUCCESSFULLY")
    else:
        print("SOME REQUIRED STAGES FAILED - Review output above")

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    return 0 if all_success else 1


if __name__ == '__main__':
    sys.exit(main())
