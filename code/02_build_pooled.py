#!/usr/bin/env python3
"""
02_build_pooled.py - Build Pooled Person-Year Dataset

This script builds the 2016-2021 analysis table from the raw MEPS files
downloaded by 01_fetch_meps.py.

The script:
1. Reads each FYC year and renames year-suffixed fields to a common schema
   (TOTEXP19 -> totexp, ERTEXP19 -> ertexp, PERWT19F -> perwt, ...)
2. Concatenates the years and divides person weights by the number of years
3. Assigns the period indicator (post = 1 from the cutoff year on)
4. Left-joins stratum and PSU from the pooled linkage file
5. Saves data/processed/meps_pooled_2016_2021.csv

Variable Dictionary (output columns):
- dupersid: MEPS person identifier
- panel: MEPS panel number
- year: Survey year (2016-2021)
- sex: 1 = male, 2 = female
- female: Group indicator (1 = female)
- totexp: Total annual health care expenditure ($)
- ertexp: Emergency room expenditure ($)
- perwt: Annual person weight
- poolwt: perwt / number of pooled years
- post: 0 = before the cutoff year, 1 = cutoff year and later
- time: Years since the first pooled year
- stratum, psu: Variance stratum and PSU from the linkage file

Date: 2026
"""

import os
import sys
import warnings
from datetime import datetime

import itsa_config as cfg
from meps_data import build_pooled

warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)


def print_summary(pooled):
    """Record counts and weight checks by year and period."""
    print("\n" + "=" * 70)
    print("POOLED DATA SUMMARY")
    print("=" * 70)
    print(f"Person-years: {len(pooled):,}")
    print(f"Persons: {pooled['dupersid'].nunique():,}")
    print(f"Cutoff year: {cfg.CUTOFF_YEAR} (post = year >= {cfg.CUTOFF_YEAR})")

    by_year = pooled.groupby('year').agg(
        n=('dupersid', 'size'),
        post=('post', 'first'),
        sum_perwt=('perwt', 'sum'),
        sum_poolwt=('poolwt', 'sum'),
    )
    print("\nBy year:")
    for year, row in by_year.iterrows():
        print(f"  {year}: n={row['n']:,}  post={row['post']}  "
              f"sum(perwt)={row['sum_perwt']:,.0f}  sum(poolwt)={row['sum_poolwt']:,.0f}")

    print(f"\nStrata: {pooled['stratum'].nunique()}, "
          f"PSUs: {pooled[['stratum', 'psu']].drop_duplicates().shape[0]}")


def main():
    """Build the pooled analysis table."""
    print("=" * 70)
    print("BUILD POOLED MEPS DATASET")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    try:
        pooled = build_pooled()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        return 1

    print_summary(pooled)

    os.makedirs(cfg.DATA_PROCESSED, exist_ok=True)
    pooled.to_csv(cfg.POOLED_FILE, index=False)
    print(f"\nPooled data saved to: {cfg.POOLED_FILE}")

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
