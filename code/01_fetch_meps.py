#!/usr/bin/env python3
"""
01_fetch_meps.py - Download MEPS Public-Use Files

This script downloads the raw inputs for the ITSA pipeline:
1. MEPS Full-Year Consolidated (FYC) files, 2016-2021 (one per year)
2. The 1996-2021 pooled variance linkage file (stratum and PSU)

Files are fetched as zipped Stata (.dta) extracts from the AHRQ MEPS site
and extracted to data/raw/. Files already present are skipped, so the
script can be re-run after a partial download.

Source: https://meps.ahrq.gov/mepsweb/data_stats/download_data_files.jsp

Environment Variables:
- MEPS_ITSA_DOWNLOAD_TIMEOUT: Per-file timeout in seconds (default: 300)

Date: 2026
"""

import sys
import zipfile
import warnings
from datetime import datetime

import requests

import itsa_config as cfg
from meps_data import download_meps_file

warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)


def planned_downloads():
    """(year, data type) pairs needed by 02_build_pooled.py."""
    files = [(year, 'FYC') for year in cfg.YEARS]
    files.append((cfg.LINKAGE_YEAR, 'Pooled linkage'))
    return files


def main():
    """Download all MEPS files used by the pipeline."""
    print("=" * 70)
    print("FETCH MEPS PUBLIC-USE FILES")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)
    print(f"Destination: {cfg.DATA_RAW}\n")

    for year, data_type in planned_downloads():
        try:
            download_meps_file(year, data_type)
        except requests.exceptions.RequestException as e:
            print(f"\nERROR: {data_type} {year} download failed: {e}")
            return 1
        except zipfile.BadZipFile as e:
            print(f"\nERROR: {data_type} {year} archive unreadable: {e}")
            return 1

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
