"""
itsa_config.py - Shared constants for the MEPS ITSA pipeline

Paths, survey years, MEPS public-use file identifiers, column maps and
analysis settings used by every stage script. A few settings can be
overridden with environment variables:

- MEPS_ITSA_CUTOFF_YEAR: First post-intervention year (default: 2019)
- MEPS_ITSA_OUTCOME: Outcome column, 'totexp' or 'ertexp' (default: totexp)
- MEPS_ITSA_DOWNLOAD_TIMEOUT: Per-file download timeout in seconds (default: 300)

Date: 2026
"""

import os

# Paths - code/ is 1 level deep from the project root
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
DATA_RAW = os.path.join(BASE_DIR, "data", "raw")
DATA_PROCESSED = os.path.join(BASE_DIR, "data", "processed")
OUTPUT_TABLES = os.path.join(BASE_DIR, "tables")
OUTPUT_FIGURES = os.path.join(BASE_DIR, "figures")

# Survey years pooled in the analysis
YEARS = [2016, 2017, 2018, 2019, 2020, 2021]

# Intervention (knot) year: year < CUTOFF_YEAR -> pre (0), otherwise post (1)
CUTOFF_YEAR = int(os.environ.get('MEPS_ITSA_CUTOFF_YEAR', '2019'))

# Outcome used by the models and the figure
OUTCOME = os.environ.get('MEPS_ITSA_OUTCOME', 'totexp')

# Singleton-stratum variance policy: 'adjust', 'remove' or 'fail'
LONELY_PSU = 'adjust'

# =============================================================================
# MEPS PUBLIC-USE FILES
# =============================================================================
MEPS_PUF_BASE = "https://meps.ahrq.gov/mepsweb/data_files/pufs"
DOWNLOAD_TIMEOUT = int(os.environ.get('MEPS_ITSA_DOWNLOAD_TIMEOUT', '300'))

# (data type, year) -> (directory id, file name) on the MEPS site
# Full-Year Consolidated files carry year-suffixed variable names.
MEPS_FILES = {
    ('FYC', 2016): ('h192', 'h192'),
    ('FYC', 2017): ('h201', 'h201'),
    ('FYC', 2018): ('h209', 'h209'),
    ('FYC', 2019): ('h216', 'h216'),
    ('FYC', 2020): ('h224', 'h224'),
    ('FYC', 2021): ('h233', 'h233'),
    # 1996-2021 pooled linkage file for a common variance structure
    ('Pooled linkage', 2021): ('h036', 'h36u21'),
}

LINKAGE_YEAR = 2021

# Linkage-file stratum and PSU for the 1996-2021 release
LINKAGE_COLUMNS = {
    'DUPERSID': 'dupersid',
    'PANEL': 'panel',
    'STRA9621': 'stratum',
    'PSU9621': 'psu',
}


def fyc_column_map(year):
    """Year-suffixed FYC variable names -> common pooled names."""
    yy = f"{year % 100:02d}"
    return {
        'DUPERSID': 'dupersid',
        'PANEL': 'panel',
        'SEX': 'sex',
        f'TOTEXP{yy}': 'totexp',
        f'ERTEXP{yy}': 'ertexp',
        f'PERWT{yy}F': 'perwt',
    }


# MEPS SEX codes
SEX_MALE = 1
SEX_FEMALE = 2

# Group indicator (1 = female, 0 = male)
GROUP_VAR = 'female'
GROUP_LABELS = {0: 'Male', 1: 'Female'}

POOLED_FILE = os.path.join(
    DATA_PROCESSED, f"meps_pooled_{YEARS[0]}_{YEARS[-1]}.csv"
)
