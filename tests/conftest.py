"""
Shared fixtures: synthetic MEPS-like extracts with a known ITSA structure.
"""

import importlib.util
import os

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

import itsa_config as cfg
from meps_data import link_design, normalize_year, pool_years

CODE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "code")

TRUE_DID = 256.0


def load_stage(filename):
    """Import a numbered stage script (e.g. '06_variance_sensitivity.py') as a module."""
    path = os.path.join(CODE_DIR, filename)
    name = "stage_" + os.path.splitext(filename)[0]
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def make_fyc_extract(year, rng, n_strata=20, n_per_psu=40, female_slope=30):
    """
    One year of FYC-style data with year-suffixed names.

    Outcome follows the triple-interaction model with a post:female:time
    coefficient of TRUE_DID plus PSU-level and person-level noise.
    female_slope is the female-male gap in pre-period slopes.
    """
    yy = f"{year % 100:02d}"
    time = year - cfg.YEARS[0]
    post = int(year >= 2019)

    rows = []
    for stratum in range(1, n_strata + 1):
        for psu in (1, 2):
            psu_effect = rng.normal(0, 50)
            for i in range(n_per_psu):
                female = int(rng.random() < 0.5)
                y = (1000 + 200 * female + 50 * time + 150 * post
                     + female_slope * female * time + 100 * post * female
                     + TRUE_DID * post * female * time
                     + psu_effect + rng.normal(0, 200))
                rows.append({
                    'DUPERSID': f"{year}{stratum:03d}{psu}{i:03d}",
                    'PANEL': year - 2000,
                    'SEX': cfg.SEX_FEMALE if female else cfg.SEX_MALE,
                    f'TOTEXP{yy}': y,
                    f'ERTEXP{yy}': max(y / 20, 0),
                    f'PERWT{yy}F': rng.uniform(500, 1500),
                    '_stratum': stratum,
                    '_psu': psu,
                })
    return pd.DataFrame(rows)


def make_extracts(seed=42, **kwargs):
    rng = np.random.default_rng(seed)
    return {year: make_fyc_extract(year, rng, **kwargs) for year in cfg.YEARS}


def make_linkage(extracts):
    frames = [
        df[['DUPERSID', 'PANEL', '_stratum', '_psu']].rename(columns={
            'DUPERSID': 'dupersid', 'PANEL': 'panel', '_stratum': 'stratum', '_psu': 'psu'})
        for df in extracts.values()
    ]
    return pd.concat(frames, ignore_index=True)


def make_pooled(extracts):
    frames = [normalize_year(df, year) for year, df in extracts.items()]
    return link_design(pool_years(frames, cutoff=2019), make_linkage(extracts))


@pytest.fixture(scope="session")
def raw_extracts():
    return make_extracts()


@pytest.fixture(scope="session")
def pooled(raw_extracts):
    return make_pooled(raw_extracts)
