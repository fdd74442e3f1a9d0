"""
meps_data.py - MEPS download, normalization and pooling helpers

Used by 01_fetch_meps.py (download) and 02_build_pooled.py (normalize,
pool, link). Later stages only call load_pooled_data().

Date: 2026
"""

import io
import os
import zipfile

import numpy as np
import pandas as pd
import pyreadstat
import requests

import itsa_config as cfg


# =============================================================================
# DOWNLOAD
# =============================================================================

def meps_file_name(year, data_type='FYC'):
    """Return the MEPS file name (e.g. 'h216') for a year and data type."""
    try:
        return cfg.MEPS_FILES[(data_type, year)][1]
    except KeyError:
        raise KeyError(f"No MEPS {data_type} file registered for {year}") from None


def meps_url(year, data_type='FYC'):
    """
    Construct the MEPS download URL for a year and data type.

    Stata versions are zipped as {file}dta.zip under pufs/{directory id}/.
    """
    dir_id, name = cfg.MEPS_FILES[(data_type, year)]
    return f"{cfg.MEPS_PUF_BASE}/{dir_id}/{name}dta.zip"


def raw_path(year, data_type='FYC', data_dir=None):
    """Local path of the extracted .dta file."""
    data_dir = data_dir or cfg.DATA_RAW
    return os.path.join(data_dir, f"{meps_file_name(year, data_type)}.dta")


def download_meps_file(year, data_type='FYC', data_dir=None, timeout=None):
    """
    Download and extract one MEPS Stata file.

    Returns the path to the extracted .dta file. Files already on disk are
    not downloaded again. Network and archive errors propagate.
    """
    data_dir = data_dir or cfg.DATA_RAW
    timeout = timeout or cfg.DOWNLOAD_TIMEOUT
    os.makedirs(data_dir, exist_ok=True)

    out_path = raw_path(year, data_type, data_dir)
    if os.path.exists(out_path):
        print(f"  [ok] {data_type} {year}: already downloaded -> {os.path.basename(out_path)}")
        return out_path

    url = meps_url(year, data_type)
    print(f"  [..] {data_type} {year}: downloading from {url}")

    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()

    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        members = [m for m in zf.infolist() if m.filename.lower().endswith('.dta')]
        if not members:
            raise zipfile.BadZipFile(f"No .dta member in archive from {url}")
        # Archives hold a single data file; take the largest to be safe
        chosen = max(members, key=lambda m: m.file_size)
        # Extract to a partial file so a corrupt member never looks downloaded
        part_path = out_path + '.part'
        try:
            with zf.open(chosen) as src, open(part_path, 'wb') as dst:
                dst.write(src.read())
        except Exception:
            if os.path.exists(part_path):
                os.remove(part_path)
            raise
        os.replace(part_path, out_path)

    print(f"  [ok] {data_type} {year}: extracted {chosen.filename} "
          f"({os.path.getsize(out_path) / 1e6:.0f} MB)")
    return out_path


# =============================================================================
# READ AND NORMALIZE
# =============================================================================

def read_columns(path, columns):
    """
    Read selected columns from a Stata file, failing if any are absent.

    Column matching is case-insensitive; returned columns use the
    requested spelling.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"MEPS file not found at {path}. Run 01_fetch_meps.py first."
        )

    _, meta = pyreadstat.read_dta(path, metadataonly=True)
    available = {c.upper(): c for c in meta.column_names}
    missing = [c for c in columns if c.upper() not in available]
    if missing:
        raise KeyError(f"{os.path.basename(path)} is missing required fields: {missing}")

    source_cols = [available[c.upper()] for c in columns]
    df, _ = pyreadstat.read_dta(path, usecols=source_cols)
    return df.rename(columns=dict(zip(source_cols, columns)))


def normalize_year(df, year):
    """
    Rename one year's FYC extract to the common schema and stamp the year.

    Raises KeyError naming the year if a required field is missing.
    """
    col_map = cfg.fyc_column_map(year)
    missing = [c for c in col_map if c not in df.columns]
    if missing:
        raise KeyError(f"{year} extract is missing required fields: {missing}")

    out = df[list(col_map)].rename(columns=col_map).copy()
    out['year'] = year
    return out


def load_year(year, data_dir=None):
    """Read and normalize a single FYC year."""
    path = raw_path(year, 'FYC', data_dir)
    df = read_columns(path, list(cfg.fyc_column_map(year)))
    print(f"  FYC {year}: {len(df):,} persons")
    return normalize_year(df, year)


def load_linkage(data_dir=None):
    """Read the pooled linkage file, renamed to dupersid/panel/stratum/psu."""
    path = raw_path(cfg.LINKAGE_YEAR, 'Pooled linkage', data_dir)
    df = read_columns(path, list(cfg.LINKAGE_COLUMNS))
    print(f"  Linkage: {len(df):,} person-panel records")
    return df.rename(columns=cfg.LINKAGE_COLUMNS)


# =============================================================================
# POOLING
# =============================================================================

def assign_period(years, cutoff=None):
    """
    Pre/post indicator: year < cutoff -> 0, year >= cutoff -> 1.

    Every record gets a value; missing years raise ValueError.
    """
    cutoff = cfg.CUTOFF_YEAR if cutoff is None else cutoff
    years = pd.Series(years)
    if years.isna().any():
        raise ValueError("Cannot assign period: some records have no survey year")
    return (years >= cutoff).astype(int)


def pool_years(frames, cutoff=None):
    """
    Concatenate normalized yearly tables and derive pooled fields.

    Adds:
    - poolwt: perwt / number of pooled years
    - post: period indicator from the cutoff year
    - female: group indicator (SEX == 2)
    - time: years since the first pooled year
    """
    pooled = pd.concat(frames, ignore_index=True)

    n_years = pooled['year'].nunique()
    pooled['poolwt'] = pooled['perwt'] / n_years
    pooled['post'] = assign_period(pooled['year'], cutoff).values
    pooled['female'] = (pooled['sex'] == cfg.SEX_FEMALE).astype(int)
    pooled['time'] = pooled['year'] - pooled['year'].min()

    print(f"  Pooled: {len(pooled):,} person-years across {n_years} years "
          f"(weights divided by {n_years})")
    return pooled


def link_design(pooled, linkage):
    """Left-join stratum and PSU onto the pooled table by (dupersid, panel)."""
    keys = ['dupersid', 'panel']
    linkage = linkage[keys + ['stratum', 'psu']]
    if linkage.duplicated(keys).any():
        raise ValueError("Linkage file has duplicate (dupersid, panel) records")

    merged = pooled.merge(linkage, on=keys, how='left', validate='many_to_one')

    n_unlinked = merged['stratum'].isna().sum()
    if n_unlinked:
        print(f"  Warning: {n_unlinked:,} person-years have no stratum/PSU")
    return merged


def build_pooled(years=None, cutoff=None, data_dir=None):
    """Read, normalize, pool and link all configured years."""
    years = years or cfg.YEARS
    frames = [load_year(year, data_dir) for year in years]
    pooled = pool_years(frames, cutoff)
    return link_design(pooled, load_linkage(data_dir))


def load_pooled_data(path=None):
    """Load the pooled analysis table written by 02_build_pooled.py."""
    path = path or cfg.POOLED_FILE
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Pooled data not found: {path}. Run 02_build_pooled.py first."
        )

    pooled = pd.read_csv(path, dtype={'dupersid': str})
    print(f"Loaded pooled data: {len(pooled):,} person-years, "
          f"{pooled['year'].nunique()} years")
    return pooled


def analysis_sample(pooled, outcome):
    """Drop records the design or models cannot use (no weight/stratum/PSU/outcome)."""
    needed = [outcome, 'poolwt', 'stratum', 'psu', 'female', 'post', 'time']
    df = pooled.dropna(subset=needed)
    df = df[df['poolwt'] > 0].copy()
    dropped = len(pooled) - len(df)
    if dropped:
        print(f"  Dropped {dropped:,} person-years with zero weight or missing design fields")
    df['stratum'] = df['stratum'].astype(np.int64)
    df['psu'] = df['psu'].astype(np.int64)
    return df
