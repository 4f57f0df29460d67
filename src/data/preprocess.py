"""
Data Preprocessing Script for Boston Neighborhood Change Project

Derives the intensive measures shown on the maps (population density,
racial composition, decade-over-decade change) from the merged neighborhood
counts. These are computed after reallocation and never reallocated
themselves.
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import List
import sys

sys.path.append(str(Path(__file__).parent.parent))
from config import NEIGHBORHOOD_ID_FIELD, OUTPUT_CONFIG

SHARE_GROUPS = ['white', 'black', 'hispanic', 'asian', 'other']


def add_density(merged: pd.DataFrame,
                areas: pd.DataFrame,
                suffixes: List[str]) -> pd.DataFrame:
    """
    Add population density (people per square mile) for each vintage.

    Args:
        merged: Merged neighborhood table
        areas: Table with neighborhood and area_sqmi columns
        suffixes: Vintage suffixes, e.g. ['40', '50', ...]

    Returns:
        Copy of merged with area_sqmi and density{suffix} columns
    """
    df = merged.copy()
    if 'area_sqmi' not in df.columns:
        df = df.merge(areas[[NEIGHBORHOOD_ID_FIELD, 'area_sqmi']],
                      on=NEIGHBORHOOD_ID_FIELD, how='left')

    for suffix in suffixes:
        pop_col = f"pop{suffix}"
        if pop_col in df.columns:
            df[f"density{suffix}"] = df[pop_col] / df['area_sqmi']

    return df


def add_race_shares(merged: pd.DataFrame, suffixes: List[str]) -> pd.DataFrame:
    """
    Add each group's share of total population for each vintage.

    Neighborhoods with no population get NaN shares rather than a
    division by zero.

    Args:
        merged: Merged neighborhood table
        suffixes: Vintage suffixes

    Returns:
        Copy of merged with pct_{group}{suffix} columns (0-1)
    """
    df = merged.copy()

    for suffix in suffixes:
        pop_col = f"pop{suffix}"
        if pop_col not in df.columns:
            continue
        total = df[pop_col].replace(0, np.nan)
        for group in SHARE_GROUPS:
            col = f"{group}{suffix}"
            if col in df.columns:
                df[f"pct_{group}{suffix}"] = df[col] / total

    return df


def add_population_change(merged: pd.DataFrame, suffixes: List[str]) -> pd.DataFrame:
    """
    Add percent population change between consecutive vintages.

    Args:
        merged: Merged neighborhood table
        suffixes: Vintage suffixes in chronological order

    Returns:
        Copy of merged with change{prev}_{next} columns (percent)
    """
    df = merged.copy()
    present = [s for s in suffixes if f"pop{s}" in df.columns]

    for prev, nxt in zip(present, present[1:]):
        before = df[f"pop{prev}"].replace(0, np.nan)
        df[f"change{prev}_{nxt}"] = (df[f"pop{nxt}"] - df[f"pop{prev}"]) / before * 100

    return df


def clean_merged_table(merged: pd.DataFrame, precision: int = None) -> pd.DataFrame:
    """
    Round numeric columns and put the neighborhood id first.

    Args:
        merged: Merged neighborhood table
        precision: Decimal places (defaults to OUTPUT_CONFIG)

    Returns:
        Cleaned copy sorted by neighborhood
    """
    if precision is None:
        precision = OUTPUT_CONFIG['precision']

    df = merged.copy()
    numeric = df.select_dtypes(include=[np.number]).columns
    # Shares keep more digits than counts
    shares = [col for col in numeric if col.startswith('pct_')]
    counts = [col for col in numeric if col not in shares]
    df[counts] = df[counts].round(precision)
    df[shares] = df[shares].round(precision + 2)

    cols = [NEIGHBORHOOD_ID_FIELD] + [c for c in df.columns if c != NEIGHBORHOOD_ID_FIELD]
    return df[cols].sort_values(NEIGHBORHOOD_ID_FIELD).reset_index(drop=True)
