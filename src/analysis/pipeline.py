"""
Vintage Pipeline for Boston Neighborhood Change Project

Runs the same reallocation for every census vintage, driven by the records
in config.VINTAGES, and merges the results into one neighborhood table.
Each vintage's table is returned straight to the merge step; nothing is
kept between vintages.
"""

import pandas as pd
import geopandas as gpd
from pathlib import Path
from typing import Dict, List, Tuple
import sys

sys.path.append(str(Path(__file__).parent.parent))
from config import (
    VINTAGES, NEIGHBORHOOD_ID_FIELD, CONSERVATION_TOLERANCE,
    OUTPUT_FILE, OUTPUT_CONFIG
)
from data.census_data import load_vintage_layer, year_suffix
from data.load_data import load_neighborhoods, neighborhood_areas
from data.preprocess import (
    add_density, add_race_shares, add_population_change, clean_merged_table
)

from .errors import VariableKindError
from .reallocation import (
    reallocate, verify_conservation, check_conservation, describe_conservation
)
from .merge import combine_vintages

VARIABLE_KINDS = ("extensive", "intensive")


def split_fields_by_kind(vintage: Dict) -> Tuple[List[str], List[str]]:
    """
    Split a vintage's declared value fields into extensive and intensive lists.

    Args:
        vintage: Vintage record

    Returns:
        Tuple of (extensive fields, intensive fields), suffixed
    """
    suffix = year_suffix(vintage['year_label'])
    extensive, intensive = [], []

    for name, kind in vintage['value_fields'].items():
        if kind not in VARIABLE_KINDS:
            raise VariableKindError(
                f"{vintage['year_label']}: '{name}' has kind '{kind}', "
                f"expected one of {VARIABLE_KINDS}"
            )
        (extensive if kind == "extensive" else intensive).append(f"{name}{suffix}")

    return extensive, intensive


def process_vintage(vintage: Dict,
                    neighborhoods: gpd.GeoDataFrame,
                    fill_missing: bool = False,
                    tolerance: float = CONSERVATION_TOLERANCE) -> Tuple[pd.DataFrame, Dict]:
    """
    Reallocate one vintage's tract counts onto the neighborhoods.

    The population total is verified against the raw attribute table, which
    still holds tracts that never got a polygon. A residual other than the
    vintage's expected_delta aborts the run.

    Args:
        vintage: Vintage record from config.VINTAGES
        neighborhoods: Target neighborhood layer
        fill_missing: Coerce missing counts to zero instead of failing
        tolerance: Relative tolerance for the conservation check

    Returns:
        Tuple of (neighborhood table, conservation check dictionary)
    """
    year = vintage['year_label']
    print(f"\n--- {year} ---")

    extensive, intensive = split_fields_by_kind(vintage)
    attributes, tracts, _ = load_vintage_layer(vintage, city=neighborhoods,
                                               crs=neighborhoods.crs)

    table = reallocate(
        tracts, neighborhoods,
        source_id_field=vintage['join_field'],
        target_id_field=NEIGHBORHOOD_ID_FIELD,
        extensive_fields=extensive,
        intensive_fields=intensive,
        fill_missing=fill_missing,
    )

    pop_col = f"pop{year_suffix(year)}"
    check = verify_conservation(
        attributes, pop_col, table, pop_col,
        tolerance=vintage.get('tolerance', tolerance),
        expected_delta=vintage.get('expected_delta', 0.0),
        fill_missing=fill_missing,
        id_field=vintage['join_field'],
    )
    print(f"  Conservation: {describe_conservation(check)}")
    check_conservation(check, label=year)

    return table, check


def run_pipeline(vintages: List[Dict] = None,
                 neighborhoods: gpd.GeoDataFrame = None,
                 fill_missing: bool = False,
                 tolerance: float = CONSERVATION_TOLERANCE) -> Tuple[pd.DataFrame, Dict[str, Dict]]:
    """
    Reallocate every vintage and merge the results.

    Args:
        vintages: Vintage records (defaults to config.VINTAGES)
        neighborhoods: Target layer (loaded from config if None)
        fill_missing: Coerce missing counts to zero
        tolerance: Relative tolerance for conservation checks

    Returns:
        Tuple of (merged neighborhood table, checks keyed by year label)
    """
    if vintages is None:
        vintages = VINTAGES
    if neighborhoods is None:
        neighborhoods = load_neighborhoods()

    tables = []
    checks = {}
    for vintage in vintages:
        table, check = process_vintage(vintage, neighborhoods,
                                       fill_missing=fill_missing,
                                       tolerance=tolerance)
        tables.append(table)
        checks[vintage['year_label']] = check

    labels = [v['year_label'] for v in vintages]
    merged = combine_vintages(tables, on=NEIGHBORHOOD_ID_FIELD, labels=labels)

    suffixes = [year_suffix(label) for label in labels]
    merged = add_density(merged, neighborhood_areas(neighborhoods), suffixes)
    merged = add_race_shares(merged, suffixes)
    merged = add_population_change(merged, suffixes)

    return clean_merged_table(merged), checks


def save_merged_table(merged: pd.DataFrame,
                      output_path: Path = None,
                      fmt: str = None) -> Path:
    """
    Write the merged table as CSV or Parquet.

    Args:
        merged: Merged neighborhood table
        output_path: Output file (defaults to config.OUTPUT_FILE)
        fmt: 'csv' or 'parquet' (defaults to OUTPUT_CONFIG)

    Returns:
        Path to the saved file
    """
    if fmt is None:
        fmt = OUTPUT_CONFIG['format']
    if output_path is None:
        output_path = OUTPUT_FILE

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == 'csv':
        merged.to_csv(output_path, index=False)
    elif fmt == 'parquet':
        output_path = output_path.with_suffix('.parquet')
        merged.to_parquet(output_path, index=False, engine='pyarrow')
    else:
        raise ValueError(f"Unknown output format: {fmt}")

    print(f"Saved merged table to: {output_path}")
    return output_path
