"""
Census/Demographic Data Module for Boston Neighborhood Change Project

Parses tract-level population and race counts from the NHGIS decennial
extracts (1940-2010) and the 2013-2017 ACS, puts them under one set of
column names, and attaches them to the matching tract polygons.
"""

import pandas as pd
import numpy as np
import geopandas as gpd
from pathlib import Path
from typing import Dict, List, Tuple
import sys

sys.path.append(str(Path(__file__).parent.parent))
from config import PROJECTED_CRS, MIN_CITY_OVERLAP

from data.load_data import load_polygon_layer
from analysis.reallocation import validate_layer

# Groups subtracted from the total to get 'other'
NAMED_GROUPS = ['white', 'black', 'hispanic', 'asian']


def year_suffix(year_label: str) -> str:
    """Two-digit suffix for a vintage: '1990' -> '90', '2017' -> '17'."""
    return str(year_label)[-2:]


def build_geoid(df: pd.DataFrame) -> pd.Series:
    """
    Build 11-digit tract GEOIDs from Census API state/county/tract columns.

    Args:
        df: Table with 'state', 'county' and 'tract' columns

    Returns:
        Series of GEOID strings
    """
    return (
        df['state'].astype(str).str.zfill(2) +
        df['county'].astype(str).str.zfill(3) +
        df['tract'].astype(str).str.zfill(6)
    )


def load_attribute_table(vintage: Dict) -> pd.DataFrame:
    """
    Load one vintage's tract counts under standard column names.

    Args:
        vintage: Vintage record from config.VINTAGES

    Returns:
        DataFrame with the join id and one column per standard group
    """
    path = Path(vintage['attribute_table'])
    if not path.exists():
        raise FileNotFoundError(f"Census extract not found: {path}")

    # NHGIS extracts are latin-1 encoded and keep ids with leading zeros
    df = pd.read_csv(path, encoding='latin-1', dtype=str)

    join_field = vintage['join_field']
    if join_field == 'GEOID' and 'GEOID' not in df.columns:
        df['GEOID'] = build_geoid(df)

    # Filter to the city's county
    filters = vintage.get('filters', {})
    absent = [column for column in filters if column not in df.columns]
    if absent:
        raise KeyError(f"{path.name} is missing filter columns: {absent}")
    for column, value in filters.items():
        df = df[df[column].astype(str) == str(value)]

    missing = [raw for raw in vintage['columns'] if raw not in df.columns]
    if missing:
        raise KeyError(f"{path.name} is missing columns: {missing}")

    df = df.rename(columns=vintage['columns'])
    standard = [col for col in vintage['columns'].values()]
    df = df[[join_field] + standard].copy()

    # Convert counts; anything unreadable becomes NaN and is left for the
    # reallocation checks to reject
    for col in standard:
        df[col] = pd.to_numeric(df[col], errors='coerce')

    unreadable = df[standard].isna().sum()
    for col, count in unreadable.items():
        if count > 0:
            print(f"  Warning: {count} unreadable '{col}' values in {path.name}")

    print(f"  Loaded {len(df)} tracts from {path.name}")
    return df.reset_index(drop=True)


def add_other_group(table: pd.DataFrame) -> pd.DataFrame:
    """
    Compute 'other' as total population minus the named groups present.

    Some decades report 'other' directly; it is left alone there.

    Args:
        table: Tract table with standard column names

    Returns:
        Copy of the table with an 'other' column
    """
    table = table.copy()
    if 'other' in table.columns:
        return table

    named = [g for g in NAMED_GROUPS if g in table.columns]
    other = table['pop'] - table[named].sum(axis=1, min_count=len(named))
    # Rounding in the source tables occasionally pushes this below zero
    table['other'] = other.clip(lower=0)
    return table


def suffix_columns(table: pd.DataFrame, fields: List[str], year_label: str) -> pd.DataFrame:
    """
    Rename standard columns to their vintage names ('pop' -> 'pop90').

    Args:
        table: Table with standard column names
        fields: Columns to rename
        year_label: Vintage year label

    Returns:
        Renamed copy of the table
    """
    suffix = year_suffix(year_label)
    return table.rename(columns={field: f"{field}{suffix}" for field in fields})


def attach_geometry(table: pd.DataFrame,
                    tracts: gpd.GeoDataFrame,
                    join_field: str,
                    pop_field: str = 'pop') -> gpd.GeoDataFrame:
    """
    Join tract counts to tract polygons.

    Rows without a matching polygon cannot be placed and are dropped; the
    number of rows and people lost is printed so the residual shows up
    explicitly in the conservation check.

    Args:
        table: Tract counts
        tracts: Tract polygons
        join_field: Id column shared by both
        pop_field: Population column used for the report

    Returns:
        GeoDataFrame of tracts with counts
    """
    table = table.copy()
    table[join_field] = table[join_field].astype(str)
    shapes = tracts[[join_field, tracts.geometry.name]].copy()
    shapes[join_field] = shapes[join_field].astype(str)

    no_geometry = ~table[join_field].isin(shapes[join_field])
    if no_geometry.any():
        lost = table.loc[no_geometry, pop_field].sum() if pop_field in table.columns else np.nan
        print(f"  Warning: {no_geometry.sum()} tracts have no geometry "
              f"({lost:,.0f} people dropped): {table.loc[no_geometry, join_field].tolist()[:10]}")

    layer = shapes.merge(table, on=join_field, how='inner')
    return gpd.GeoDataFrame(layer, geometry=tracts.geometry.name, crs=tracts.crs)


def select_city_tracts(tracts: gpd.GeoDataFrame,
                       city: gpd.GeoDataFrame,
                       min_overlap: float = MIN_CITY_OVERLAP) -> gpd.GeoDataFrame:
    """
    Keep tracts with at least min_overlap of their area inside the city.

    Args:
        tracts: Tract polygons
        city: City polygons (e.g. the neighborhood layer)
        min_overlap: Minimum share of tract area inside the city

    Returns:
        Filtered copy of tracts
    """
    boundary = city.to_crs(tracts.crs).union_all()
    overlap = tracts.geometry.intersection(boundary).area / tracts.geometry.area
    keep = overlap >= min_overlap

    print(f"  Using {keep.sum()} of {len(tracts)} tracts with ≥{min_overlap:.0%} overlap with the city")
    return tracts[keep].copy()


def load_vintage_layer(vintage: Dict,
                       city: gpd.GeoDataFrame = None,
                       crs: str = PROJECTED_CRS) -> Tuple[pd.DataFrame, gpd.GeoDataFrame, List[str]]:
    """
    Load everything the reallocation needs for one vintage.

    Args:
        vintage: Vintage record from config.VINTAGES
        city: City boundary used to select tracts; if None all tracts
            in the county extract are used
        crs: Target planar CRS

    Returns:
        Tuple of (raw attribute table, tract layer with counts, value fields),
        both tables using suffixed column names

    Raises:
        InvalidGeometry: on a null, empty or invalid tract polygon, checked
            before the city filter so no tract is dropped unseen
    """
    year = vintage['year_label']
    join_field = vintage['join_field']
    fields = list(vintage['value_fields'])

    attributes = add_other_group(load_attribute_table(vintage))
    missing = [f for f in fields if f not in attributes.columns]
    if missing:
        raise KeyError(f"{year}: value fields not in the extract: {missing}")

    tracts = load_polygon_layer(vintage['source_layer'], crs=crs)
    if vintage['id_field'] != join_field:
        tracts = tracts.rename(columns={vintage['id_field']: join_field})

    # Restrict the raw table to city tracts; tracts missing a polygon stay in
    # so their population is counted in the raw total
    tracts[join_field] = tracts[join_field].astype(str)
    attributes[join_field] = attributes[join_field].astype(str)
    tracts = tracts[tracts[join_field].isin(attributes[join_field])]
    # Must run before the overlap filter
    validate_layer(tracts, join_field, role="source")
    if city is not None:
        outside = set(tracts[join_field]) - set(select_city_tracts(tracts, city)[join_field])
        attributes = attributes[~attributes[join_field].isin(outside)]
        tracts = tracts[~tracts[join_field].isin(outside)]

    attributes = suffix_columns(attributes[[join_field] + fields], fields, year)
    layer = attach_geometry(attributes, tracts, join_field,
                            pop_field=f"pop{year_suffix(year)}")

    value_fields = [f"{f}{year_suffix(year)}" for f in fields]
    return attributes.reset_index(drop=True), layer, value_fields
