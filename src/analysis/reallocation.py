"""
Areal Reallocation Module for Boston Neighborhood Change Project

Reallocates tract-level census counts onto the fixed neighborhood boundaries
in proportion to overlap area, then checks that the reallocated totals add
back up to the tract totals.

Counts (extensive variables) are split by the share of each tract's area that
falls in each neighborhood. Rates and shares (intensive variables) must be
declared separately and are averaged over the covered area instead; they are
never summed.
"""

import pandas as pd
import geopandas as gpd
from pathlib import Path
from typing import Dict, List, Optional
import sys

sys.path.append(str(Path(__file__).parent.parent))
from config import CONSERVATION_TOLERANCE

from .errors import (
    ProjectionMismatch, InvalidGeometry, DuplicateKey,
    UndefinedValue, ConservationMismatch, VariableKindError
)

# Internal key columns, so source and target ids never collide in the overlay
SOURCE_KEY = "_source_id"
TARGET_KEY = "_target_id"

WEIGHT_COLUMNS = ["source_id", "target_id", "intersection_area", "source_area", "weight"]


def check_projection(source: gpd.GeoDataFrame, target: gpd.GeoDataFrame) -> None:
    """
    Make sure both layers share one planar coordinate reference system.

    Areas computed in a geographic CRS (degrees) or in two different CRSs
    give wrong weights without any other sign of trouble.

    Args:
        source: Source polygon layer
        target: Target polygon layer

    Raises:
        ProjectionMismatch: if either layer has no CRS, is not projected,
            or the two CRSs differ
    """
    for role, layer in (("source", source), ("target", target)):
        if not isinstance(layer, gpd.GeoDataFrame):
            raise TypeError(f"{role} layer must be a GeoDataFrame, got {type(layer).__name__}")
        if layer.crs is None:
            raise ProjectionMismatch(f"{role} layer has no coordinate reference system")
        if not layer.crs.is_projected:
            raise ProjectionMismatch(
                f"{role} layer is in geographic CRS {layer.crs.to_string()}; "
                "project it to a planar CRS before computing areas"
            )

    if source.crs != target.crs:
        raise ProjectionMismatch(
            f"source CRS {source.crs.to_string()} does not match "
            f"target CRS {target.crs.to_string()}"
        )


def validate_layer(layer: gpd.GeoDataFrame, id_field: str, role: str = "source") -> None:
    """
    Check identifiers and geometries of a polygon layer.

    Args:
        layer: Polygon layer
        id_field: Column holding the unique polygon id
        role: 'source' or 'target', used in error messages

    Raises:
        DuplicateKey: on null or repeated ids
        InvalidGeometry: on null, empty, non-polygon, invalid or zero-area shapes
    """
    if id_field not in layer.columns:
        raise KeyError(f"'{id_field}' not found in {role} layer")

    ids = layer[id_field]
    bad_ids = ids[ids.isna() | ids.duplicated(keep=False)]
    if len(bad_ids) > 0:
        raise DuplicateKey(id_field, bad_ids.drop_duplicates().tolist(), where=f"{role} layer")

    geom = layer.geometry

    missing = geom.isna() | geom.is_empty
    if missing.any():
        raise InvalidGeometry(role, ids[missing].tolist(), reason="null or empty")

    not_polygon = ~geom.geom_type.isin(["Polygon", "MultiPolygon"])
    if not_polygon.any():
        raise InvalidGeometry(role, ids[not_polygon].tolist(), reason="non-polygon")

    invalid = ~geom.is_valid
    if invalid.any():
        raise InvalidGeometry(role, ids[invalid].tolist(), reason="self-intersecting or unclosed")

    zero_area = geom.area <= 0
    if zero_area.any():
        raise InvalidGeometry(role, ids[zero_area].tolist(), reason="zero-area")


def validate_values(layer: pd.DataFrame,
                    fields: List[str],
                    id_field: str,
                    fill_missing: bool = False,
                    allow_negative: bool = False) -> pd.DataFrame:
    """
    Coerce attribute columns to floats, refusing anything that is not a number.

    Args:
        layer: Table holding the attribute columns
        fields: Columns to check
        id_field: Column used to name offending rows
        fill_missing: If True, missing or non-numeric values become zero
            instead of raising
        allow_negative: If True, negative values are accepted

    Returns:
        DataFrame of float columns, same index as layer

    Raises:
        UndefinedValue: on missing, non-numeric or negative values
    """
    values = pd.DataFrame(index=layer.index)

    for field in fields:
        if field not in layer.columns:
            raise KeyError(f"'{field}' not found in source layer")

        numeric = pd.to_numeric(layer[field], errors='coerce')
        missing = numeric.isna()
        if missing.any():
            if not fill_missing:
                raise UndefinedValue(field, layer.loc[missing, id_field].tolist())
            print(f"  Coerced {missing.sum()} missing '{field}' values to zero")
            numeric = numeric.fillna(0.0)

        if not allow_negative:
            negative = numeric < 0
            if negative.any():
                raise UndefinedValue(field, layer.loc[negative, id_field].tolist(),
                                     reason="negative")

        values[field] = numeric.astype(float)

    return values


def _check_variable_kinds(extensive_fields: List[str],
                          intensive_fields: List[str],
                          id_fields: List[str]) -> None:
    if not extensive_fields and not intensive_fields:
        raise VariableKindError("No fields to reallocate")

    both = sorted(set(extensive_fields) & set(intensive_fields))
    if both:
        raise VariableKindError(f"Fields declared both extensive and intensive: {both}")

    clash = sorted(set(extensive_fields + intensive_fields) & set(id_fields))
    if clash:
        raise VariableKindError(f"Id fields cannot be reallocated: {clash}")


def _overlap_weights(source: gpd.GeoDataFrame,
                     target: gpd.GeoDataFrame,
                     source_id_field: str,
                     target_id_field: str) -> pd.DataFrame:
    """Intersect the two (already validated) layers and compute weights."""
    src = gpd.GeoDataFrame(
        {SOURCE_KEY: source[source_id_field].to_numpy()},
        geometry=source.geometry.values,
        crs=source.crs,
    )
    src["source_area"] = src.geometry.area

    tgt = gpd.GeoDataFrame(
        {TARGET_KEY: target[target_id_field].to_numpy()},
        geometry=target.geometry.values,
        crs=target.crs,
    )

    # overlay uses the spatial index, so only bounding-box candidates are intersected.
    # Shared edges come back as lines and are dropped by keep_geom_type.
    pieces = gpd.overlay(src, tgt, how="intersection", keep_geom_type=True)

    if pieces.empty:
        empty = {col: pd.Series(dtype=float) for col in WEIGHT_COLUMNS}
        empty["source_id"] = pd.Series(dtype=source[source_id_field].dtype)
        empty["target_id"] = pd.Series(dtype=target[target_id_field].dtype)
        return pd.DataFrame(empty)[WEIGHT_COLUMNS]

    pieces["intersection_area"] = pieces.geometry.area

    weights = (
        pd.DataFrame(pieces.drop(columns="geometry"))
        .groupby([SOURCE_KEY, TARGET_KEY], sort=False)
        .agg(intersection_area=("intersection_area", "sum"),
             source_area=("source_area", "first"))
        .reset_index()
    )
    weights = weights[weights["intersection_area"] > 0].copy()
    weights["weight"] = weights["intersection_area"] / weights["source_area"]

    # Fixed accumulation order: ascending source id, then target id
    weights = weights.sort_values([SOURCE_KEY, TARGET_KEY], kind="mergesort")
    weights = weights.rename(columns={SOURCE_KEY: "source_id", TARGET_KEY: "target_id"})

    return weights[WEIGHT_COLUMNS].reset_index(drop=True)


def compute_overlap_weights(source: gpd.GeoDataFrame,
                            target: gpd.GeoDataFrame,
                            source_id_field: str,
                            target_id_field: str) -> pd.DataFrame:
    """
    Compute overlap weights for every intersecting (source, target) pair.

    weight = area(source ∩ target) / area(source)

    Args:
        source: Source polygon layer (e.g. census tracts)
        target: Target polygon layer (e.g. neighborhoods)
        source_id_field: Unique id column of the source layer
        target_id_field: Unique id column of the target layer

    Returns:
        DataFrame with source_id, target_id, intersection_area,
        source_area and weight, sorted by source id then target id
    """
    check_projection(source, target)
    validate_layer(source, source_id_field, "source")
    validate_layer(target, target_id_field, "target")

    return _overlap_weights(source, target, source_id_field, target_id_field)


def reallocate(source: gpd.GeoDataFrame,
               target: gpd.GeoDataFrame,
               source_id_field: str,
               target_id_field: str,
               extensive_fields: List[str],
               intensive_fields: Optional[List[str]] = None,
               fill_missing: bool = False,
               empty_value: float = 0.0) -> pd.DataFrame:
    """
    Reallocate source attributes onto the target polygons by overlap area.

    Every check runs before any intersection is computed: projection,
    unique ids, valid geometries, numeric values.

    Args:
        source: Source polygon layer carrying the attribute columns
        target: Target polygon layer
        source_id_field: Unique id column of the source layer
        target_id_field: Unique id column of the target layer
        extensive_fields: Count columns, split proportionally to area
        intensive_fields: Rate/share columns, averaged over the covered area
        fill_missing: Coerce missing count values to zero instead of raising
        empty_value: Value given to extensive fields of targets that no
            source polygon touches (0.0 or np.nan)

    Returns:
        DataFrame with one row per target id, in target-layer order
    """
    extensive_fields = list(extensive_fields)
    intensive_fields = list(intensive_fields or [])
    _check_variable_kinds(extensive_fields, intensive_fields,
                          [source_id_field, target_id_field])

    check_projection(source, target)
    validate_layer(source, source_id_field, "source")
    validate_layer(target, target_id_field, "target")

    extensive = validate_values(source, extensive_fields, source_id_field, fill_missing)
    intensive = validate_values(source, intensive_fields, source_id_field,
                                allow_negative=True)

    values = pd.concat([extensive, intensive], axis=1)
    values.index = source[source_id_field].to_numpy()

    weights = _overlap_weights(source, target, source_id_field, target_id_field)
    pairs = weights.join(values, on="source_id")

    target_ids = pd.Index(target[target_id_field].to_numpy(), name=target_id_field)
    parts = []

    if extensive_fields:
        shares = pairs[extensive_fields].mul(pairs["weight"], axis=0)
        shares["target_id"] = pairs["target_id"]
        sums = shares.groupby("target_id", sort=False)[extensive_fields].sum()
        sums = sums.reindex(target_ids)
        if not pd.isna(empty_value):
            sums = sums.fillna(empty_value)
        parts.append(sums)

    if intensive_fields:
        weighted = pairs[intensive_fields].mul(pairs["intersection_area"], axis=0)
        weighted["target_id"] = pairs["target_id"]
        totals = weighted.groupby("target_id", sort=False)[intensive_fields].sum()
        covered = pairs.groupby("target_id", sort=False)["intersection_area"].sum()
        # Uncovered targets stay null: there is nothing to average
        parts.append(totals.div(covered, axis=0).reindex(target_ids))

    table = pd.concat(parts, axis=1)
    table.index.name = target_id_field

    print(f"  Reallocated {len(source)} source polygons onto {len(target)} targets "
          f"({len(weights)} overlapping pairs)")

    return table.reset_index()


def verify_conservation(source: pd.DataFrame,
                        source_value_field: str,
                        result: pd.DataFrame,
                        result_value_field: str,
                        tolerance: float = CONSERVATION_TOLERANCE,
                        expected_delta: float = 0.0,
                        fill_missing: bool = False,
                        id_field: Optional[str] = None) -> Dict:
    """
    Compare the reallocated total with the source total.

    The source may be a plain DataFrame, e.g. the raw attribute table
    including rows that never got a geometry, so that losses from those
    rows show up in the delta.

    Args:
        source: Source table or layer
        source_value_field: Count column in the source
        result: Reallocated table
        result_value_field: Count column in the result
        tolerance: Relative tolerance (fraction of the source total)
        expected_delta: Known, accepted residual for this run
        fill_missing: Count missing source values as zero instead of raising
        id_field: Column used to name rows with missing values; the row
            index is reported when None

    Returns:
        Dictionary with conserved, delta (source_total - result_total, so
        a positive delta is mass lost), source_total, result_total,
        expected_delta, matches_expected, tolerance and abs_tolerance
    """
    source_values = pd.to_numeric(source[source_value_field], errors='coerce')
    missing = source_values.isna()
    if missing.any():
        if not fill_missing:
            ids = source.loc[missing, id_field] if id_field else source.index[missing]
            raise UndefinedValue(source_value_field, list(ids))
        source_values = source_values.fillna(0.0)

    # Null result rows are targets that received nothing
    result_values = pd.to_numeric(result[result_value_field], errors='coerce')

    source_total = float(source_values.sum())
    result_total = float(result_values.sum())
    delta = source_total - result_total

    abs_tolerance = tolerance * max(abs(source_total), 1.0)

    return {
        'conserved': bool(abs(delta) <= abs_tolerance),
        'delta': delta,
        'source_total': source_total,
        'result_total': result_total,
        'expected_delta': float(expected_delta),
        'matches_expected': bool(abs(delta - expected_delta) <= abs_tolerance),
        'tolerance': tolerance,
        'abs_tolerance': abs_tolerance,
    }


def check_conservation(check: Dict, label: str = "reallocation") -> Dict:
    """
    Raise if a conservation check does not match its expected residual.

    Args:
        check: Dictionary from verify_conservation()
        label: Run name used in the error message

    Returns:
        The same dictionary, when it matches
    """
    if not check['matches_expected']:
        raise ConservationMismatch(label, check['delta'], check['expected_delta'],
                                   check['abs_tolerance'])
    return check


def describe_conservation(check: Dict, unit: str = "people") -> str:
    """One-line summary of a conservation check."""
    delta = check['delta']
    if abs(delta) <= check['abs_tolerance']:
        return f"Totals match ({check['source_total']:,.0f} {unit})"

    direction = "fewer" if delta > 0 else "more"
    return (f"{abs(delta):,.2f} {direction} {unit} than in the raw source "
            f"({check['result_total']:,.2f} of {check['source_total']:,.2f})")
