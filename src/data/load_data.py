"""
Data Loading Module for Boston Neighborhood Change Project

Reads polygon layers (tract shapefiles, neighborhood boundaries), projects
them to the project CRS and handles area unit conversion.
"""

import pandas as pd
import geopandas as gpd
from pathlib import Path
from typing import Optional
import sys

sys.path.append(str(Path(__file__).parent.parent))
from config import (
    PROJECTED_CRS, NEIGHBORHOOD_LAYER, NEIGHBORHOOD_ID_FIELD,
    BOSTON_NEIGHBORHOODS
)
from analysis.errors import ProjectionMismatch

SQ_METERS_PER_SQ_MILE = 2_589_988.110336


def repair_geometries(layer: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Fix invalid polygons (self-intersections, bow ties) with a zero-width buffer.

    Args:
        layer: Polygon layer

    Returns:
        Copy of the layer with invalid geometries rebuilt
    """
    layer = layer.copy()
    invalid = layer.geometry.notna() & ~layer.geometry.is_valid
    if invalid.any():
        layer.loc[invalid, layer.geometry.name] = layer.loc[invalid].geometry.buffer(0)
        print(f"  Repaired {invalid.sum()} invalid geometries")
    return layer


def load_polygon_layer(path: Path,
                       crs: str = PROJECTED_CRS,
                       id_field: Optional[str] = None,
                       repair: bool = False) -> gpd.GeoDataFrame:
    """
    Load a polygon layer and project it to the project CRS.

    Args:
        path: Shapefile / GeoJSON / GeoPackage path
        crs: Target planar CRS
        id_field: If given, ids are read as strings so leading zeros survive
        repair: Rebuild invalid geometries instead of leaving them for the
            reallocation checks to reject

    Returns:
        GeoDataFrame in the requested CRS
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Polygon layer not found: {path}")

    layer = gpd.read_file(path)

    # A layer without a CRS cannot be projected safely; guessing is how
    # weights end up silently wrong.
    if layer.crs is None:
        raise ProjectionMismatch(f"{path.name} has no coordinate reference system (missing .prj?)")

    if layer.crs != crs:
        layer = layer.to_crs(crs)

    if id_field is not None:
        if id_field not in layer.columns:
            raise KeyError(f"'{id_field}' not found in {path.name}: {list(layer.columns)}")
        layer[id_field] = layer[id_field].astype(str)

    if repair:
        layer = repair_geometries(layer)

    print(f"  Loaded {len(layer)} polygons from {path.name}")
    return layer


def load_neighborhoods(path: Path = None,
                       name_field: str = "Name",
                       crs: str = PROJECTED_CRS) -> gpd.GeoDataFrame:
    """
    Load the fixed neighborhood boundaries used as the target of every vintage.

    Args:
        path: Neighborhood boundary file
        name_field: Column holding the neighborhood name
        crs: Target planar CRS

    Returns:
        GeoDataFrame with a 'neighborhood' column and geometry
    """
    if path is None:
        path = NEIGHBORHOOD_LAYER

    layer = load_polygon_layer(path, crs=crs, repair=True)

    if name_field not in layer.columns:
        raise KeyError(f"'{name_field}' not found in neighborhood layer: {list(layer.columns)}")

    layer = layer.rename(columns={name_field: NEIGHBORHOOD_ID_FIELD})
    layer = layer[layer[NEIGHBORHOOD_ID_FIELD].isin(BOSTON_NEIGHBORHOODS)].copy()

    missing = sorted(set(BOSTON_NEIGHBORHOODS) - set(layer[NEIGHBORHOOD_ID_FIELD]))
    if missing:
        print(f"  Warning: neighborhoods missing from boundary file: {missing}")

    return layer[[NEIGHBORHOOD_ID_FIELD, layer.geometry.name]].reset_index(drop=True)


def square_meters_to_square_miles(area):
    """Convert square meters (scalar or Series) to square miles."""
    return area / SQ_METERS_PER_SQ_MILE


def add_area_column(layer: gpd.GeoDataFrame, column: str = "area_sqmi") -> gpd.GeoDataFrame:
    """
    Add polygon area in square miles.

    Args:
        layer: Layer in a planar CRS measured in meters
        column: Name of the new column

    Returns:
        Copy of the layer with the area column
    """
    if layer.crs is None or not layer.crs.is_projected:
        raise ProjectionMismatch("Areas need a projected CRS")

    unit = layer.crs.axis_info[0].unit_name if layer.crs.axis_info else "metre"
    if unit not in ("metre", "meter"):
        raise ProjectionMismatch(f"Expected a CRS in meters, got {unit}")

    layer = layer.copy()
    layer[column] = square_meters_to_square_miles(layer.geometry.area)
    return layer


def neighborhood_areas(neighborhoods: gpd.GeoDataFrame) -> pd.DataFrame:
    """Neighborhood name and area in square miles, as a plain table."""
    with_area = add_area_column(neighborhoods)
    return pd.DataFrame(with_area[[NEIGHBORHOOD_ID_FIELD, "area_sqmi"]])
