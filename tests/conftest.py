"""
Shared fixtures for the Boston Neighborhood Change tests.

Layers are built from axis-aligned squares in NAD83 / Massachusetts Mainland,
so every intersection area is exact.
"""

import sys
from pathlib import Path

import pytest
import geopandas as gpd
from shapely.geometry import box

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

CRS = "EPSG:26986"


@pytest.fixture
def make_layer():
    """Build a GeoDataFrame from {id: (minx, miny, maxx, maxy)} plus attribute columns."""

    def _make(id_field, boxes, crs=CRS, **columns):
        data = {id_field: list(boxes.keys())}
        data.update({name: list(values) for name, values in columns.items()})
        geometry = [box(*bounds) for bounds in boxes.values()]
        return gpd.GeoDataFrame(data, geometry=geometry, crs=crs)

    return _make


@pytest.fixture
def neighborhoods(make_layer):
    """Two neighborhoods covering x in [0, 200], y in [0, 100]."""
    return make_layer("neighborhood", {
        "Back Bay": (0, 0, 150, 100),
        "Fenway": (150, 0, 200, 100),
    })


@pytest.fixture
def tracts(make_layer):
    """Two tracts covering the same area as the neighborhoods."""
    return make_layer("GISJOIN", {
        "G1": (0, 0, 100, 100),
        "G2": (100, 0, 200, 100),
    }, pop=[100.0, 200.0], white=[60.0, 50.0], black=[40.0, 150.0])
