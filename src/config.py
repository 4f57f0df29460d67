"""
Configuration file for Boston Neighborhood Change Project

Contains paths, the projected CRS, and the per-vintage census configuration.
"""

from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DATA_RAW = DATA_DIR / "raw"
DATA_PROCESSED = DATA_DIR / "processed"
DATA_EXTERNAL = DATA_DIR / "external"
CENSUS_DIR = DATA_RAW / "census"
SHAPEFILE_DIR = DATA_RAW / "shapefiles"
OUTPUT_FILE = DATA_PROCESSED / "neighborhood_population_1940_2017.csv"

# All area computations happen in NAD83 / Massachusetts Mainland (meters)
PROJECTED_CRS = "EPSG:26986"

# Fixed target layer: 2020 Boston neighborhood boundaries
NEIGHBORHOOD_LAYER = SHAPEFILE_DIR / "boston_neighborhoods" / "Boston_Neighborhoods.shp"
NEIGHBORHOOD_ID_FIELD = "neighborhood"

BOSTON_NEIGHBORHOODS = [
    'Allston', 'Back Bay', 'Bay Village', 'Beacon Hill', 'Brighton',
    'Charlestown', 'Chinatown', 'Dorchester', 'Downtown', 'East Boston',
    'Fenway', 'Harbor Islands', 'Hyde Park', 'Jamaica Plain', 'Leather District',
    'Longwood', 'Mattapan', 'Mission Hill', 'North End', 'Roslindale',
    'Roxbury', 'South Boston', 'South Boston Waterfront', 'South End',
    'West End', 'West Roxbury'
]

# Standard count columns, before the year suffix is added
RACE_GROUPS = ["pop", "white", "black", "hispanic", "asian", "other"]

# Relative tolerance for the conservation check
CONSERVATION_TOLERANCE = 1e-6

# Share of a tract's area that must fall inside the city for the tract to
# count as a Boston tract (tracts in Chelsea, Revere and Winthrop only touch
# the boundary).
# A kept tract that is only partly covered by the neighborhoods leaves its
# uncovered share out of the result, and that share counts against the
# vintage's expected_delta. The 0.0 residuals below assume every kept tract
# is fully covered; a vintage whose tracts spill past the neighborhood
# layer needs its own expected_delta (or tolerance) set.
MIN_CITY_OVERLAP = 0.5

OUTPUT_CONFIG = {
    "format": "csv",
    "precision": 2,
}


def _decennial(year, columns, fields, expected_delta=0.0, id_field="GISJOIN"):
    """Build a vintage record for an NHGIS decennial tract extract."""
    return {
        "year_label": year,
        "source_layer": SHAPEFILE_DIR / f"nhgis_tracts_{year}" / f"MA_tract_{year}.shp",
        "attribute_table": CENSUS_DIR / f"nhgis_tract_{year}.csv",
        "id_field": id_field,
        "join_field": "GISJOIN",
        "columns": columns,
        "filters": {"COUNTY": "Suffolk County"},
        "value_fields": {name: "extensive" for name in fields},
        "expected_delta": expected_delta,
    }


# Race categories before 1970 are white / nonwhite only; Hispanic origin
# first appears at tract level in 1970 and Asian in 1980.
VINTAGES = [
    _decennial("1940", {
        "Total population": "pop",
        "White": "white",
        "Negro": "black",
        "Other races": "other",
    }, ["pop", "white", "black", "other"]),
    _decennial("1950", {
        "Total population": "pop",
        "White": "white",
        "Negro": "black",
        "Other races": "other",
    }, ["pop", "white", "black", "other"]),
    _decennial("1960", {
        "Total population": "pop",
        "White": "white",
        "Negro": "black",
        "Other races": "other",
    }, ["pop", "white", "black", "other"]),
    _decennial("1970", {
        "Total population": "pop",
        "White": "white",
        "Negro": "black",
        "Persons of Spanish language": "hispanic",
    }, ["pop", "white", "black", "hispanic", "other"]),
    _decennial("1980", {
        "Total population": "pop",
        "White": "white",
        "Black": "black",
        "Spanish origin": "hispanic",
        "Asian and Pacific Islander": "asian",
    }, ["pop", "white", "black", "hispanic", "asian", "other"]),
    # 1990 extract has tracts without a matching polygon; their residents
    # cannot be placed on the map.
    _decennial("1990", {
        "Total population": "pop",
        "Not Hispanic: White": "white",
        "Not Hispanic: Black": "black",
        "Hispanic origin": "hispanic",
        "Not Hispanic: Asian or Pacific Islander": "asian",
    }, ["pop", "white", "black", "hispanic", "asian", "other"], expected_delta=12.0),
    _decennial("2000", {
        "Total population": "pop",
        "Not Hispanic: White alone": "white",
        "Not Hispanic: Black alone": "black",
        "Hispanic or Latino": "hispanic",
        "Not Hispanic: Asian alone": "asian",
    }, ["pop", "white", "black", "hispanic", "asian", "other"]),
    _decennial("2010", {
        "H7Z001": "pop",
        "H7Z003": "white",
        "H7Z004": "black",
        "H7Z010": "hispanic",
        "H7Z006": "asian",
    }, ["pop", "white", "black", "hispanic", "asian", "other"]),
    {
        "year_label": "2017",
        "source_layer": SHAPEFILE_DIR / "tl_2017_25_tract" / "tl_2017_25_tract.shp",
        "attribute_table": CENSUS_DIR / "acs_2013_2017_b03002_tract.csv",
        "id_field": "GEOID",
        "join_field": "GEOID",
        "filters": {"county": "025"},
        "columns": {
            "B03002_001E": "pop",
            "B03002_003E": "white",
            "B03002_004E": "black",
            "B03002_012E": "hispanic",
            "B03002_006E": "asian",
        },
        "value_fields": {name: "extensive" for name in RACE_GROUPS},
        "expected_delta": 0.0,
    },
]
