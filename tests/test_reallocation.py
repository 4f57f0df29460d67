"""Tests for the areal reallocation step."""

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from shapely.geometry import Polygon

from analysis.reallocation import (
    compute_overlap_weights, reallocate, verify_conservation,
    check_conservation, describe_conservation
)
from analysis.errors import (
    ProjectionMismatch, InvalidGeometry, DuplicateKey, UndefinedValue,
    ConservationMismatch, VariableKindError
)


def test_contained_source_keeps_full_value(make_layer):
    source = make_layer("tract", {"T1": (20, 20, 80, 80)}, pop=[1234.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100), "B": (100, 0, 200, 100)})

    weights = compute_overlap_weights(source, target, "tract", "nbhd")
    assert len(weights) == 1
    assert weights.loc[0, "target_id"] == "A"
    assert weights.loc[0, "weight"] == 1.0

    result = reallocate(source, target, "tract", "nbhd", ["pop"])
    assert result.set_index("nbhd").loc["A", "pop"] == 1234.0


def test_source_split_in_half(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 200, 100)}, pop=[301.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100), "B": (100, 0, 200, 100)})

    result = reallocate(source, target, "tract", "nbhd", ["pop"]).set_index("nbhd")

    assert result.loc["A", "pop"] == pytest.approx(150.5)
    assert result.loc["B", "pop"] == pytest.approx(150.5)


def test_full_coverage_conserves_and_weights_sum_to_one(tracts, neighborhoods):
    weights = compute_overlap_weights(tracts, neighborhoods, "GISJOIN", "neighborhood")
    per_source = weights.groupby("source_id")["weight"].sum()
    assert per_source.to_numpy() == pytest.approx([1.0, 1.0])

    result = reallocate(tracts, neighborhoods, "GISJOIN", "neighborhood",
                        ["pop", "white", "black"])
    result = result.set_index("neighborhood")

    assert result.loc["Back Bay", "pop"] == pytest.approx(200.0)
    assert result.loc["Fenway", "pop"] == pytest.approx(100.0)
    assert result.loc["Fenway", "black"] == pytest.approx(75.0)

    check = verify_conservation(tracts, "pop", result.reset_index(), "pop")
    assert check["conserved"]
    assert check["matches_expected"]
    assert check["delta"] == pytest.approx(0.0, abs=1e-6)


def test_weights_sorted_by_source_then_target(make_layer):
    source = make_layer("tract", {
        "T2": (0, 0, 100, 100),
        "T1": (100, 0, 200, 100),
    }, pop=[1.0, 1.0])
    target = make_layer("nbhd", {
        "B": (0, 0, 50, 100),
        "A": (50, 0, 200, 100),
    })

    weights = compute_overlap_weights(source, target, "tract", "nbhd")
    pairs = list(zip(weights["source_id"], weights["target_id"]))
    assert pairs == [("T1", "A"), ("T2", "A"), ("T2", "B")]


def test_output_follows_target_order_and_fills_uncovered(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    target = make_layer("nbhd", {
        "Harbor Islands": (500, 500, 600, 600),
        "A": (0, 0, 100, 100),
    })

    result = reallocate(source, target, "tract", "nbhd", ["pop"])
    assert result["nbhd"].tolist() == ["Harbor Islands", "A"]
    assert result["pop"].tolist() == [0.0, 10.0]

    result = reallocate(source, target, "tract", "nbhd", ["pop"], empty_value=np.nan)
    assert np.isnan(result.loc[0, "pop"])


def test_partial_coverage_reports_signed_delta(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[1000.0])
    target = make_layer("nbhd", {"A": (0, 0, 90, 100)})

    result = reallocate(source, target, "tract", "nbhd", ["pop"])
    check = verify_conservation(source, "pop", result, "pop")

    assert not check["conserved"]
    assert check["delta"] == pytest.approx(100.0)
    assert check["result_total"] == pytest.approx(900.0)
    assert "100.00 fewer people" in describe_conservation(check)

    with pytest.raises(ConservationMismatch) as excinfo:
        check_conservation(check, label="1990")
    assert excinfo.value.delta == pytest.approx(100.0)


def test_expected_delta_is_accepted(make_layer):
    source = pd.DataFrame({"GISJOIN": ["G1", "G2"], "pop": [300.0, 12.0]})
    result = pd.DataFrame({"neighborhood": ["A", "B"], "pop": [200.0, 100.0]})

    check = verify_conservation(source, "pop", result, "pop", expected_delta=12.0)
    assert not check["conserved"]
    assert check["matches_expected"]
    assert check_conservation(check) is check

    check = verify_conservation(source, "pop", result, "pop", expected_delta=11.0)
    with pytest.raises(ConservationMismatch):
        check_conservation(check)


def test_verify_rejects_missing_source_values():
    source = pd.DataFrame({"pop": [10.0, None]})
    result = pd.DataFrame({"pop": [10.0]})

    with pytest.raises(UndefinedValue):
        verify_conservation(source, "pop", result, "pop")

    check = verify_conservation(source, "pop", result, "pop", fill_missing=True)
    assert check["conserved"]


def test_verify_names_missing_rows_by_id():
    source = pd.DataFrame({"GISJOIN": ["G1", "G7"], "pop": [10.0, None]})
    result = pd.DataFrame({"pop": [10.0]})

    with pytest.raises(UndefinedValue) as excinfo:
        verify_conservation(source, "pop", result, "pop", id_field="GISJOIN")
    assert excinfo.value.ids == ["G7"]


def test_duplicate_target_id_raises_before_intersection(make_layer, monkeypatch):
    def fail_overlay(*args, **kwargs):
        raise AssertionError("overlay should not run")

    monkeypatch.setattr(gpd, "overlay", fail_overlay)

    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    target = make_layer("nbhd", {"A": (0, 0, 50, 100)})
    target = pd.concat([target, target], ignore_index=True)

    with pytest.raises(DuplicateKey) as excinfo:
        reallocate(source, target, "tract", "nbhd", ["pop"])
    assert excinfo.value.ids == ["A"]


def test_duplicate_source_id_raises(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    source = pd.concat([source, source], ignore_index=True)
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(DuplicateKey):
        compute_overlap_weights(source, target, "tract", "nbhd")


def test_geographic_crs_is_rejected(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 1, 1)}, crs="EPSG:4326", pop=[10.0])
    target = make_layer("nbhd", {"A": (0, 0, 1, 1)}, crs="EPSG:4326")

    with pytest.raises(ProjectionMismatch):
        reallocate(source, target, "tract", "nbhd", ["pop"])


def test_mismatched_crs_is_rejected(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)}, crs="EPSG:2249")

    with pytest.raises(ProjectionMismatch):
        reallocate(source, target, "tract", "nbhd", ["pop"])


def test_missing_crs_is_rejected(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, crs=None, pop=[10.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(ProjectionMismatch):
        reallocate(source, target, "tract", "nbhd", ["pop"])


def test_self_intersecting_polygon_names_the_tract(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    bowtie = Polygon([(0, 0), (100, 100), (100, 0), (0, 100)])
    source = pd.concat([
        source,
        gpd.GeoDataFrame({"tract": ["T2"], "pop": [5.0]}, geometry=[bowtie], crs=source.crs),
    ], ignore_index=True)
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(InvalidGeometry) as excinfo:
        reallocate(source, target, "tract", "nbhd", ["pop"])
    assert excinfo.value.ids == ["T2"]


def test_empty_geometry_is_rejected(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    source.loc[0, "geometry"] = Polygon()
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(InvalidGeometry):
        reallocate(source, target, "tract", "nbhd", ["pop"])


def test_missing_values_raise_unless_filled(make_layer):
    source = make_layer("tract", {
        "T1": (0, 0, 100, 100),
        "T2": (100, 0, 200, 100),
    }, pop=[10.0, None])
    target = make_layer("nbhd", {"A": (0, 0, 200, 100)})

    with pytest.raises(UndefinedValue) as excinfo:
        reallocate(source, target, "tract", "nbhd", ["pop"])
    assert excinfo.value.ids == ["T2"]

    result = reallocate(source, target, "tract", "nbhd", ["pop"], fill_missing=True)
    assert result.loc[0, "pop"] == pytest.approx(10.0)


def test_negative_values_always_raise(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[-5.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(UndefinedValue):
        reallocate(source, target, "tract", "nbhd", ["pop"], fill_missing=True)


def test_intensive_fields_are_area_weighted_means(make_layer):
    source = make_layer("tract", {
        "T1": (0, 0, 100, 100),
        "T2": (100, 0, 200, 100),
    }, pop=[100.0, 300.0], median_age=[30.0, 40.0])
    target = make_layer("nbhd", {
        "A": (0, 0, 200, 100),
        "B": (500, 0, 600, 100),
    })

    result = reallocate(source, target, "tract", "nbhd", ["pop"],
                        intensive_fields=["median_age"]).set_index("nbhd")

    assert result.loc["A", "pop"] == pytest.approx(400.0)
    # Averaged, not summed
    assert result.loc["A", "median_age"] == pytest.approx(35.0)
    assert np.isnan(result.loc["B", "median_age"])


def test_field_declared_twice_is_rejected(make_layer):
    source = make_layer("tract", {"T1": (0, 0, 100, 100)}, pop=[10.0])
    target = make_layer("nbhd", {"A": (0, 0, 100, 100)})

    with pytest.raises(VariableKindError):
        reallocate(source, target, "tract", "nbhd", ["pop"], intensive_fields=["pop"])

    with pytest.raises(VariableKindError):
        reallocate(source, target, "tract", "nbhd", [])
