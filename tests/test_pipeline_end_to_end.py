import dataclasses
import json
import math
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from census_data import aerial_table, calendar_table, camera_table, hex_grid_geojson, traits_table
from hexcensus.camera_calendar import OperationCalendar
from hexcensus.config import StudyConfig
from hexcensus.errors import CoordinateSystemMismatch, SchemaMismatch, UnmappedSpeciesWarning
from hexcensus.grid import grid_from_geojson
from hexcensus.pipeline import CensusInputs, PipelineParams, compute, run


def _inputs(**overrides) -> CensusInputs:
    base = dict(
        aerial=aerial_table(),
        grid=grid_from_geojson(hex_grid_geojson()),
        camera=camera_table(),
        calendar=OperationCalendar.from_long(calendar_table()),
        traits=traits_table(),
    )
    base.update(overrides)
    return CensusInputs(**base)


def test_scenario_single_cell() -> None:
    result = compute(_inputs(), StudyConfig())

    hexes = result.hex_summary.set_index(["StudySite", "Species"])
    assert hexes.loc[("A1", "Baboon"), "TotalIndividuals"] == 7
    assert hexes.loc[("A1", "Baboon"), "TotalGroups"] == 2
    assert hexes.loc[("A1", "Sable_antelope"), "TotalIndividuals"] == 1
    assert "Crocodile" not in set(result.hex_summary["Species"])

    rai = result.camera_rai.set_index(["window", "StudySite", "Species"])
    for species in ("Baboon", "Sable_antelope"):
        row = rai.loc[("pm2wk", "A1", species)]
        assert row["OperationalNights"] == 14
        assert row["Detections"] == 0
        assert row["RAI"] == 0.0

    comp = result.comparison.set_index(["window", "StudySite", "Species"])
    for species in ("Baboon", "Sable_antelope"):
        row = comp.loc[("pm2wk", "A1", species)]
        assert math.isnan(row["ratio"])
        assert row["ratio_status"] == "no_camera_signal"
        assert row["concordance"] == "aerialOnly"
        assert row["tree_cover"] == pytest.approx(0.65)

    # Two Kudu triggers four minutes apart are one event.
    kudu = comp.loc[("pm2wk", "A1", "Kudu")]
    assert kudu["Detections"] == 1
    assert kudu["concordance"] == "cameraOnly"
    assert kudu["RAI"] == pytest.approx(1 / 14)


def test_outside_grid_counts_in_totals_only() -> None:
    result = compute(_inputs(), StudyConfig())
    totals = result.aerial_totals.set_index("Species")
    assert totals.loc["Baboon", "TotalIndividuals"] == 12
    assert result.outside_grid.set_index("Species").loc["Baboon", "OutsideIndividuals"] == 5
    assert any("outside the grid" in issue for issue in result.issues)

    t = result.comparison_totals.set_index(["window", "Species"])
    assert (result.comparison_totals["StudySite"] == "total").all()
    assert t.loc[("pm2wk", "Baboon"), "TotalIndividuals"] == 12
    assert t.loc[("pm2wk", "Baboon"), "OperationalNights"] == 14


def test_cell_counts_plus_outside_equal_raw_totals() -> None:
    rng = np.random.default_rng(7)
    n = 400
    labels = np.array(["Baboon troop", "Impala", "Sable", "Blue wildebeest", "Warthog"])
    aerial = pd.DataFrame(
        {
            "Species": labels[rng.integers(0, len(labels), n)],
            "Number": rng.integers(1, 30, n),
            "Count": ["2016"] * n,
            "Longitude": rng.uniform(33.95, 34.25, n),
            "Latitude": rng.uniform(-19.05, -18.85, n),
        }
    )
    # Put a few sightings exactly on the shared edge.
    aerial.loc[:4, "Longitude"] = 34.1
    aerial.loc[:4, "Latitude"] = -18.95

    result = compute(_inputs(aerial=aerial), StudyConfig())
    per_cell = result.hex_summary.groupby("Species")["TotalIndividuals"].sum()
    outside = result.outside_grid.set_index("Species")["OutsideIndividuals"]
    raw = result.aerial_totals.set_index("Species")["TotalIndividuals"]
    for species, total in raw.items():
        assert per_cell.get(species, 0) + outside.get(species, 0) == total
    assert raw.sum() == aerial["Number"].sum()


def test_zero_effort_rai_never_zero() -> None:
    calendar = calendar_table().assign(operational=0)
    result = compute(_inputs(calendar=OperationCalendar.from_long(calendar)), StudyConfig())
    zero = result.camera_rai[result.camera_rai["OperationalNights"] == 0]
    assert not zero.empty
    assert zero["RAI"].isna().all()
    no_effort = result.comparison[result.comparison["TotalIndividuals"] > 0]
    assert (no_effort["ratio_status"] == "no_effort").all()


def test_ratio_undefined_whenever_aerial_absent() -> None:
    result = compute(_inputs(), StudyConfig())
    absent = result.comparison[result.comparison["TotalIndividuals"] == 0]
    assert not absent.empty
    assert absent["ratio"].isna().all()
    assert (absent["ratio_status"] == "aerial_absent").all()


def test_mismatched_grid_crs_is_rejected() -> None:
    geo = grid_from_geojson(hex_grid_geojson())
    utm = geo.to_crs("EPSG:32736")
    config = dataclasses.replace(StudyConfig(), reproject_grid=False)
    with pytest.raises(CoordinateSystemMismatch, match="CRS mismatch"):
        compute(_inputs(grid=utm), config)


def test_projected_grid_is_reprojected_when_enabled() -> None:
    geo = grid_from_geojson(hex_grid_geojson())
    utm = geo.to_crs("EPSG:32736")
    expected = compute(_inputs(), StudyConfig()).hex_summary
    got = compute(_inputs(grid=utm), StudyConfig()).hex_summary
    pd.testing.assert_frame_equal(expected, got)


def test_unmapped_species_reported() -> None:
    aerial = pd.concat(
        [aerial_table(), pd.DataFrame([{"Species": "Mystery beast", "Number": 2, "Count": 2016, "Longitude": 34.05, "Latitude": -18.95}])],
        ignore_index=True,
    )
    with pytest.warns(UnmappedSpeciesWarning):
        result = compute(_inputs(aerial=aerial), StudyConfig())
    assert result.unmapped["aerial"] == ["Mystery beast"]
    assert any("unmapped aerial species" in issue for issue in result.issues)
    assert result.hex_summary.set_index(["StudySite", "Species"]).loc[("A1", "Baboon"), "TotalIndividuals"] == 7


def test_missing_column_aborts() -> None:
    with pytest.raises(SchemaMismatch, match="camera table"):
        compute(_inputs(camera=camera_table().drop(columns=["datetime"])), StudyConfig())


def test_run_writes_outputs(census_files) -> None:
    out_dir = census_files["aerial"].parent / "out"
    params = PipelineParams(
        aerial_csv=census_files["aerial"],
        grid_geojson=census_files["grid"],
        camera_csv=census_files["camera"],
        calendar_csv=census_files["calendar"],
        traits_csv=census_files["traits"],
        out_dir=out_dir,
        max_workers=2,
    )
    assert run(params) == out_dir

    for name in ("hex_summary.csv", "camera_rai.csv", "comparison.csv", "concordance_summary.csv", "ratio_weight_correlation.csv"):
        assert (out_dir / name).exists(), name

    hexes = pd.read_csv(out_dir / "hex_summary.csv")
    assert list(hexes.columns) == ["StudySite", "Species", "Survey", "TotalIndividuals", "TotalGroups"]

    summary = json.loads((out_dir / "run_summary.json").read_text())
    assert summary["purpose"] == "aerial_camera_comparison"
    assert summary["counts"]["grid_cells"] == 2
    assert [w["window_id"] for w in summary["policy"]["windows"]] == ["exact", "pm2wk", "pm4wk"]
    assert summary["merged_labels"]["aerial"]["Baboon"] == ["Baboon troop"]

    prov = json.loads((out_dir / "provenance.json").read_text())
    assert prov["inputs"]["aerial"]["sha256"]
    assert prov["config"]["independence_minutes"] == 10.0


def test_run_missing_input(tmp_path: Path, census_files) -> None:
    params = PipelineParams(
        aerial_csv=tmp_path / "nope.csv",
        grid_geojson=census_files["grid"],
        camera_csv=census_files["camera"],
        calendar_csv=census_files["calendar"],
        out_dir=tmp_path / "out",
    )
    with pytest.raises(FileNotFoundError, match="aerial_csv"):
        run(params)


def test_float_survey_ids_still_select_the_survey() -> None:
    aerial = aerial_table().astype({"Count": float})
    aerial = pd.concat(
        [aerial, pd.DataFrame([{"Species": "Impala", "Number": 9, "Count": np.nan, "Longitude": 34.05, "Latitude": -18.95}])],
        ignore_index=True,
    )
    with pytest.warns(UserWarning, match="without a survey id"):
        result = compute(_inputs(aerial=aerial), StudyConfig())

    assert set(result.hex_summary["Survey"]) == {"2016"}
    row = result.comparison.set_index(["window", "StudySite", "Species"]).loc[("pm2wk", "A1", "Baboon")]
    assert row["TotalIndividuals"] == 7
    assert row["concordance"] == "aerialOnly"
    assert "Impala" not in set(result.hex_summary["Species"])
