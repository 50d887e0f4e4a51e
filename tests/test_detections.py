from datetime import date

import numpy as np
import pandas as pd
import pytest

from hexcensus.config import TimeWindow
from hexcensus.detections import (
    aerial_totals,
    aggregate_aerial,
    aggregate_camera,
    camera_totals,
    flag_independent,
    outside_grid_totals,
    prepare_camera_records,
    prepare_observations,
    select_survey,
)
from hexcensus.errors import SchemaMismatch


def _joined() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Species": ["Baboon", "Baboon", "Baboon", "Kudu", None],
            "Number": [3, 4, 10, 2, 5],
            "Survey": ["2016", "2016", "2016", "2014", "2016"],
            "StudySite": ["A1", "A1", None, "B2", "A1"],
        }
    )


def test_aggregate_aerial_per_cell() -> None:
    out = aggregate_aerial(_joined())
    assert list(out.columns) == ["StudySite", "Species", "Survey", "TotalIndividuals", "TotalGroups"]
    rows = {(r.StudySite, r.Species): r for r in out.itertuples()}
    assert rows[("A1", "Baboon")].TotalIndividuals == 7
    assert rows[("A1", "Baboon")].TotalGroups == 2
    assert rows[("B2", "Kudu")].Survey == "2014"
    assert len(out) == 2


def test_totals_include_outside_grid() -> None:
    totals = aerial_totals(_joined())
    baboon = totals[totals["Species"] == "Baboon"].iloc[0]
    assert baboon["StudySite"] == "total"
    assert baboon["TotalIndividuals"] == 17

    outside = outside_grid_totals(_joined())
    assert outside.to_dict("records") == [{"Species": "Baboon", "OutsideIndividuals": 10, "OutsideGroups": 1}]


def test_group_flag_column_counts_groups() -> None:
    joined = _joined().assign(Group=[True, False, True, True, True])
    out = aggregate_aerial(joined)
    baboon = out[(out["StudySite"] == "A1") & (out["Species"] == "Baboon")].iloc[0]
    assert baboon["TotalIndividuals"] == 7
    assert baboon["TotalGroups"] == 1


def test_group_flags_are_conserved_outside_the_grid() -> None:
    joined = _joined().assign(Group=[True, False, True, False, True])
    cells = aggregate_aerial(joined)
    outside = outside_grid_totals(joined).set_index("Species")
    totals = aerial_totals(joined).set_index("Species")

    for species in ("Baboon", "Kudu"):
        in_cells = int(cells.loc[cells["Species"] == species, "TotalGroups"].sum())
        out = int(outside["OutsideGroups"].get(species, 0))
        assert in_cells + out == totals.loc[species, "TotalGroups"]
    assert outside.loc["Baboon", "OutsideGroups"] == 1
    assert totals.loc["Baboon", "TotalGroups"] == 2


def test_select_survey_filters_and_sums() -> None:
    cells = aggregate_aerial(_joined())
    assert select_survey(cells, "2016")["Species"].tolist() == ["Baboon"]
    assert len(select_survey(cells, None)) == 2
    assert select_survey(cells, "1999").empty


def test_prepare_observations_renames_and_reconciles() -> None:
    raw = pd.DataFrame(
        {
            "species": ["Baboon troop", "Sable", "Human"],
            "NUMBER": [3, 1, 2],
            "Count": [2016, 2016, 2016],
            "Longitude": [34.05, 34.05, 34.05],
            "Latitude": [-18.95, -18.95, -18.95],
        }
    )
    obs, unmapped = prepare_observations(raw)
    assert unmapped == []
    assert obs["Species"].tolist() == ["Baboon", "Sable_antelope", None]
    assert obs["SpeciesLabel"].tolist() == ["Baboon troop", "Sable", "Human"]
    assert obs["Survey"].tolist() == ["2016", "2016", "2016"]


def test_prepare_observations_requires_columns() -> None:
    raw = pd.DataFrame({"Species": ["Kudu"], "Number": [1], "Longitude": [34.0], "Latitude": [-19.0]})
    with pytest.raises(SchemaMismatch, match="aerial table.*Count"):
        prepare_observations(raw)


def test_prepare_observations_rejects_negative_counts() -> None:
    raw = pd.DataFrame(
        {"Species": ["Kudu"], "Number": [-1], "Count": ["2016"], "Longitude": [34.0], "Latitude": [-19.0]}
    )
    with pytest.raises(SchemaMismatch, match="Number"):
        prepare_observations(raw)


def _records() -> pd.DataFrame:
    base = pd.Timestamp("2016-10-14 06:00")
    minutes = [0, 5, 9, 25, 35, 0]
    species = ["Kudu", "Kudu", "Kudu", "Kudu", "Kudu", "Impala"]
    return pd.DataFrame(
        {
            "site": ["A1"] * 6,
            "Species": species,
            "datetime": [base + pd.Timedelta(minutes=m) for m in minutes],
        }
    )


def test_flag_independent_chains_short_gaps() -> None:
    out = flag_independent(_records(), pd.Timedelta(minutes=10))
    # 0 new; 5 and 9 chain; 25 is 16 min after 9; 35 is exactly 10 min after 25.
    assert out["independent"].tolist() == [True, False, False, True, True, True]


def test_flag_independent_is_per_site_and_order_free() -> None:
    recs = _records().assign(site=["A1", "B2", "A1", "A1", "A1", "A1"])
    shuffled = recs.iloc[::-1]
    out = flag_independent(shuffled, pd.Timedelta(minutes=10))
    assert list(out.index) == list(shuffled.index)
    assert out.loc[1, "independent"]
    assert not out.loc[2, "independent"]


def test_aggregate_camera_window_is_closed() -> None:
    events = flag_independent(
        pd.DataFrame(
            {
                "site": ["A1", "A1", "A1", "B2"],
                "Species": ["Kudu", "Kudu", np.nan, "Kudu"],
                "datetime": pd.to_datetime(
                    ["2016-10-01 23:59", "2016-10-10 00:01", "2016-10-05 12:00", "2016-10-11 00:00"]
                ),
            }
        )
    )
    window = TimeWindow("w", date(2016, 10, 1), date(2016, 10, 10))
    out = aggregate_camera(events, window)
    assert out.to_dict("records") == [{"StudySite": "A1", "Species": "Kudu", "Detections": 2}]

    totals = camera_totals(events, window)
    assert totals["Detections"].tolist() == [2]
    assert totals["StudySite"].tolist() == ["total"]


def test_aggregate_camera_requires_independence_flag() -> None:
    window = TimeWindow("w", date(2016, 10, 1), date(2016, 10, 10))
    with pytest.raises(SchemaMismatch, match="independent"):
        aggregate_camera(_records(), window)


def test_aggregate_camera_empty_window() -> None:
    events = flag_independent(_records())
    out = aggregate_camera(events, TimeWindow("w", date(2017, 1, 1), date(2017, 1, 2)))
    assert out.empty
    assert list(out.columns) == ["StudySite", "Species", "Detections"]


def test_prepare_camera_records() -> None:
    raw = pd.DataFrame(
        {"Site": [" A1"], "Species": ["Blue wildebeest"], "DateTime": ["2016-10-14 06:00:00"]}
    )
    recs, unmapped = prepare_camera_records(raw)
    assert unmapped == []
    assert recs["site"].tolist() == ["A1"]
    assert recs["Species"].tolist() == ["Wildebeest"]
    assert recs["datetime"].iloc[0] == pd.Timestamp("2016-10-14 06:00")


def test_prepare_observations_drops_rows_without_survey() -> None:
    raw = pd.DataFrame(
        {
            "Species": ["Baboon troop", "Baboon troop", "Kudu"],
            "Number": [3, 4, 2],
            "Count": [2016.0, 2016.0, np.nan],
            "Longitude": [34.05, 34.06, 34.05],
            "Latitude": [-18.95, -18.94, -18.95],
        }
    )
    with pytest.warns(UserWarning, match="1 aerial row"):
        obs, _ = prepare_observations(raw)

    assert obs["Survey"].tolist() == ["2016", "2016"]
    assert obs["Species"].tolist() == ["Baboon", "Baboon"]
    joined = obs.assign(StudySite="A1")
    cells = select_survey(aggregate_aerial(joined), "2016")
    assert cells["TotalIndividuals"].tolist() == [7]
