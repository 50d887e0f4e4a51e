"""
Detection aggregation for both survey types.

Aerial: sightings already tagged with a grid cell are summed per
(cell, species, survey). Study-area totals keep the sightings that fell
outside the grid.

Camera: raw trigger records are collapsed into independent events (same
species at the same site within ``min_interval`` of the previous record is
one event) and counted per (site, species) inside a date window.
"""

from __future__ import annotations

import warnings
from typing import Any, Optional, Tuple

import pandas as pd

from .config import TimeWindow
from .contracts import (
    AERIAL_COLUMNS,
    AERIAL_OPTIONAL_COLUMNS,
    CAMERA_COLUMNS,
    HEX_SUMMARY_COLUMNS,
    normalize_columns,
    require_columns,
)
from .errors import SchemaMismatch
from .species import reconcile_labels


SITE_KEY = "StudySite"
TOTAL_SITE = "total"


def prepare_observations(raw: pd.DataFrame) -> Tuple[pd.DataFrame, list]:
    """Validate the aerial table and attach canonical species.

    Returns the table (``SpeciesLabel`` raw, ``Species`` canonical or missing,
    ``Survey`` as text) and the unmapped labels.
    """
    df = normalize_columns(raw, "aerial", AERIAL_COLUMNS, AERIAL_OPTIONAL_COLUMNS)
    number = pd.to_numeric(df["Number"], errors="coerce")
    if number.isna().any() or (number < 0).any():
        bad = int(number.isna().sum() + (number < 0).sum())
        raise SchemaMismatch("aerial", ["Number"], detail=f"{bad} row(s) with missing or negative counts")

    survey = df["Count"].map(_survey_id)
    missing_survey = survey.isna()
    if missing_survey.any():
        warnings.warn(
            f"{int(missing_survey.sum())} aerial row(s) without a survey id dropped", UserWarning, stacklevel=2
        )
        df = df[~missing_survey]
        number = number[~missing_survey]
        survey = survey[~missing_survey]

    species, unmapped = reconcile_labels(df["Species"], "aerial")
    out = df.rename(columns={"Species": "SpeciesLabel", "Count": "Survey"})
    out["Species"] = species
    out["Number"] = number
    out["Survey"] = survey
    out["Longitude"] = pd.to_numeric(out["Longitude"], errors="coerce")
    out["Latitude"] = pd.to_numeric(out["Latitude"], errors="coerce")
    if "Group" in out.columns:
        out["Group"] = out["Group"].fillna(False).astype(bool)
    return out, unmapped


def _survey_id(value: Any) -> Optional[str]:
    # 2016 and 2016.0 name the same survey.
    if pd.isna(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def prepare_camera_records(raw: pd.DataFrame) -> Tuple[pd.DataFrame, list]:
    """Validate camera records; ``site`` text, ``datetime`` parsed, ``Species`` canonical."""
    df = normalize_columns(raw, "camera", CAMERA_COLUMNS)
    species, unmapped = reconcile_labels(df["species"], "camera")
    out = df.rename(columns={"species": "SpeciesLabel"})
    out["Species"] = species
    out["site"] = out["site"].astype(str).str.strip()
    out["datetime"] = pd.to_datetime(out["datetime"])
    return out, unmapped


def _group_flags(rows: pd.DataFrame) -> pd.Series:
    # Each sighting is one group unless a flag column says otherwise.
    if "Group" in rows.columns:
        return rows["Group"].astype(int)
    return pd.Series(1, index=rows.index)


def aggregate_aerial(joined: pd.DataFrame, site_key: str = SITE_KEY) -> pd.DataFrame:
    """Per (cell, species, survey) individual and group totals.

    Sightings outside the grid and dropped species are excluded.
    """
    rows = joined.dropna(subset=[site_key, "Species"])
    rows = rows.assign(_groups=_group_flags(rows))
    out = (
        rows.groupby([site_key, "Species", "Survey"], as_index=False)
        .agg(TotalIndividuals=("Number", "sum"), TotalGroups=("_groups", "sum"))
        .sort_values([site_key, "Species", "Survey"], kind="mergesort")
        .reset_index(drop=True)
    )
    return out.rename(columns={site_key: SITE_KEY})[list(HEX_SUMMARY_COLUMNS)]


def aerial_totals(joined: pd.DataFrame) -> pd.DataFrame:
    """Study-area totals per (species, survey), including outside-grid sightings."""
    rows = joined.dropna(subset=["Species"])
    rows = rows.assign(_groups=_group_flags(rows))
    out = (
        rows.groupby(["Species", "Survey"], as_index=False)
        .agg(TotalIndividuals=("Number", "sum"), TotalGroups=("_groups", "sum"))
        .sort_values(["Species", "Survey"], kind="mergesort")
        .reset_index(drop=True)
    )
    out.insert(0, SITE_KEY, TOTAL_SITE)
    return out


def outside_grid_totals(joined: pd.DataFrame, site_key: str = SITE_KEY) -> pd.DataFrame:
    """Individuals and groups per species for sightings the join left unassigned."""
    rows = joined[joined[site_key].isna()].dropna(subset=["Species"])
    rows = rows.assign(_groups=_group_flags(rows))
    return (
        rows.groupby("Species", as_index=False)
        .agg(OutsideIndividuals=("Number", "sum"), OutsideGroups=("_groups", "sum"))
        .sort_values("Species", kind="mergesort")
        .reset_index(drop=True)
    )


def select_survey(cells: pd.DataFrame, survey: Optional[str]) -> pd.DataFrame:
    """Restrict to one aerial survey (or sum over all when ``survey`` is None)."""
    rows = cells if survey is None else cells[cells["Survey"] == _survey_id(survey)]
    return (
        rows.groupby([SITE_KEY, "Species"], as_index=False)[["TotalIndividuals", "TotalGroups"]]
        .sum()
        .sort_values([SITE_KEY, "Species"], kind="mergesort")
        .reset_index(drop=True)
    )


def flag_independent(records: pd.DataFrame, min_interval: pd.Timedelta = pd.Timedelta(minutes=10)) -> pd.DataFrame:
    """Add an ``independent`` column.

    A record starts a new event when it is the first of its (site, species) or
    at least ``min_interval`` after the previous record of that pair; shorter
    gaps chain into the running event. Original row order is preserved.
    """
    out = records.copy()
    out["datetime"] = pd.to_datetime(out["datetime"])
    ordered = out.sort_values(["site", "Species", "datetime"], kind="mergesort")
    gap = ordered.groupby(["site", "Species"], dropna=False)["datetime"].diff()
    independent = gap.isna() | (gap >= pd.Timedelta(min_interval))
    out["independent"] = independent.reindex(out.index)
    return out


def _empty_counts() -> pd.DataFrame:
    return pd.DataFrame(
        {
            SITE_KEY: pd.Series(dtype="object"),
            "Species": pd.Series(dtype="object"),
            "Detections": pd.Series(dtype="int64"),
        }
    )


def _events_in_window(events: pd.DataFrame, window: TimeWindow) -> pd.DataFrame:
    require_columns(events, "camera", ["independent"])
    days = events["datetime"].dt.normalize()
    lo, hi = pd.Timestamp(window.start), pd.Timestamp(window.end)
    mask = events["independent"].astype(bool) & events["Species"].notna() & (days >= lo) & (days <= hi)
    return events[mask]


def aggregate_camera(events: pd.DataFrame, window: TimeWindow) -> pd.DataFrame:
    """Independent detection events per (site, species) inside ``window``."""
    rows = _events_in_window(events, window)
    if rows.empty:
        return _empty_counts()
    out = (
        rows.groupby(["site", "Species"], as_index=False)
        .size()
        .rename(columns={"site": SITE_KEY, "size": "Detections"})
    )
    return out.sort_values([SITE_KEY, "Species"], kind="mergesort").reset_index(drop=True)


def camera_totals(events: pd.DataFrame, window: TimeWindow) -> pd.DataFrame:
    """Study-area independent detection events per species inside ``window``."""
    rows = _events_in_window(events, window)
    if rows.empty:
        return _empty_counts()
    out = rows.groupby("Species", as_index=False).size().rename(columns={"size": "Detections"})
    out.insert(0, SITE_KEY, TOTAL_SITE)
    return out.sort_values("Species", kind="mergesort").reset_index(drop=True)
