"""
Aerial/camera comparison table.

Outer-joins the per-cell aerial aggregate with the per-site RAI table on
(StudySite, Species, window) and derives, once per row and without mutating
anything in place, the ratio and a concordance label:

- ``both``: seen by both methods
- ``aerialOnly`` / ``cameraOnly``: seen by one method
- ``neither``: seen by neither
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import spearmanr

from .config import TimeWindow
from .contracts import COMPARISON_COLUMNS, TRAIT_COLUMNS, normalize_columns
from .detections import SITE_KEY
from .grid import Grid
from .rai import RatioResult, derive_ratio, rai_value


BOTH = "both"
NEITHER = "neither"
AERIAL_ONLY = "aerialOnly"
CAMERA_ONLY = "cameraOnly"
CONCORDANCE_LABELS = (BOTH, AERIAL_ONLY, CAMERA_ONLY, NEITHER)

KEY = [SITE_KEY, "Species", "window"]


class RowDerivation(NamedTuple):
    ratio: RatioResult
    concordance: str


def concordance(aerial_count: float, camera_count: float) -> str:
    aerial = bool(aerial_count > 0)
    camera = bool(camera_count > 0)
    if aerial and camera:
        return BOTH
    if aerial:
        return AERIAL_ONLY
    if camera:
        return CAMERA_ONLY
    return NEITHER


def derive_row(aerial_individuals: float, detections: float, rai: Optional[float]) -> RowDerivation:
    return RowDerivation(
        ratio=derive_ratio(aerial_individuals, rai),
        concordance=concordance(aerial_individuals, detections),
    )


def assemble(
    aerial_cells: pd.DataFrame,
    camera_rai: pd.DataFrame,
    windows: Sequence[TimeWindow],
    per_nights: float = 1.0,
) -> pd.DataFrame:
    """Primary output table: one row per (StudySite, Species, window).

    ``aerial_cells`` is one survey's per-cell totals; it is replicated across
    every window. Missing aerial rows become 0 individuals/groups; missing
    camera rows become 0 detections with the site's nights for that window
    (RAI stays undefined when those nights are 0).
    """
    window_ids = [w.window_id for w in windows]
    aerial = aerial_cells[[SITE_KEY, "Species", "TotalIndividuals", "TotalGroups"]].merge(
        pd.DataFrame({"window": window_ids}), how="cross"
    )
    camera = camera_rai[camera_rai["window"].isin(window_ids)]
    merged = aerial.merge(camera, on=KEY, how="outer")

    nights = camera.drop_duplicates([SITE_KEY, "window"]).set_index([SITE_KEY, "window"])["OperationalNights"]
    missing_camera = merged["OperationalNights"].isna()
    if missing_camera.any():
        looked_up = pd.Series(
            [
                nights.get((s, w), 0)
                for s, w in zip(merged.loc[missing_camera, SITE_KEY], merged.loc[missing_camera, "window"])
            ],
            index=merged.index[missing_camera],
            dtype="float64",
        )
        merged["OperationalNights"] = merged["OperationalNights"].astype("float64").fillna(looked_up)
        merged["Detections"] = merged["Detections"].astype("float64").fillna(0.0)
        merged["RAI"] = merged["RAI"].astype("float64").fillna(
            looked_up.map(lambda n: rai_value(0, n, per_nights))
        )

    for col in ("TotalIndividuals", "TotalGroups", "Detections", "OperationalNights"):
        merged[col] = merged[col].fillna(0).astype(int)
    merged["RAI"] = merged["RAI"].astype(float)

    return _with_derivations(merged, window_ids)


def assemble_totals(
    aerial_totals: pd.DataFrame,
    camera_totals_rai: pd.DataFrame,
    windows: Sequence[TimeWindow],
    per_nights: float = 1.0,
) -> pd.DataFrame:
    """Study-area comparison (``StudySite == "total"``) with the same columns."""
    return assemble(aerial_totals, camera_totals_rai, windows, per_nights)


def _with_derivations(merged: pd.DataFrame, window_ids: List[str]) -> pd.DataFrame:
    derived = [
        derive_row(a, d, r)
        for a, d, r in zip(merged["TotalIndividuals"], merged["Detections"], merged["RAI"])
    ]
    out = merged.assign(
        ratio=[d.ratio.value if d.ratio.defined else np.nan for d in derived],
        ratio_status=[d.ratio.status for d in derived],
        concordance=[d.concordance for d in derived],
    )
    order = {w: i for i, w in enumerate(window_ids)}
    out = out.assign(_w=out["window"].map(order))
    out = out.sort_values(["_w", SITE_KEY, "Species"], kind="mergesort").drop(columns="_w")
    return out[list(COMPARISON_COLUMNS)].reset_index(drop=True)


def attach_habitat(table: pd.DataFrame, grid: Grid) -> pd.DataFrame:
    """Left-join grid covariates (e.g. tree cover) onto a comparison table."""
    habitat = grid.habitat_table()
    if habitat.shape[1] <= 1:
        return table
    return table.merge(habitat, on=SITE_KEY, how="left")


def concordance_summary(table: pd.DataFrame) -> pd.DataFrame:
    """Counts of each concordance label per (window, species)."""
    if table.empty:
        return pd.DataFrame(columns=["window", "Species", *CONCORDANCE_LABELS])
    counts = (
        table.groupby(["window", "Species", "concordance"]).size().unstack("concordance", fill_value=0)
    )
    counts = counts.reindex(columns=list(CONCORDANCE_LABELS), fill_value=0)
    counts.columns.name = None
    return counts.reset_index()


def ratio_weight_correlation(table: pd.DataFrame, traits: pd.DataFrame) -> pd.DataFrame:
    """Spearman correlation of defined ratios with species body mass, per window."""
    t = normalize_columns(traits, "traits", TRAIT_COLUMNS)[["Species", "body_mass_kg"]]
    rows = table[table["ratio_status"] == "defined"].merge(t, on="Species", how="inner")
    rows = rows[np.isfinite(pd.to_numeric(rows["body_mass_kg"], errors="coerce"))]

    out = []
    for window, grp in rows.groupby("window", sort=False):
        n = int(len(grp))
        rho = p = float("nan")
        if n >= 3 and grp["ratio"].nunique() > 1 and grp["body_mass_kg"].nunique() > 1:
            res = spearmanr(grp["ratio"], grp["body_mass_kg"].astype(float))
            rho, p = float(res[0]), float(res[1])
        out.append({"window": window, "n": n, "spearman_rho": rho, "p_value": p})
    return pd.DataFrame(out, columns=["window", "n", "spearman_rho", "p_value"])
