"""
Column contracts for pipeline inputs and outputs.

Input tables are matched case-insensitively against the names below and
renamed to the canonical spelling before any stage touches them. Output
contracts are embedded in ``run_summary.json`` so the CSVs stay interpretable.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import pandas as pd

from .errors import SchemaMismatch


AERIAL_COLUMNS: Tuple[str, ...] = ("Species", "Number", "Count", "Longitude", "Latitude")
AERIAL_OPTIONAL_COLUMNS: Tuple[str, ...] = ("Group",)
CAMERA_COLUMNS: Tuple[str, ...] = ("site", "species", "datetime")
CALENDAR_COLUMNS: Tuple[str, ...] = ("site", "date", "operational")
TRAIT_COLUMNS: Tuple[str, ...] = ("Species", "body_mass_kg")

REQUIRED_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "aerial": AERIAL_COLUMNS,
    "camera": CAMERA_COLUMNS,
    "calendar": CALENDAR_COLUMNS,
    "traits": TRAIT_COLUMNS,
}

HEX_SUMMARY_COLUMNS: Tuple[str, ...] = (
    "StudySite",
    "Species",
    "Survey",
    "TotalIndividuals",
    "TotalGroups",
)
CAMERA_RAI_COLUMNS: Tuple[str, ...] = (
    "StudySite",
    "Species",
    "window",
    "OperationalNights",
    "Detections",
    "RAI",
)
COMPARISON_COLUMNS: Tuple[str, ...] = (
    "StudySite",
    "Species",
    "window",
    "TotalIndividuals",
    "TotalGroups",
    "OperationalNights",
    "Detections",
    "RAI",
    "ratio",
    "ratio_status",
    "concordance",
)

COMPARISON_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": "aerial_camera_comparison",
    "semantic_unit": "cell_species_window",
    "key": ["StudySite", "Species", "window"],
    "notes": (
        "RAI and ratio are left empty when undefined; ratio_status says why "
        "(aerial_absent, no_effort, no_camera_signal). Undefined values are "
        "never zero."
    ),
}

CAMERA_RAI_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": "camera_rai",
    "semantic_unit": "site_species_window",
    "represents": "independent_detections_per_operational_night",
}


def normalize_columns(
    df: pd.DataFrame,
    table: str,
    required: Optional[Iterable[str]] = None,
    optional: Iterable[str] = (),
) -> pd.DataFrame:
    """Return a copy of ``df`` with contract columns renamed to canonical case.

    Raises ``SchemaMismatch`` naming the table and every absent column.
    """
    wanted = tuple(required) if required is not None else REQUIRED_COLUMNS[table]
    lower = {str(c).strip().lower(): c for c in df.columns}
    renames: Dict[str, str] = {}
    missing = []
    for name in (*wanted, *optional):
        col = lower.get(name.lower())
        if col is None:
            if name in wanted:
                missing.append(name)
            continue
        if col != name:
            renames[col] = name
    if missing:
        raise SchemaMismatch(table, missing, detail=f"have: {list(df.columns)}")
    return df.rename(columns=renames)


def require_columns(df: pd.DataFrame, table: str, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaMismatch(table, missing, detail=f"have: {list(df.columns)}")
