"""
Aerial vs camera-trap comparison stage.

``compute()`` is the pure batch transform over in-memory tables; ``run()``
wraps it with loading and writing so orchestration code can depend on a typed
entry point. Structural problems (missing columns, CRS disagreement) raise;
data-quality problems are collected in ``PipelineResult.issues`` and the
output omits or flags the affected rows.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .camera_calendar import OperationCalendar
from .compare import (
    assemble,
    assemble_totals,
    attach_habitat,
    concordance_summary,
    ratio_weight_correlation,
)
from .config import StudyConfig, as_policy_dict
from .contracts import CAMERA_RAI_CONTRACT, COMPARISON_CONTRACT
from .detections import (
    aerial_totals,
    aggregate_aerial,
    flag_independent,
    outside_grid_totals,
    prepare_camera_records,
    prepare_observations,
    select_survey,
)
from .grid import Grid, join_observations, load_grid
from .rai import NO_EFFORT, compute_rai_windows, rai_totals
from .species import resolve_vocabulary
from .utils.provenance import list_outputs, write_provenance


@dataclass
class PipelineParams:
    """Inputs and outputs required to produce the comparison tables."""

    aerial_csv: Path
    grid_geojson: Path
    camera_csv: Path
    calendar_csv: Path
    out_dir: Path
    traits_csv: Optional[Path] = None
    calendar_layout: str = "long"
    grid_crs: Optional[str] = None
    config: StudyConfig = field(default_factory=StudyConfig)
    max_workers: Optional[int] = None


@dataclass
class CensusInputs:
    aerial: pd.DataFrame
    grid: Grid
    camera: pd.DataFrame
    calendar: OperationCalendar
    traits: Optional[pd.DataFrame] = None


@dataclass
class PipelineResult:
    hex_summary: pd.DataFrame
    aerial_totals: pd.DataFrame
    outside_grid: pd.DataFrame
    camera_rai: pd.DataFrame
    comparison: pd.DataFrame
    comparison_totals: pd.DataFrame
    concordance_summary: pd.DataFrame
    correlation: Optional[pd.DataFrame] = None
    unmapped: Dict[str, List[str]] = field(default_factory=dict)
    merged_labels: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    issues: List[str] = field(default_factory=list)
    grid_cells: int = 0


def compute(inputs: CensusInputs, config: StudyConfig, max_workers: Optional[int] = None) -> PipelineResult:
    """Run the join → aggregate → normalise → compare sequence in memory."""
    issues: List[str] = []
    site_key = config.site_key

    # Aerial: spatial join first, species already reconciled on the rows.
    observations, aerial_unmapped = prepare_observations(inputs.aerial)
    grid = inputs.grid
    if config.reproject_grid and grid.crs is not None:
        grid = grid.to_crs(config.aerial_crs)
    joined = join_observations(grid, observations, points_crs=config.aerial_crs, site_key=site_key)

    hex_summary = aggregate_aerial(joined, site_key=site_key)
    totals = aerial_totals(joined)
    outside = outside_grid_totals(joined, site_key=site_key)
    n_outside = int(joined[site_key].isna().sum())
    if n_outside:
        issues.append(f"{n_outside} aerial sighting(s) outside the grid; counted in totals only")

    # Camera: independent events per site, RAI per window.
    records, camera_unmapped = prepare_camera_records(inputs.camera)
    events = flag_independent(records, config.independence_interval)

    windows = config.windows()
    species = sorted(set(joined["Species"].dropna()) | set(events["Species"].dropna()))
    camera_rai = compute_rai_windows(
        events,
        inputs.calendar,
        windows,
        species,
        per_nights=config.rai_per_nights,
        max_workers=max_workers,
    )
    camera_total_rai = rai_totals(events, inputs.calendar, windows, species, per_nights=config.rai_per_nights)

    no_effort_sites = sorted(set(events["site"]) - set(inputs.calendar.sites))
    if no_effort_sites:
        issues.append(f"camera site(s) with detections but no calendar: {no_effort_sites}")

    aerial_cells = select_survey(hex_summary, config.aerial_survey)
    if config.aerial_survey is not None and aerial_cells.empty and not hex_summary.empty:
        issues.append(f"aerial survey {config.aerial_survey!r} has no in-grid sightings")

    comparison = assemble(aerial_cells, camera_rai, windows, per_nights=config.rai_per_nights)
    comparison = attach_habitat(comparison, grid)
    comparison_totals = assemble_totals(
        select_survey(totals, config.aerial_survey),
        camera_total_rai,
        windows,
        per_nights=config.rai_per_nights,
    )

    n_no_effort = int((comparison["ratio_status"] == NO_EFFORT).sum())
    if n_no_effort:
        issues.append(f"{n_no_effort} comparison row(s) with aerial presence but no camera effort")

    for side, labels in (("aerial", aerial_unmapped), ("camera", camera_unmapped)):
        if labels:
            issues.append(f"unmapped {side} species: {labels}")

    correlation = None
    if inputs.traits is not None:
        correlation = ratio_weight_correlation(comparison, inputs.traits)

    return PipelineResult(
        hex_summary=hex_summary,
        aerial_totals=totals,
        outside_grid=outside,
        camera_rai=camera_rai,
        comparison=comparison,
        comparison_totals=comparison_totals,
        concordance_summary=concordance_summary(comparison),
        correlation=correlation,
        unmapped={"aerial": aerial_unmapped, "camera": camera_unmapped},
        merged_labels={
            "aerial": resolve_vocabulary(observations["SpeciesLabel"].dropna(), "aerial"),
            "camera": resolve_vocabulary(records["SpeciesLabel"].dropna(), "camera"),
        },
        issues=issues,
        grid_cells=len(grid.cells),
    )


def load_inputs(params: PipelineParams) -> CensusInputs:
    for name in ("aerial_csv", "grid_geojson", "camera_csv", "calendar_csv"):
        path = Path(getattr(params, name))
        if not path.exists():
            raise FileNotFoundError(f"Missing input {name}: {path}")

    calendar_df = pd.read_csv(params.calendar_csv)
    if params.calendar_layout == "long":
        calendar = OperationCalendar.from_long(calendar_df)
    elif params.calendar_layout == "wide":
        calendar = OperationCalendar.from_wide(calendar_df)
    else:
        raise ValueError(f"Unsupported calendar layout: {params.calendar_layout!r}")

    return CensusInputs(
        aerial=pd.read_csv(params.aerial_csv),
        grid=load_grid(params.grid_geojson, site_key=params.config.site_key, crs=params.grid_crs),
        camera=pd.read_csv(params.camera_csv),
        calendar=calendar,
        traits=pd.read_csv(params.traits_csv) if params.traits_csv else None,
    )


def run(params: PipelineParams) -> Path:
    """Load inputs, compute the comparison and write CSV/JSON outputs."""
    result = compute(load_inputs(params), params.config, max_workers=params.max_workers)

    out_dir = Path(params.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    tables = {
        "hex_summary.csv": result.hex_summary,
        "aerial_totals.csv": result.aerial_totals,
        "camera_rai.csv": result.camera_rai,
        "comparison.csv": result.comparison,
        "comparison_totals.csv": result.comparison_totals,
        "concordance_summary.csv": result.concordance_summary,
    }
    if result.correlation is not None:
        tables["ratio_weight_correlation.csv"] = result.correlation
    for name, df in tables.items():
        df.to_csv(out_dir / name, index=False)

    summary: Dict[str, Any] = {
        "schema_version": "1",
        "purpose": "aerial_camera_comparison",
        "contracts": {"comparison": COMPARISON_CONTRACT, "camera_rai": CAMERA_RAI_CONTRACT},
        "policy": as_policy_dict(params.config),
        "counts": {
            "grid_cells": result.grid_cells,
            "hex_summary_rows": int(len(result.hex_summary)),
            "camera_rai_rows": int(len(result.camera_rai)),
            "comparison_rows": int(len(result.comparison)),
            "undefined_rai_rows": int(result.camera_rai["RAI"].isna().sum()),
        },
        "unmapped_species": result.unmapped,
        "merged_labels": result.merged_labels,
        "issues": result.issues,
        "outputs": list_outputs(out_dir, tables),
    }
    (out_dir / "run_summary.json").write_text(json.dumps(summary, indent=2))

    write_provenance(
        out_dir,
        inputs={
            "aerial": params.aerial_csv,
            "grid": params.grid_geojson,
            "camera": params.camera_csv,
            "calendar": params.calendar_csv,
            "traits": params.traits_csv,
        },
        extra={"config": params.config.as_dict(), "max_workers": params.max_workers},
    )
    return out_dir
