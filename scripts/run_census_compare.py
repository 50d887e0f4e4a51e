#!/usr/bin/env python3
"""
Run the aerial vs camera-trap comparison.

This is a thin CLI wrapper over `hexcensus.pipeline.run()`.

The grid is reprojected to the aerial CRS (EPSG:4326 by default) before the
join; pass --no-reproject to require both inputs to already agree. Unmapped
species labels are echoed as warnings and listed in run_summary.json.

Example:
    python scripts/run_census_compare.py --aerial data/aerial-count/stalmans-plosone-data.csv \
        --grid data/camera-trap/CameraGridHexes.geojson --camera data/camera-trap/detections.csv \
        --calendar data/camera-trap/operation.csv --out-dir data/processed
"""

from __future__ import annotations

import dataclasses
import sys
import warnings
from pathlib import Path
from typing import Optional

import click

# Ensure the repository root is importable when running as a script.
_HERE = Path(__file__).resolve()
_ROOT = _HERE.parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from hexcensus.config import StudyConfig  # noqa: E402
from hexcensus.pipeline import PipelineParams, run  # noqa: E402


@click.command()
@click.option("--aerial", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
              help="Aerial observation CSV (Species, Number, Count, Longitude, Latitude).")
@click.option("--grid", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
              help="Hex grid GeoJSON with a StudySite property per cell.")
@click.option("--camera", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
              help="Camera detection CSV (site, species, datetime).")
@click.option("--calendar", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
              help="Camera operation calendar CSV.")
@click.option("--calendar-layout", type=click.Choice(["long", "wide"], case_sensitive=False), default="long",
              help="long: site,date,operational rows; wide: one row per site, one column per date.")
@click.option("--traits", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="Optional species trait CSV (Species, body_mass_kg) for the ratio/weight correlation.")
@click.option("--out-dir", type=click.Path(file_okay=False, path_type=Path), required=True,
              help="Directory for CSV/JSON outputs.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="JSON file overriding study constants (survey dates, windows, ...).")
@click.option("--grid-crs", default=None, help="CRS of the grid when the GeoJSON does not declare one.")
@click.option("--independence-minutes", type=float, default=None,
              help="Minimum gap between independent camera events (default: 10).")
@click.option("--no-reproject", is_flag=True, default=False, help="Do not reproject the grid before the join.")
@click.option("--workers", type=int, default=None, help="Thread pool size for per-window RAI computation.")
def main(
    aerial: Path,
    grid: Path,
    camera: Path,
    calendar: Path,
    calendar_layout: str,
    traits: Optional[Path],
    out_dir: Path,
    config_path: Optional[Path],
    grid_crs: Optional[str],
    independence_minutes: Optional[float],
    no_reproject: bool,
    workers: Optional[int],
) -> None:
    """Compare aerial counts with camera-trap RAI over the hex grid."""
    try:
        config = StudyConfig.from_json(config_path) if config_path else StudyConfig()
        overrides = {}
        if independence_minutes is not None:
            overrides["independence_minutes"] = independence_minutes
        if no_reproject:
            overrides["reproject_grid"] = False
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ValueError as e:
        click.echo(f"Error: invalid study config: {e}", err=True)
        raise SystemExit(1)

    params = PipelineParams(
        aerial_csv=aerial,
        grid_geojson=grid,
        camera_csv=camera,
        calendar_csv=calendar,
        out_dir=out_dir,
        traits_csv=traits,
        calendar_layout=calendar_layout.lower(),
        grid_crs=grid_crs,
        config=config,
        max_workers=workers,
    )

    windows = ", ".join(f"{w.window_id} [{w.start}..{w.end}]" for w in config.windows())
    click.echo(f"Windows: {windows}")
    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            out = run(params)
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    for w in caught:
        click.echo(f"warning: {w.message}", err=True)
    click.echo(f"Outputs written to {out}")


if __name__ == "__main__":
    main()
