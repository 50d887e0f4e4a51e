"""
Hex grid spatial join (CRS-aware, deterministic).

Each aerial sighting is assigned to the hexagonal cell that contains it, or
to no cell. We rely on:
- stdlib json/pathlib for GeoJSON
- numpy + matplotlib.path for point-in-polygon
- pyproj for CRS identity and grid reprojection

Points on a shared edge belong to the touching cell with the smallest
``StudySite`` id, so a sighting is never counted twice.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from matplotlib.path import Path as MplPath
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from .errors import CoordinateSystemMismatch, SchemaMismatch


SITE_KEY = "StudySite"
BOUNDARY_TOL = 1e-9


@dataclass(frozen=True)
class GridCell:
    site_id: str
    geometry: Mapping[str, Any]
    habitat: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Grid:
    """Fixed, non-overlapping set of cells in one CRS."""

    cells: Tuple[GridCell, ...]
    crs: Optional[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cells", tuple(sorted(self.cells, key=lambda c: c.site_id)))
        object.__setattr__(self, "crs", normalize_crs(self.crs) if self.crs else None)
        seen: Dict[str, int] = {}
        for cell in self.cells:
            seen[cell.site_id] = seen.get(cell.site_id, 0) + 1
        dupes = sorted(k for k, n in seen.items() if n > 1)
        if dupes:
            raise SchemaMismatch("grid", [SITE_KEY], detail=f"duplicate site ids {dupes}")

    @property
    def site_ids(self) -> List[str]:
        return [c.site_id for c in self.cells]

    def cell(self, site_id: str) -> GridCell:
        for c in self.cells:
            if c.site_id == site_id:
                return c
        raise KeyError(site_id)

    def habitat_table(self) -> pd.DataFrame:
        rows = [{SITE_KEY: c.site_id, **dict(c.habitat)} for c in self.cells]
        return pd.DataFrame(rows, columns=None if rows else [SITE_KEY])

    def vertices(self) -> np.ndarray:
        pts: List[np.ndarray] = []
        for c in self.cells:
            for ring in _rings(c.geometry):
                pts.append(ring)
        if not pts:
            return np.zeros((0, 2), dtype=np.float64)
        return np.vstack(pts)

    def to_crs(self, target: str) -> "Grid":
        """Reproject every vertex into ``target``."""
        dst = normalize_crs(target)
        if self.crs is None:
            raise CoordinateSystemMismatch("CRS mismatch: grid has no CRS; cannot reproject")
        if same_crs(self.crs, dst):
            return self
        transformer = Transformer.from_crs(self.crs, dst, always_xy=True)
        cells = [
            GridCell(c.site_id, _transform_geometry(c.geometry, transformer), dict(c.habitat))
            for c in self.cells
        ]
        return Grid(cells=tuple(cells), crs=dst)


def normalize_crs(value: Any) -> Optional[str]:
    """Normalize common CRS spellings into a comparable ``EPSG:<code>`` form."""
    if value is None:
        return None
    if isinstance(value, int):
        return f"EPSG:{int(value)}"
    if isinstance(value, dict):
        return _crs_from_object(value)
    cleaned = str(value).strip()
    if not cleaned:
        return None

    u = cleaned.upper()
    if u in {"CRS84", "OGC:CRS84", "WGS84"} or u.endswith("CRS84"):
        return "EPSG:4326"

    # URN forms (common in GeoJSON): urn:ogc:def:crs:EPSG::32736
    if u.startswith("URN:OGC:DEF:CRS:"):
        if "EPSG" in u:
            for token in reversed(cleaned.split(":")):
                token = token.strip()
                if token.isdigit():
                    return f"EPSG:{int(token)}"
        return cleaned

    if u.startswith("EPSG:"):
        tail = cleaned.split(":", 1)[1].strip()
        if tail.isdigit():
            return f"EPSG:{int(tail)}"
        return cleaned

    if cleaned.isdigit():
        return f"EPSG:{int(cleaned)}"
    return cleaned


def _crs_from_object(crs: Mapping[str, Any]) -> Optional[str]:
    # {"type":"name","properties":{"name":"urn:ogc:def:crs:OGC:1.3:CRS84"}}
    if crs.get("type") == "name" and isinstance(crs.get("properties"), dict):
        name = crs["properties"].get("name")
        if isinstance(name, str) and name.strip():
            return normalize_crs(name)
    if crs.get("epsg") is not None:
        return f"EPSG:{int(crs['epsg'])}"
    wkt = crs.get("wkt")
    if isinstance(wkt, str) and wkt.strip():
        return wkt.strip()
    return None


def crs_from_geojson(obj: Mapping[str, Any]) -> Optional[str]:
    crs = obj.get("crs")
    if crs is None and isinstance(obj.get("metadata"), dict):
        crs = obj["metadata"].get("crs")
    return normalize_crs(crs)


def _parse_crs(value: str) -> CRS:
    try:
        return CRS.from_user_input(value)
    except CRSError as exc:
        raise CoordinateSystemMismatch(f"CRS mismatch: unrecognised CRS {value!r}") from exc


def same_crs(a: str, b: str) -> bool:
    na, nb = normalize_crs(a), normalize_crs(b)
    if na == nb:
        return True
    return _parse_crs(na).equals(_parse_crs(nb), ignore_axis_order=True)


def is_geographic_crs(crs: Optional[str]) -> bool:
    if crs is None:
        return False
    return bool(_parse_crs(normalize_crs(crs)).is_geographic)


def check_crs(points_crs: Optional[str], grid_crs: Optional[str]) -> str:
    """Reject the join unless both sides declare the same CRS. Returns it."""
    p = normalize_crs(points_crs)
    g = normalize_crs(grid_crs)
    if p is None or g is None:
        raise CoordinateSystemMismatch(
            f"CRS mismatch: both sides must declare a CRS (points={p}, grid={g})"
        )
    if not same_crs(p, g):
        raise CoordinateSystemMismatch(f"CRS mismatch: points={p} grid={g}")
    return g


def _check_geographic_range(xy: np.ndarray, crs: str, what: str) -> None:
    if xy.size == 0 or not is_geographic_crs(crs):
        return
    finite = xy[np.isfinite(xy).all(axis=1)]
    if finite.size == 0:
        return
    if np.abs(finite[:, 0]).max() > 180.0 or np.abs(finite[:, 1]).max() > 90.0:
        raise CoordinateSystemMismatch(
            f"CRS mismatch: {what} coordinates exceed lon/lat bounds for geographic {crs}"
        )


def grid_from_geojson(
    obj: Mapping[str, Any],
    site_key: str = SITE_KEY,
    crs: Optional[str] = None,
) -> Grid:
    """Build a Grid from a Polygon/MultiPolygon FeatureCollection."""
    if obj.get("type") != "FeatureCollection":
        raise ValueError("Grid input must be a GeoJSON FeatureCollection")
    feats = obj.get("features")
    if not isinstance(feats, list):
        raise ValueError("Grid FeatureCollection missing features")

    cells: List[GridCell] = []
    for i, feat in enumerate(feats):
        if not isinstance(feat, dict):
            continue
        geom = feat.get("geometry")
        if not isinstance(geom, dict) or geom.get("type") not in ("Polygon", "MultiPolygon"):
            continue
        props = feat.get("properties") if isinstance(feat.get("properties"), dict) else {}
        site = props.get(site_key)
        if site is None or str(site).strip() == "":
            raise SchemaMismatch("grid", [site_key], detail=f"feature {i} has no site id")
        habitat = {k: v for k, v in props.items() if k != site_key}
        cells.append(GridCell(site_id=str(site).strip(), geometry=geom, habitat=habitat))
    if not cells:
        raise ValueError("No Polygon/MultiPolygon cells found in grid GeoJSON")
    return Grid(cells=tuple(cells), crs=crs or crs_from_geojson(obj))


def load_grid(path: Path, site_key: str = SITE_KEY, crs: Optional[str] = None) -> Grid:
    if not Path(path).exists():
        raise FileNotFoundError(f"Missing grid GeoJSON: {path}")
    return grid_from_geojson(json.loads(Path(path).read_text()), site_key=site_key, crs=crs)


def join_points(
    grid: Grid,
    points_xy: np.ndarray,
    points_crs: Optional[str],
    boundary_tol: float = BOUNDARY_TOL,
) -> List[Optional[str]]:
    """Return the enclosing cell id (or None) for each ``(x, y)`` point."""
    crs = check_crs(points_crs, grid.crs)
    pts = np.asarray(points_xy, dtype=np.float64).reshape(-1, 2)
    _check_geographic_range(pts, crs, "point")
    _check_geographic_range(grid.vertices(), crs, "grid")

    if pts.shape[0] == 0 or not grid.cells:
        return [None] * pts.shape[0]

    # Cells are sorted by id, so the first member row is the tie-break winner.
    member = np.vstack([_members(pts, c.geometry, boundary_tol) for c in grid.cells])
    hit = member.any(axis=0)
    first = member.argmax(axis=0)
    ids = grid.site_ids
    return [ids[int(j)] if h else None for j, h in zip(first, hit)]


def join_observations(
    grid: Grid,
    observations: pd.DataFrame,
    points_crs: Optional[str],
    lon_col: str = "Longitude",
    lat_col: str = "Latitude",
    site_key: str = SITE_KEY,
) -> pd.DataFrame:
    """Copy of ``observations`` with ``site_key`` set (missing = outside grid)."""
    xy = observations[[lon_col, lat_col]].to_numpy(dtype=np.float64)
    out = observations.copy()
    out[site_key] = pd.Series(join_points(grid, xy, points_crs), index=out.index, dtype="object")
    return out


def _rings(geom: Mapping[str, Any]) -> List[np.ndarray]:
    gtype = geom.get("type")
    coords = geom.get("coordinates") or []
    polys = [coords] if gtype == "Polygon" else list(coords) if gtype == "MultiPolygon" else None
    if polys is None:
        raise ValueError(f"Unsupported geometry type: {gtype}")
    out: List[np.ndarray] = []
    for poly in polys:
        for ring in poly:
            r = np.asarray(ring, dtype=np.float64)
            if r.ndim == 2 and r.shape[0] >= 3:
                out.append(r[:, :2])
    return out


def _members(points_xy: np.ndarray, geom: Mapping[str, Any], tol: float) -> np.ndarray:
    """Points inside ``geom`` or on any of its rings."""
    gtype = geom.get("type")
    coords = geom.get("coordinates")
    if gtype == "Polygon":
        polys = [coords]
    elif gtype == "MultiPolygon":
        polys = list(coords or [])
    else:
        raise ValueError(f"Unsupported geometry type: {gtype}")

    out = np.zeros((points_xy.shape[0],), dtype=bool)
    for rings in polys:
        out |= _points_in_polygon(points_xy, rings)
    for ring in _rings(geom):
        out |= _on_ring(points_xy, ring, tol)
    return out


def _points_in_polygon(points_xy: np.ndarray, rings: Any) -> np.ndarray:
    # GeoJSON Polygon: [outer, hole1, hole2, ...] where each ring is [[x,y], ...]
    if not isinstance(rings, list) or not rings:
        return np.zeros((points_xy.shape[0],), dtype=bool)
    outer = np.asarray(rings[0], dtype=np.float64)
    if outer.ndim != 2 or outer.shape[0] < 3:
        return np.zeros((points_xy.shape[0],), dtype=bool)
    inside = MplPath(outer[:, :2]).contains_points(points_xy)
    for hole in rings[1:]:
        h = np.asarray(hole, dtype=np.float64)
        if h.ndim != 2 or h.shape[0] < 3:
            continue
        inside &= ~MplPath(h[:, :2]).contains_points(points_xy)
    return inside


def _on_ring(points_xy: np.ndarray, ring: np.ndarray, tol: float) -> np.ndarray:
    a = ring[:-1] if np.array_equal(ring[0], ring[-1]) else ring
    b = np.roll(a, -1, axis=0)
    ab = b - a  # (M, 2)
    ap = points_xy[:, None, :] - a[None, :, :]  # (N, M, 2)
    denom = np.einsum("ij,ij->i", ab, ab)
    with np.errstate(invalid="ignore", divide="ignore"):
        t = np.einsum("nmj,mj->nm", ap, ab) / np.where(denom > 0, denom, 1.0)
    t = np.clip(t, 0.0, 1.0)
    closest = a[None, :, :] + t[:, :, None] * ab[None, :, :]
    dist = np.linalg.norm(points_xy[:, None, :] - closest, axis=2)
    return (dist <= tol).any(axis=1)


def _transform_geometry(geom: Mapping[str, Any], transformer: Transformer) -> Dict[str, Any]:
    def ring_xy(ring: Sequence[Sequence[float]]) -> List[List[float]]:
        arr = np.asarray(ring, dtype=np.float64)
        xs, ys = transformer.transform(arr[:, 0], arr[:, 1])
        return [[float(x), float(y)] for x, y in zip(xs, ys)]

    gtype = geom.get("type")
    coords = geom.get("coordinates") or []
    if gtype == "Polygon":
        new = [ring_xy(r) for r in coords]
    elif gtype == "MultiPolygon":
        new = [[ring_xy(r) for r in poly] for poly in coords]
    else:
        raise ValueError(f"Unsupported geometry type: {gtype}")
    return {"type": gtype, "coordinates": new}
