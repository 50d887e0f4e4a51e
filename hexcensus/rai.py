"""
Relative activity index (RAI) and aerial-to-camera ratios.

RAI = independent detections / operational nights, per site, species and
window. With zero operational nights the rate is undefined and stored as a
missing value, never 0 or inf. Ratios follow the same rule: every undefined
case carries a status explaining why.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .camera_calendar import OperationCalendar
from .config import TimeWindow
from .contracts import CAMERA_RAI_COLUMNS
from .detections import SITE_KEY, TOTAL_SITE, aggregate_camera, camera_totals


DEFINED = "defined"
AERIAL_ABSENT = "aerial_absent"
NO_EFFORT = "no_effort"
NO_CAMERA_SIGNAL = "no_camera_signal"


@dataclass(frozen=True)
class RatioResult:
    """Tagged ratio: ``value`` is set only when ``status == "defined"``."""

    value: Optional[float]
    status: str

    @property
    def defined(self) -> bool:
        return self.status == DEFINED


def _missing(x: Optional[float]) -> bool:
    return x is None or (isinstance(x, float) and math.isnan(x))


def rai_value(detections: float, nights: float, per_nights: float = 1.0) -> float:
    if _missing(nights) or nights <= 0:
        return float("nan")
    return float(detections) / float(nights) * float(per_nights)


def derive_ratio(aerial_individuals: float, rai: Optional[float]) -> RatioResult:
    """aerial individuals / RAI, or an undefined result with its reason."""
    if _missing(aerial_individuals) or aerial_individuals <= 0:
        return RatioResult(None, AERIAL_ABSENT)
    if _missing(rai):
        return RatioResult(None, NO_EFFORT)
    if rai == 0:
        return RatioResult(None, NO_CAMERA_SIGNAL)
    return RatioResult(float(aerial_individuals) / float(rai), DEFINED)


def compute_rai(
    counts: pd.DataFrame,
    nights_by_site: pd.Series,
    window: TimeWindow,
    species: Iterable[str],
    per_nights: float = 1.0,
) -> pd.DataFrame:
    """Full site × species RAI table for one window.

    Sites come from both the calendar and the detections; a site with
    detections but no calendar entry gets 0 nights and an undefined RAI.
    """
    sites = sorted(set(nights_by_site.index.astype(str)) | set(counts[SITE_KEY].astype(str)))
    names = sorted(set(species) | set(counts["Species"]))
    grid = pd.MultiIndex.from_product([sites, names], names=[SITE_KEY, "Species"]).to_frame(index=False)

    out = grid.merge(counts[[SITE_KEY, "Species", "Detections"]], on=[SITE_KEY, "Species"], how="left")
    out["Detections"] = out["Detections"].fillna(0).astype(int)
    out["OperationalNights"] = out[SITE_KEY].map(nights_by_site).fillna(0).astype(int)
    out["window"] = window.window_id
    out["RAI"] = [
        rai_value(d, n, per_nights) for d, n in zip(out["Detections"], out["OperationalNights"])
    ]
    return out[list(CAMERA_RAI_COLUMNS)]


def _rai_for_window(
    events: pd.DataFrame,
    calendar: OperationCalendar,
    window: TimeWindow,
    species: Sequence[str],
    per_nights: float,
) -> pd.DataFrame:
    counts = aggregate_camera(events, window)
    nights = calendar.nights_by_site(window.start, window.end)
    return compute_rai(counts, nights, window, species, per_nights)


def compute_rai_windows(
    events: pd.DataFrame,
    calendar: OperationCalendar,
    windows: Sequence[TimeWindow],
    species: Iterable[str],
    per_nights: float = 1.0,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """RAI tables for every window, concatenated in window order.

    Windows only read the shared events/calendar, so they may run on a
    thread pool; the result does not depend on ``max_workers``.
    """
    names = sorted(set(species))
    if max_workers and max_workers > 1 and len(windows) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            parts: List[pd.DataFrame] = list(
                executor.map(lambda w: _rai_for_window(events, calendar, w, names, per_nights), windows)
            )
    else:
        parts = [_rai_for_window(events, calendar, w, names, per_nights) for w in windows]
    if not parts:
        return pd.DataFrame(columns=list(CAMERA_RAI_COLUMNS))
    return pd.concat(parts, ignore_index=True)


def rai_totals(
    events: pd.DataFrame,
    calendar: OperationCalendar,
    windows: Sequence[TimeWindow],
    species: Iterable[str],
    per_nights: float = 1.0,
) -> pd.DataFrame:
    """Study-area RAI: all detections over all operational nights, per window."""
    names = sorted(set(species))
    parts: List[pd.DataFrame] = []
    for w in windows:
        counts = camera_totals(events, w)
        nights = pd.Series({TOTAL_SITE: calendar.total_nights(w.start, w.end)}, dtype=np.int64)
        parts.append(compute_rai(counts, nights, w, names, per_nights))
    if not parts:
        return pd.DataFrame(columns=list(CAMERA_RAI_COLUMNS))
    return pd.concat(parts, ignore_index=True)


def mean_defined(values: pd.Series) -> float:
    """Mean over defined values only; undefined rates are skipped, not zeroed."""
    v = pd.to_numeric(values, errors="coerce").to_numpy(dtype=np.float64)
    v = v[np.isfinite(v)]
    return float(v.mean()) if v.size else float("nan")
