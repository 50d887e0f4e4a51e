"""
Study constants and time-window configuration.

The comparison is a single-study analysis: survey dates, CRS and the
independence interval are fixed here. Time windows are data, not code; each
entry in ``extensions_days`` yields one symmetric window around the aerial
survey period.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class TimeWindow:
    """Closed date interval ``[start, end]`` identified by ``window_id``."""

    window_id: str
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Window {self.window_id}: end {self.end} precedes start {self.start}")

    @property
    def n_days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: Any) -> bool:
        d = pd.Timestamp(day).date()
        return self.start <= d <= self.end


def window_id_for(extension_days: int) -> str:
    if extension_days == 0:
        return "exact"
    if extension_days % 7 == 0:
        return f"pm{extension_days // 7}wk"
    return f"pm{extension_days}d"


@dataclass(frozen=True)
class StudyConfig:
    """Hard-coded study parameters; override individual fields via JSON."""

    survey_start: date = date(2016, 10, 14)
    survey_end: date = date(2016, 10, 28)
    extensions_days: Tuple[int, ...] = (0, 14, 28)
    aerial_survey: Optional[str] = "2016"
    independence_minutes: float = 10.0
    aerial_crs: str = "EPSG:4326"
    reproject_grid: bool = True
    site_key: str = "StudySite"
    rai_per_nights: float = 1.0

    def __post_init__(self) -> None:
        if any(int(e) < 0 for e in self.extensions_days):
            raise ValueError(f"Window extensions must be non-negative: {self.extensions_days}")
        if len(set(self.extensions_days)) != len(self.extensions_days):
            raise ValueError(f"Duplicate window extensions: {self.extensions_days}")
        if self.independence_minutes < 0:
            raise ValueError("independence_minutes must be >= 0")
        if self.rai_per_nights <= 0:
            raise ValueError("rai_per_nights must be > 0")

    @property
    def independence_interval(self) -> pd.Timedelta:
        return pd.Timedelta(minutes=float(self.independence_minutes))

    def windows(self) -> List[TimeWindow]:
        out: List[TimeWindow] = []
        for ext in self.extensions_days:
            delta = timedelta(days=int(ext))
            out.append(
                TimeWindow(
                    window_id=window_id_for(int(ext)),
                    start=self.survey_start - delta,
                    end=self.survey_end + delta,
                )
            )
        return out

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["survey_start"] = self.survey_start.isoformat()
        d["survey_end"] = self.survey_end.isoformat()
        d["extensions_days"] = list(self.extensions_days)
        return d

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "StudyConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown study config key(s): {unknown}")
        kwargs: Dict[str, Any] = dict(values)
        for key in ("survey_start", "survey_end"):
            if key in kwargs and not isinstance(kwargs[key], date):
                kwargs[key] = date.fromisoformat(str(kwargs[key]))
        if "extensions_days" in kwargs:
            kwargs["extensions_days"] = tuple(int(e) for e in kwargs["extensions_days"])
        if kwargs.get("aerial_survey") is not None:
            kwargs["aerial_survey"] = str(kwargs["aerial_survey"])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Path) -> "StudyConfig":
        if not Path(path).exists():
            raise FileNotFoundError(f"Missing study config JSON: {path}")
        return cls.from_mapping(json.loads(Path(path).read_text()))


DEFAULT_CONFIG = StudyConfig()


def as_policy_dict(config: StudyConfig = DEFAULT_CONFIG) -> Dict[str, object]:
    """Small policy block that can be embedded in summary outputs."""
    return {
        "windows": [
            {"window_id": w.window_id, "start": w.start.isoformat(), "end": w.end.isoformat()}
            for w in config.windows()
        ],
        "independence_minutes": float(config.independence_minutes),
        "rai_per_nights": float(config.rai_per_nights),
        "undefined_rates_are_zero": False,
    }
