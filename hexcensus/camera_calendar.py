"""
Camera operation calendar.

Tracks, per camera site and calendar day, whether the camera was recording.
Night counts over a closed date interval are the denominator of the RAI; a
site with zero operational nights is reported as 0 nights so that the rate
layer can mark it undefined rather than a zero rate.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np
import pandas as pd

from .contracts import CALENDAR_COLUMNS, normalize_columns
from .errors import SchemaMismatch


class OperationCalendar:
    """Site × day matrix of 0/1 operational flags."""

    def __init__(self, matrix: pd.DataFrame) -> None:
        m = matrix.copy()
        m.index = m.index.astype(str)
        m.columns = pd.DatetimeIndex(pd.to_datetime(m.columns)).normalize()
        values = m.to_numpy(dtype=np.float64, na_value=np.nan)
        flags = values[~np.isnan(values)]
        bad = np.setdiff1d(np.unique(flags), [0.0, 1.0])
        if bad.size:
            raise SchemaMismatch("calendar", ["operational"], detail=f"flags must be 0/1, got {bad.tolist()}")
        m = m.groupby(level=0).max() if m.index.has_duplicates else m
        m = m.T.groupby(level=0).max().T if m.columns.has_duplicates else m
        self._matrix = m.fillna(0).astype(np.int8).sort_index(axis=0).sort_index(axis=1)

    @classmethod
    def from_long(cls, df: pd.DataFrame) -> "OperationCalendar":
        """Build from rows of ``site, date, operational``.

        Duplicate (site, date) rows count as operational if any row says so;
        days absent from the table count as not operational.
        """
        d = normalize_columns(df, "calendar", CALENDAR_COLUMNS)
        d = d.assign(
            site=d["site"].astype(str).str.strip(),
            date=pd.to_datetime(d["date"]).dt.normalize(),
            operational=pd.to_numeric(d["operational"], errors="coerce"),
        )
        flags = d["operational"].dropna().unique()
        bad = sorted(set(flags.tolist()) - {0.0, 1.0})
        if bad:
            raise SchemaMismatch("calendar", ["operational"], detail=f"flags must be 0/1, got {bad}")
        matrix = d.pivot_table(index="site", columns="date", values="operational", aggfunc="max")
        return cls(matrix)

    @classmethod
    def from_wide(cls, df: pd.DataFrame, site_col: str = "site") -> "OperationCalendar":
        """Build from one row per site and one column per date.

        Repeated site rows are combined like duplicate long rows: a night
        counts if any row marks it operational.
        """
        d = normalize_columns(df, "calendar", (site_col,))
        raw = d.set_index(site_col)
        matrix = raw.apply(pd.to_numeric, errors="coerce")
        garbled = matrix.isna() & raw.notna()
        if garbled.to_numpy().any():
            raise SchemaMismatch("calendar", ["operational"], detail="non-numeric flags in wide calendar")
        return cls(matrix)

    @property
    def sites(self) -> list[str]:
        return self._matrix.index.tolist()

    @property
    def first_day(self) -> Optional[pd.Timestamp]:
        return self._matrix.columns.min() if len(self._matrix.columns) else None

    @property
    def last_day(self) -> Optional[pd.Timestamp]:
        return self._matrix.columns.max() if len(self._matrix.columns) else None

    def is_active(self, site: str, day: Any) -> bool:
        ts = pd.Timestamp(day).normalize()
        if site not in self._matrix.index or ts not in self._matrix.columns:
            return False
        return bool(self._matrix.at[site, ts])

    def nights_by_site(self, start: Any, end: Any) -> pd.Series:
        """Operational nights per site within the closed interval ``[start, end]``."""
        lo = pd.Timestamp(start).normalize()
        hi = pd.Timestamp(end).normalize()
        cols = self._matrix.columns
        mask = (cols >= lo) & (cols <= hi)
        nights = self._matrix.loc[:, mask].sum(axis=1).astype(int)
        nights.name = "OperationalNights"
        return nights

    def nights(self, site: str, start: Any, end: Any) -> int:
        return int(self.nights_by_site(start, end).get(site, 0))

    def total_nights(self, start: Any, end: Any) -> int:
        return int(self.nights_by_site(start, end).sum())
