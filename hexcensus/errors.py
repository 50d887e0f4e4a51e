"""
Error taxonomy for the census comparison pipeline.

Structural problems (missing columns, CRS disagreement) are fatal and raise.
Data-quality problems (unmapped species labels) are warnings: the affected
rows are dropped and the run continues with a best-effort output.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class SchemaMismatch(ValueError):
    """A required column/attribute is absent or malformed in an input table."""

    def __init__(self, table: str, fields: Iterable[str], detail: str = "") -> None:
        self.table = table
        self.fields = sorted(str(f) for f in fields)
        msg = f"{table} table: missing or malformed field(s) {self.fields}"
        if detail:
            msg = f"{msg}; {detail}"
        super().__init__(msg)


class CoordinateSystemMismatch(ValueError):
    """Points and grid geometry are not expressed in the same spatial reference."""


class UnmappedSpeciesWarning(UserWarning):
    """Species labels with no canonical mapping were dropped from aggregates."""

    def __init__(self, side: str, labels: Sequence[str]) -> None:
        self.side = side
        self.labels = list(labels)
        super().__init__(
            f"{len(self.labels)} unmapped {side} species label(s) dropped: "
            + ", ".join(repr(label) for label in self.labels)
        )
