"""
Care-unit stay intervals.

Missing entry / exit times are kept as open bounds while the pipeline runs and
only become the far-past / far-future sentinels when rows are written to the
database.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import pandas as pd
from clinical_dwh.core.config import SENTINEL_PAST, SENTINEL_FUTURE

PAST = datetime.fromisoformat(SENTINEL_PAST)
FUTURE = datetime.fromisoformat(SENTINEL_FUTURE)


def _missing(ts) -> bool:
    return ts is None or bool(pd.isna(ts))


def is_sentinel(ts) -> bool:
    if _missing(ts):
        return False
    ts = pd.Timestamp(ts).to_pydatetime()
    return ts == PAST or ts == FUTURE


@dataclass(frozen=True)
class StayInterval:
    """Closed interval [start, end]; a None bound is unbounded on that side."""

    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def from_storage(cls, start, end) -> "StayInterval":
        """Build from stored bounds, reading sentinels back as open bounds."""
        start = None if _missing(start) or is_sentinel(start) else pd.Timestamp(start).to_pydatetime()
        end = None if _missing(end) or is_sentinel(end) else pd.Timestamp(end).to_pydatetime()
        return cls(start, end)

    def contains(self, ts) -> bool:
        if _missing(ts):
            return False
        ts = pd.Timestamp(ts).to_pydatetime()
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True

    def to_storage(self) -> tuple[datetime, datetime]:
        return (self.start or PAST, self.end or FUTURE)


def contains_mask(start: pd.Series, end: pd.Series, ts: pd.Series) -> pd.Series:
    """Vectorised StayInterval.contains over aligned columns."""
    after_start = start.isna() | (start <= ts)
    before_end = end.isna() | (ts <= end)
    return ts.notna() & after_start & before_end
