"""
Write the staging snapshot into the stage_* tables.
- Drops and recreates the staging area on every run.
- Open stay / admission bounds become the far-past / far-future sentinels here.
"""

from __future__ import annotations
import logging
from datetime import datetime
import numpy as np
import pandas as pd
from sqlalchemy import Date, Table, func, select
from sqlalchemy.engine import Connection, Engine
from clinical_dwh.models.tables import STAGING, staging_metadata
from clinical_dwh.transforms.intervals import StayInterval

log = logging.getLogger(__name__)

INTERVAL_COLUMNS = {
    "dim_admissions": ("admittime", "dischtime"),
    "dim_provider":   ("intime", "outtime"),
}

CHUNK_SIZE = 10_000


def _db_value(v):
    if v is None or (not isinstance(v, str) and pd.isna(v)):
        return None
    if isinstance(v, pd.Timestamp):
        return v.to_pydatetime()
    if isinstance(v, np.generic):
        return v.item()
    return v


def to_records(df: pd.DataFrame, table: Table, intervals: tuple[str, str] | None = None) -> list[dict]:
    """DataFrame rows as insert parameters for `table`, with NaN/NaT/<NA> as None."""
    cols = [c.name for c in table.columns]
    date_cols = {c.name for c in table.columns if isinstance(c.type, Date)}

    out = []
    for rec in df.reindex(columns=cols).to_dict("records"):
        row = {k: _db_value(v) for k, v in rec.items()}
        for k in date_cols:
            if isinstance(row[k], datetime):
                row[k] = row[k].date()
        if intervals:
            start, end = intervals
            row[start], row[end] = StayInterval(row[start], row[end]).to_storage()
        out.append(row)
    return out


def insert_frame(conn: Connection, table: Table, df: pd.DataFrame, intervals: tuple[str, str] | None = None) -> int:
    records = to_records(df, table, intervals)
    for i in range(0, len(records), CHUNK_SIZE):
        conn.execute(table.insert(), records[i:i + CHUNK_SIZE])
    return len(records)


def reset_staging(conn: Connection) -> None:
    staging_metadata.drop_all(conn)
    staging_metadata.create_all(conn)


def write_staging(engine: Engine, snapshot: dict[str, pd.DataFrame]) -> dict[str, int]:
    """Rebuild the staging area from the transformed frames."""
    missing = [name for name in STAGING if name not in snapshot]
    if missing:
        raise ValueError(f"Staging snapshot is missing frames: {missing}")

    counts = {}
    with engine.begin() as conn:
        reset_staging(conn)
        for name, table in STAGING.items():
            counts[name] = insert_frame(conn, table, snapshot[name], INTERVAL_COLUMNS.get(name))
            log.info("Staging %s: inserted %d", table.name, counts[name])
    return counts


def staging_counts(engine: Engine) -> dict[str, int]:
    with engine.connect() as conn:
        return {
            name: conn.execute(select(func.count()).select_from(table)).scalar_one()
            for name, table in STAGING.items()
        }
