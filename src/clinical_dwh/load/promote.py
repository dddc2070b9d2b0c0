"""
Promote the staging area into the warehouse.
- Drops and recreates every warehouse table (the run log is kept).
- Copies each staging table with SELECT DISTINCT; fact rows get fresh ids.
- The fact table is loaded without foreign keys; the enforcer declares them.
- Final fixes: date rows for any fact timestamp still missing, and the Unknown concept.
"""

from __future__ import annotations
import logging
import pandas as pd
from sqlalchemy import insert, select, text
from sqlalchemy.engine import Connection, Engine
from clinical_dwh.core.config import CONCEPT_UNKNOWN
from clinical_dwh.load.staging import insert_frame
from clinical_dwh.models.tables import (
    AggDisordersPerAdmission,
    Base,
    DIMENSIONS,
    DimConcept,
    DimDate,
    STAGING,
    UNCHECKED_FACT,
    WAREHOUSE_TABLES,
)
from clinical_dwh.transforms.dimensions import build_dim_date

log = logging.getLogger(__name__)

# name the enforcer parks the unconstrained fact table under while it rebuilds it
PARKED_FACT = "fact_disorder_events_unchecked"


def reset_warehouse(conn: Connection) -> None:
    conn.execute(text(f"DROP TABLE IF EXISTS {PARKED_FACT}"))
    Base.metadata.drop_all(conn, tables=WAREHOUSE_TABLES)
    Base.metadata.create_all(conn, tables=[m.__table__ for m in DIMENSIONS] + [AggDisordersPerAdmission.__table__])
    UNCHECKED_FACT.create(conn)


def _copy_distinct(conn: Connection, name: str, cols: list[str]) -> int:
    source = STAGING[name]
    target = UNCHECKED_FACT if name == UNCHECKED_FACT.name else Base.metadata.tables[name]
    sel = select(*[source.c[c] for c in cols]).distinct()
    return conn.execute(insert(target).from_select(cols, sel)).rowcount


def complete_dates(conn: Connection) -> int:
    """Insert date rows for warehouse fact timestamps that have none yet."""
    dim_date = DimDate.__table__
    missing = (
        select(UNCHECKED_FACT.c.event_datetime)
        .distinct()
        .outerjoin(dim_date, UNCHECKED_FACT.c.event_datetime == dim_date.c.event_datetime)
        .where(UNCHECKED_FACT.c.event_datetime.isnot(None))
        .where(dim_date.c.event_datetime.is_(None))
    )
    times = pd.read_sql(missing, conn)
    return insert_frame(conn, dim_date, build_dim_date(times["event_datetime"]))


def ensure_unknown_concept(conn: Connection) -> int:
    """Copy the Unknown concept from staging if the warehouse lacks one."""
    target = DimConcept.__table__
    source = STAGING[target.name]
    cols = [c.name for c in target.columns]
    present = select(target.c.clinical_concept_id).where(target.c.concept_type == CONCEPT_UNKNOWN).exists()
    sel = (
        select(*[source.c[c] for c in cols])
        .where(source.c.concept_type == CONCEPT_UNKNOWN)
        .where(~present)
        .limit(1)
    )
    return conn.execute(insert(target).from_select(cols, sel)).rowcount


def promote(engine: Engine) -> dict[str, int]:
    """Rebuild the warehouse from staging; returns rows copied per table."""
    counts = {}
    with engine.begin() as conn:
        reset_warehouse(conn)
        for model in DIMENSIONS:
            cols = [c.name for c in model.__table__.columns]
            counts[model.__tablename__] = _copy_distinct(conn, model.__tablename__, cols)

        fact_cols = [c.name for c in UNCHECKED_FACT.columns if c.name != "disorder_event_id"]
        counts[UNCHECKED_FACT.name] = _copy_distinct(conn, UNCHECKED_FACT.name, fact_cols)

        added_dates = complete_dates(conn)
        added_unknown = ensure_unknown_concept(conn)
        if added_dates or added_unknown:
            log.warning("Promotion fixes: %d date rows, %d unknown concept rows added", added_dates, added_unknown)

    for name, n in counts.items():
        log.info("Promoted %s: %d rows", name, n)
    return counts
