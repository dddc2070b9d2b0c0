"""
Referential integrity enforcement for the promoted warehouse.

Fact rows whose foreign key has no dimension row are deleted, never repaired.
A null key means "not applicable for this source" and is left alone, except
patient_id which every event must carry. Afterwards the foreign keys are
declared so later inserts that break them are rejected by the database.
"""

from __future__ import annotations
import logging
from sqlalchemy import MetaData, and_, delete, insert, inspect, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.schema import AddConstraint
from sqlalchemy.sql.elements import ColumnElement
from clinical_dwh.load.promote import PARKED_FACT
from clinical_dwh.models.tables import FACT_REFERENCES, FactDisorderEvent, unconstrained_copy

log = logging.getLogger(__name__)

FACT = FactDisorderEvent.__table__


def orphan_condition(fact_col: str, dim_col, mandatory: bool) -> ColumnElement:
    """WHERE clause matching fact rows whose `fact_col` has no row in the dimension."""
    ref = FACT.c[fact_col]
    unresolved = ~select(dim_col).where(dim_col == ref).correlate(FACT).exists()
    if mandatory:
        return unresolved
    return and_(ref.isnot(None), unresolved)


def delete_orphans(conn: Connection) -> dict[str, int]:
    deleted = {}
    for name, (fact_col, dim_col, mandatory) in FACT_REFERENCES.items():
        result = conn.execute(delete(FACT).where(orphan_condition(fact_col, dim_col, mandatory)))
        deleted[name] = result.rowcount
        if result.rowcount:
            log.warning("Deleted %d fact rows with unresolved %s", result.rowcount, fact_col)
    return deleted


def _rebuild_with_constraints(conn: Connection) -> None:
    # SQLite cannot add a constraint to an existing table
    conn.execute(text(f"ALTER TABLE {FACT.name} RENAME TO {PARKED_FACT}"))
    parked = unconstrained_copy(FACT, PARKED_FACT, MetaData())
    FACT.create(conn)
    cols = [c.name for c in FACT.columns]
    conn.execute(insert(FACT).from_select(cols, select(*[parked.c[c] for c in cols])))
    parked.drop(conn)


def declare_foreign_keys(conn: Connection) -> bool:
    """Add the fact table's foreign keys; False when they already exist."""
    if inspect(conn).get_foreign_keys(FACT.name):
        log.info("Foreign keys already declared on %s", FACT.name)
        return False

    if conn.dialect.name == "sqlite":
        _rebuild_with_constraints(conn)
    else:
        for fk in sorted(FACT.foreign_key_constraints, key=lambda c: c.name):
            conn.execute(AddConstraint(fk))
    log.info("Declared %d foreign keys on %s", len(FACT.foreign_key_constraints), FACT.name)
    return True


def enforce_integrity(engine: Engine) -> dict[str, int]:
    """Delete orphaned fact rows, then lock the keys in. Returns deletions per reference."""
    with engine.begin() as conn:
        deleted = delete_orphans(conn)
        declare_foreign_keys(conn)

    total = sum(deleted.values())
    if total:
        log.warning("Integrity enforcement removed %d fact rows: %s", total, deleted)
    else:
        log.info("Referential integrity validated ✓")
    return deleted
