"""
Per-admission summary, recomputed wholesale from the fact table.
"""

import logging
from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Engine
from clinical_dwh.models.tables import AggDisordersPerAdmission, FactDisorderEvent

log = logging.getLogger(__name__)

def rebuild_aggregate(engine: Engine) -> int:
    """Replace agg_disorders_per_admission; must be rerun after any fact change."""
    fact = FactDisorderEvent.__table__
    agg = AggDisordersPerAdmission.__table__
    summary = (
        select(
            fact.c.admission_id,
            func.count(),
            func.count(fact.c.clinical_concept_id.distinct()),
            func.count(fact.c.event_source_type.distinct()),
        )
        .group_by(fact.c.admission_id)
    )

    with engine.begin() as conn:
        conn.execute(delete(agg))
        conn.execute(insert(agg).from_select(
            ["admission_id", "total_events", "unique_concepts", "different_sources"], summary
        ))
        rows = conn.execute(select(func.count()).select_from(agg)).scalar_one()

    log.info("Aggregate rebuilt: %d admissions", rows)
    return rows
