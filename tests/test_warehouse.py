"""
End-to-end warehouse tests on SQLite: promotion, enforcement, aggregation and the quality gate.
"""
import pandas as pd
import pytest
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from clinical_dwh.core.config import CONCEPT_UNKNOWN
from clinical_dwh.load.promote import complete_dates, ensure_unknown_concept, promote
from clinical_dwh.load.staging import write_staging
from clinical_dwh.models.tables import (
    AggDisordersPerAdmission,
    DimAdmission,
    DimConcept,
    DimDate,
    DimJunk,
    DimPatient,
    FACT_REFERENCES,
    FactDisorderEvent,
    STAGING,
)
from clinical_dwh.services.aggregate import rebuild_aggregate
from clinical_dwh.services.enforce import enforce_integrity
from clinical_dwh.services.etl import build_snapshot, run_etl
from clinical_dwh.services.quality import validate_warehouse
from clinical_dwh.services.run_context import PipelineRun
from clinical_dwh.transforms.intervals import PAST

FACT = FactDisorderEvent.__table__
AGG = AggDisordersPerAdmission.__table__


def _count(engine, table, *where):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table).where(*where)).scalar_one()


@pytest.fixture
def promoted(engine, sources):
    """Staging written and promoted; enforcement not yet run."""
    write_staging(engine, build_snapshot(PipelineRun(), sources))
    promote(engine)
    return engine


def test_clean_run_passes_every_check(finished_run):
    report = finished_run.report
    assert report.passed, report.to_frame()
    assert {c.category for c in report.checks} == {"row_count", "consistency", "orphans", "duplicates"}
    assert len([c for c in report.checks if c.category == "orphans"]) == len(FACT_REFERENCES)


def test_fact_and_dimension_counts(engine, finished_run):
    assert _count(engine, FACT) == 9
    assert _count(engine, DimDate.__table__) == 8
    assert _count(engine, STAGING["dim_junk_disorder_event"]) == 7


def test_sodium_lab_event_lands_in_warehouse(engine, finished_run):
    concepts = DimConcept.__table__
    stmt = (
        select(FACT.c.measurement_value, FACT.c.careunit_id, FACT.c.provider_id)
        .join(concepts, FACT.c.clinical_concept_id == concepts.c.clinical_concept_id)
        .where(concepts.c.code == "50983")
        .where(FACT.c.event_source_type == "lab")
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    assert [tuple(r) for r in rows] == [("140", "MICU", 1)]


def test_unknown_concept_has_single_row(engine, finished_run):
    concepts = DimConcept.__table__
    assert _count(engine, concepts, concepts.c.concept_type == CONCEPT_UNKNOWN) == 1


def test_sentinel_date_row_is_joinable(engine, finished_run):
    dates = DimDate.__table__
    with engine.connect() as conn:
        row = conn.execute(select(dates).where(dates.c.event_datetime == PAST)).one()
    assert row.year is None and row.day_name is None
    assert _count(engine, FACT, FACT.c.event_datetime == PAST) == 1


def test_aggregate_matches_fact(engine, finished_run):
    total = _count(engine, FACT)
    with engine.connect() as conn:
        assert conn.execute(select(func.sum(AGG.c.total_events))).scalar_one() == total
        rows = {r.admission_id: tuple(r)[2:] for r in conn.execute(select(AGG))}
    # (total_events, unique_concepts, different_sources)
    assert rows[100] == (3, 3, 2)
    assert rows[None] == (3, 2, 1)


def test_foreign_keys_reject_bad_rows_after_enforcement(engine, finished_run):
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(insert(FACT).values(patient_id=999, event_source_type="lab"))


def test_run_is_repeatable(engine, sources, finished_run):
    second = run_etl(engine=engine, sources=sources)
    assert second.report.passed
    assert _count(engine, FACT) == 9


def test_final_fixes_are_idempotent(engine, finished_run):
    with engine.begin() as conn:
        assert complete_dates(conn) == 0
        assert ensure_unknown_concept(conn) == 0


def test_enforcer_removes_facts_of_deleted_patient(promoted):
    engine = promoted
    patients = DimPatient.__table__
    fact_for_one = _count(engine, FACT, FACT.c.patient_id == 1)
    assert fact_for_one == 5

    with engine.begin() as conn:
        conn.execute(delete(patients).where(patients.c.patient_id == 1))

    deleted = enforce_integrity(engine)
    rebuild_aggregate(engine)
    assert deleted["patient"] == fact_for_one
    assert _count(engine, FACT, FACT.c.patient_id == 1) == 0

    report = validate_warehouse(engine)
    assert all(c.actual == 0 for c in report.checks if c.category == "orphans")
    assert report.get("consistency", "fact_vs_aggregate").passed
    # staging still holds the removed rows
    assert report.get("row_count", "fact_disorder_events").actual == fact_for_one


def test_orphan_patient_is_deleted_and_flagged(engine, sources):
    sources["diagnoses_icd"] = pd.concat([
        sources["diagnoses_icd"],
        pd.DataFrame([["4", "400", "2761"]], columns=["subject_id", "hadm_id", "icd_code"]),
    ], ignore_index=True)
    run = run_etl(engine=engine, sources=sources)

    assert _count(engine, FACT, FACT.c.patient_id == 4) == 0
    assert run.report.get("orphans", "patient").passed
    assert run.report.get("row_count", "fact_disorder_events").actual == 1
    assert not run.report.passed


def test_quality_gate_survives_missing_tables(engine):
    report = validate_warehouse(engine)
    assert report.checks
    assert all(c.actual is None for c in report.checks)
    assert not report.passed


def test_quality_gate_flags_broken_warehouse(promoted):
    engine = promoted
    rebuild_aggregate(engine)
    junk = DimJunk.__table__
    admissions = DimAdmission.__table__
    with engine.begin() as conn:
        conn.execute(insert(junk).values(junk_id=99, event_source_type="diagnosis"))
        conn.execute(delete(admissions).where(admissions.c.admission_id == 100))
        conn.execute(delete(FACT).where(FACT.c.patient_id == 3))

    report = validate_warehouse(engine)
    assert report.get("duplicates", "junk_combination").actual == 1
    assert report.get("orphans", "admission").actual == 3
    assert report.get("consistency", "fact_vs_aggregate").actual == -1
    assert report.get("row_count", "dim_admissions").actual == 1
    assert not report.passed
