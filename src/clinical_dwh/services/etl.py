"""
ETL service - orchestrates extract, transform, staging, promotion, enforcement,
aggregation and the quality gate for one full warehouse rebuild.
"""
from __future__ import annotations
from datetime import datetime
from pathlib import Path
import pandas as pd
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from clinical_dwh.core.db import create_tables, get_engine
from clinical_dwh.core.logging_setup import run_logger
from clinical_dwh.extract.extract_mimic import read_sources
from clinical_dwh.load.promote import promote
from clinical_dwh.load.staging import write_staging
from clinical_dwh.models.tables import EtlRunLog
from clinical_dwh.services.aggregate import rebuild_aggregate
from clinical_dwh.services.enforce import enforce_integrity
from clinical_dwh.services.quality import QualityReport, validate_warehouse
from clinical_dwh.services.run_context import PipelineRun
from clinical_dwh.transforms.concepts import assign_unknown, build_dim_concepts
from clinical_dwh.transforms.dimensions import (
    build_dim_admissions,
    build_dim_date,
    build_dim_junk,
    build_dim_patients,
    build_dim_provider,
    link_junk,
)
from clinical_dwh.transforms.events import (
    backfill_care_units,
    backfill_providers,
    diagnosis_events,
    lab_events,
    omr_events,
    unify_events,
)


def build_snapshot(run: PipelineRun, sources: dict[str, pd.DataFrame] | None = None) -> dict[str, pd.DataFrame]:
    """Run every transform stage in memory; returns the frames the staging area is loaded from.

    `sources` are the eight raw relations; omit them when the run already extracted.
    """
    if sources is not None:
        run.start("extract")
        run.complete("extract", **sources)

    run.start("concepts")
    run.complete("concepts", dim_concepts=build_dim_concepts(run.frame("d_labitems"), run.frame("d_icd_diagnoses")))

    run.start("dimensions")
    run.complete(
        "dimensions",
        dim_patients=build_dim_patients(run.frame("patients")),
        dim_admissions=build_dim_admissions(run.frame("admissions")),
        dim_provider=build_dim_provider(run.frame("transfers")),
    )

    concepts = run.frame("dim_concepts")
    run.start("events")
    run.complete("events", fact=unify_events(
        lab_events(run.frame("labevents"), concepts),
        diagnosis_events(run.frame("diagnoses_icd"), run.frame("dim_admissions"), concepts),
        omr_events(run.frame("omr"), concepts),
    ))

    run.start("unknown_concepts")
    run.complete("unknown_concepts", fact=assign_unknown(run.frame("fact"), concepts))

    # junk combinations include the care unit, so stays are resolved before junk
    run.start("care_units")
    run.complete("care_units", fact=backfill_care_units(run.frame("fact"), run.frame("dim_provider")))

    run.start("providers")
    run.complete("providers", fact=backfill_providers(run.frame("fact"), run.frame("dim_provider")))

    run.start("junk")
    dim_junk = build_dim_junk(run.frame("fact"))
    run.complete("junk", dim_junk=dim_junk, fact=link_junk(run.frame("fact"), dim_junk))

    run.start("dates")
    run.complete("dates", dim_date=build_dim_date(run.frame("fact")["event_datetime"]))
    run.release("fact")

    return {
        "dim_patients": run.frame("dim_patients"),
        "dim_admissions": run.frame("dim_admissions"),
        "dim_provider": run.frame("dim_provider"),
        "dim_concepts": concepts,
        "dim_date": run.frame("dim_date"),
        "dim_junk_disorder_event": run.frame("dim_junk"),
        "fact_disorder_events": run.frame("fact"),
    }


def load_warehouse(engine: Engine, snapshot: dict[str, pd.DataFrame], run: PipelineRun) -> QualityReport:
    """Staging write, promotion, enforcement, aggregation and the quality gate."""
    run.start("staging")
    write_staging(engine, snapshot)
    run.complete("staging")

    run.start("promotion")
    promote(engine)
    run.complete("promotion")

    run.start("enforcement")
    enforce_integrity(engine)
    run.complete("enforcement")

    run.start("aggregation")
    rebuild_aggregate(engine)
    run.complete("aggregation")

    run.start("quality_gate")
    report = validate_warehouse(engine, run_id=run.run_id)
    run.complete("quality_gate", quality_report=report.to_frame())
    run.report = report
    return report


def _log_run(engine: Engine, run: PipelineRun, status: str, notes: str | None = None) -> None:
    with Session(engine) as session:
        entry = session.get(EtlRunLog, run.run_id)
        if entry is None:
            entry = EtlRunLog(run_id=run.run_id, started_at=run.started_at)
            session.add(entry)
        entry.status = status
        entry.stages = run.stage_list
        entry.notes = notes
        if status != "running":
            entry.finished_at = datetime.now()
        session.commit()


def run_etl(engine: Engine | None = None, sources: dict[str, pd.DataFrame] | None = None,
            source_dir: str | Path | None = None, report_path: str | Path | None = None) -> PipelineRun:
    """Execute the complete ETL pipeline"""
    engine = engine or get_engine()
    create_tables(engine)
    run = PipelineRun()
    rlog = run_logger(__name__, run.run_id)
    _log_run(engine, run, "running")

    try:
        rlog.info("Extracting sources...")
        if sources is None:
            sources = read_sources(source_dir=source_dir)

        rlog.info("Running transforms...")
        snapshot = build_snapshot(run, sources)

        rlog.info("Loading staging and warehouse...")
        report = load_warehouse(engine, snapshot, run)
        if report_path:
            report.write_csv(report_path)

    except Exception as e:
        rlog.error(f"ETL pipeline failed: {e}", exc_info=True)
        _log_run(engine, run, "failed", notes=str(e)[:2000])
        raise

    status = "success" if report.passed else "needs_review"
    _log_run(engine, run, status, notes=f"{len(report.failures())} quality checks need attention")
    rlog.info(f"Pipeline complete ({status})")
    return run
