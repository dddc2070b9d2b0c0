"""
Basic tests for the ETL pipeline: extraction, configuration, run context and run log
"""
import logging
import pandas as pd
import pytest
from sqlalchemy import select
from clinical_dwh.core.config import database_url
from clinical_dwh.core.db import create_tables, table_names
from clinical_dwh.extract.extract_mimic import SOURCE_COLUMNS, read_source, read_sources
from clinical_dwh.models.tables import EtlRunLog
from clinical_dwh.services.etl import run_etl
from clinical_dwh.services.quality import QualityReport
from clinical_dwh.services.run_context import STAGES, PipelineRun, PipelineStageError


@pytest.fixture
def csv_dir(tmp_path, sources):
    src = tmp_path / "mimic4"
    src.mkdir()
    for name, df in sources.items():
        df.to_csv(src / f"{name}.csv", index=False)
    return src


def test_database_url_prefers_explicit_url(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///warehouse.db")
    assert database_url() == "sqlite:///warehouse.db"


def test_read_source_keeps_codes_as_text(tmp_path):
    pd.DataFrame({"icd_code": ["0389", "E872"], "long_title": ["Septicemia", "Acidosis"], "icd_version": [9, 10]}) \
        .to_csv(tmp_path / "d_icd_diagnoses.csv", index=False)
    df = read_source("d_icd_diagnoses", source_dir=tmp_path)
    assert list(df.columns) == SOURCE_COLUMNS["d_icd_diagnoses"]
    assert df["icd_code"].tolist() == ["0389", "E872"]


def test_read_source_errors(tmp_path):
    with pytest.raises(ValueError):
        read_source("chartevents", source_dir=tmp_path)
    with pytest.raises(FileNotFoundError):
        read_source("patients", source_dir=tmp_path)

    pd.DataFrame({"subject_id": [1]}).to_csv(tmp_path / "patients.csv", index=False)
    with pytest.raises(ValueError, match="missing columns"):
        read_source("patients", source_dir=tmp_path)


def test_read_sources_reads_all_tables(csv_dir):
    frames = read_sources(source_dir=csv_dir)
    assert set(frames) == set(SOURCE_COLUMNS)
    assert len(frames["labevents"]) == 6


def test_stage_order_is_enforced():
    run = PipelineRun()
    with pytest.raises(PipelineStageError):
        run.start("events")
    run.start("extract")
    run.complete("extract")
    with pytest.raises(PipelineStageError):
        run.start("staging")
    with pytest.raises(PipelineStageError):
        run.start("publish")


def test_frames_are_versioned():
    run = PipelineRun()
    run.complete("extract", fact=pd.DataFrame({"a": [1]}))
    run.complete("events", fact=pd.DataFrame({"a": [1, 2]}))
    assert run.versions("fact") == ["extract", "events"]
    assert len(run.frame("fact")) == 2
    run.release("fact")
    assert run.versions("fact") == ["events"]
    with pytest.raises(KeyError):
        run.frame("dim_date")


def test_pipeline_from_csv_exports(engine, csv_dir, tmp_path):
    report_path = tmp_path / "reports" / "quality_report.csv"
    run = run_etl(engine=engine, source_dir=csv_dir, report_path=report_path)

    assert isinstance(run.report, QualityReport) and run.report.passed
    assert run.stage_list == ",".join(STAGES)
    assert run.versions("fact") == ["junk"]

    written = pd.read_csv(report_path)
    assert len(written) == len(run.report.checks)
    assert written["passed"].all()

    tables = table_names(engine)
    assert "stage_fact_disorder_events" in tables and "agg_disorders_per_admission" in tables

    with engine.connect() as conn:
        entry = conn.execute(select(EtlRunLog.__table__).where(EtlRunLog.run_id == run.run_id)).one()
    assert entry.status == "success"
    assert entry.finished_at is not None


def test_failed_run_is_logged(engine, sources):
    del sources["omr"]
    with pytest.raises(KeyError):
        run_etl(engine=engine, sources=sources)

    with engine.connect() as conn:
        statuses = conn.execute(select(EtlRunLog.status)).scalars().all()
    assert statuses == ["failed"]


def test_create_tables_is_idempotent(engine):
    create_tables(engine)
    create_tables(engine)
    assert table_names(engine) == ["etl_run_log"]


def test_stage_messages_carry_run_id(caplog):
    run = PipelineRun()
    with caplog.at_level(logging.INFO, logger="clinical_dwh.services.run_context"):
        run.start("extract")
    assert f"[{run.run_id[:8]}] stage extract" in caplog.text
