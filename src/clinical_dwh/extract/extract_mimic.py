"""
Extract the MIMIC-IV source relations, raw DataFrames.

Reads from the source database schema when an engine is given (or
SOURCE_DATABASE_URL is set), otherwise from CSV exports in MIMIC_DIR.
Only the columns the pipeline consumes are kept; values are not cleaned here.
"""

from __future__ import annotations
import logging
from pathlib import Path
import pandas as pd
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from clinical_dwh.core.config import MIMIC_DIR, SOURCE_DATABASE_URL, SOURCE_SCHEMA

log = logging.getLogger(__name__)

SOURCE_COLUMNS = {
    "patients":        ["subject_id", "gender", "dod"],
    "admissions":      ["subject_id", "hadm_id", "admittime", "dischtime", "admission_type", "insurance"],
    "transfers":       ["subject_id", "hadm_id", "careunit", "intime", "outtime"],
    "d_labitems":      ["itemid", "label"],
    "labevents":       ["subject_id", "hadm_id", "itemid", "charttime", "value", "valuenum", "valueuom"],
    "d_icd_diagnoses": ["icd_code", "long_title"],
    "diagnoses_icd":   ["subject_id", "hadm_id", "icd_code"],
    "omr":             ["subject_id", "chartdate", "result_name", "result_value"],
}

def _csv_path(source_dir: Path, name: str) -> Path:
    for candidate in (source_dir / f"{name}.csv", source_dir / f"{name}.csv.gz"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(f"No CSV export for source table '{name}' in {source_dir}")

def _check_columns(df: pd.DataFrame, name: str) -> pd.DataFrame:
    expected = SOURCE_COLUMNS[name]
    missing = [c for c in expected if c not in df.columns]
    if missing:
        raise ValueError(f"Source table '{name}' is missing columns: {missing}")
    return df[expected].copy()

def read_source(name: str, engine: Engine | None = None, source_dir: str | Path | None = None) -> pd.DataFrame:
    """Read one source relation by its MIMIC-IV name."""
    if name not in SOURCE_COLUMNS:
        raise ValueError(f"Unknown source table '{name}'")

    if engine is not None:
        df = pd.read_sql_table(name, engine, schema=SOURCE_SCHEMA)
        origin = f"{SOURCE_SCHEMA}.{name}"
    else:
        path = _csv_path(Path(source_dir or MIMIC_DIR), name)
        # codes such as ICD "0389" must keep their leading zeros
        df = pd.read_csv(path, dtype=str)
        origin = str(path)

    df.columns = df.columns.str.strip().str.lower()
    df = _check_columns(df, name)
    log.info("Extracted %s: %s (%d rows)", name, origin, len(df))
    return df

def read_sources(engine: Engine | None = None, source_dir: str | Path | None = None) -> dict[str, pd.DataFrame]:
    """Read all eight source relations."""
    if engine is None and source_dir is None and SOURCE_DATABASE_URL:
        engine = create_engine(SOURCE_DATABASE_URL, future=True)
    return {name: read_source(name, engine=engine, source_dir=source_dir) for name in SOURCE_COLUMNS}
