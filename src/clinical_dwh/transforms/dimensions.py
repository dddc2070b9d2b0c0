"""
Dimension builders: patients, admissions, provider stays, date and junk.

Admissions and provider stays keep missing entry / exit times as NaT (open
bounds); the staging writer turns them into sentinels. Date and junk rows are
derived from the fact stream and only added when absent, so rebuilding them
against an already-populated frame never duplicates keys.
"""

from __future__ import annotations
import logging
from typing import NamedTuple
import pandas as pd
from clinical_dwh.transforms.cleaning import clean_text, parse_timestamps, to_ids
from clinical_dwh.transforms.intervals import is_sentinel

log = logging.getLogger(__name__)

DATE_COLS = ["event_datetime", "month", "year", "day_of_week", "day_name", "month_name", "is_weekend"]
JUNK_COLS = ["junk_id", "event_source_type", "measurement_unit", "careunit_id"]


def _dedupe(df: pd.DataFrame, key: str, label: str) -> pd.DataFrame:
    missing = df[key].isna()
    if missing.any():
        log.warning("%s: dropping %d rows without %s", label, int(missing.sum()), key)
        df = df[~missing]

    before = len(df)
    df = df.drop_duplicates(subset=[key], keep="first")
    removed = before - len(df)
    if removed:
        log.warning("%s: removed %d duplicate %s rows", label, removed, key)
    return df.reset_index(drop=True)


def build_dim_patients(patients: pd.DataFrame) -> pd.DataFrame:
    df = pd.DataFrame({
        "patient_id": to_ids(patients["subject_id"]),
        "gender": clean_text(patients["gender"]),
        "dod": parse_timestamps(patients["dod"]).dt.normalize(),
    })
    df = _dedupe(df, "patient_id", "Patients")
    log.info("Patients dimension: %d rows", len(df))
    return df


def build_dim_admissions(admissions: pd.DataFrame) -> pd.DataFrame:
    df = pd.DataFrame({
        "admission_id": to_ids(admissions["hadm_id"]),
        "patient_id": to_ids(admissions["subject_id"]),
        "admission_type": clean_text(admissions["admission_type"]),
        "admittime": parse_timestamps(admissions["admittime"]),
        "dischtime": parse_timestamps(admissions["dischtime"]),
        "insurance": clean_text(admissions["insurance"]),
    })
    df = _dedupe(df, "admission_id", "Admissions")
    open_bounds = int(df["admittime"].isna().sum() + df["dischtime"].isna().sum())
    log.info("Admissions dimension: %d rows (%d open bounds)", len(df), open_bounds)
    return df


def build_dim_provider(transfers: pd.DataFrame) -> pd.DataFrame:
    """One row per transfer; several stays per admission are legitimate."""
    df = pd.DataFrame({
        "patient_id": to_ids(transfers["subject_id"]),
        "admission_id": to_ids(transfers["hadm_id"]),
        "careunit_id": clean_text(transfers["careunit"]),
        "intime": parse_timestamps(transfers["intime"]),
        "outtime": parse_timestamps(transfers["outtime"]),
    }).reset_index(drop=True)
    df.insert(0, "provider_id", range(1, len(df) + 1))
    log.info("Provider dimension: %d stays", len(df))
    return df


# date

def build_dim_date(event_times: pd.Series, existing: pd.DataFrame | None = None) -> pd.DataFrame:
    """Calendar rows for the distinct timestamps not already in `existing`.

    Sentinel timestamps get a row so their events stay joinable, but no
    calendar attributes.
    """
    ts = parse_timestamps(event_times).dropna().drop_duplicates()
    if existing is not None and len(existing):
        ts = ts[~ts.isin(parse_timestamps(existing["event_datetime"]))]
    ts = ts.sort_values().reset_index(drop=True)

    real = pd.Series([not is_sentinel(t) for t in ts], index=ts.index, dtype=bool)
    dim = pd.DataFrame({"event_datetime": ts})
    dim["month"] = ts.dt.month.where(real).astype("Int64")
    dim["year"] = ts.dt.year.where(real).astype("Int64")
    dim["day_of_week"] = (ts.dt.dayofweek + 1).where(real).astype("Int64")
    dim["day_name"] = ts.dt.day_name().astype(object).where(real, None)
    dim["month_name"] = ts.dt.month_name().astype(object).where(real, None)
    dim["is_weekend"] = (ts.dt.dayofweek >= 5).astype(object).where(real, None)
    return dim[DATE_COLS]


# junk

class JunkKey(NamedTuple):
    """Junk combination; None marks an absent unit or care unit and equals only None."""

    event_source_type: str | None
    measurement_unit: str | None
    careunit_id: str | None


def _absent(v) -> bool:
    return v is None or (not isinstance(v, str) and pd.isna(v))


def junk_key(event_source_type, measurement_unit, careunit_id) -> JunkKey:
    return JunkKey(*(None if _absent(v) else v for v in (event_source_type, measurement_unit, careunit_id)))


def junk_keys(df: pd.DataFrame) -> list[JunkKey]:
    cols = zip(df["event_source_type"], df["measurement_unit"], df["careunit_id"])
    return [junk_key(*triple) for triple in cols]


def build_dim_junk(fact: pd.DataFrame, existing: pd.DataFrame | None = None) -> pd.DataFrame:
    """Junk rows for combinations seen in `fact` but not in `existing`, in order of first appearance."""
    seen: set[JunkKey] = set()
    next_id = 1
    if existing is not None and len(existing):
        seen.update(junk_keys(existing))
        next_id = int(existing["junk_id"].max()) + 1

    rows = []
    for key in junk_keys(fact):
        if key in seen:
            continue
        seen.add(key)
        rows.append({"junk_id": next_id, **key._asdict()})
        next_id += 1
    return pd.DataFrame(rows, columns=JUNK_COLS)


def link_junk(fact: pd.DataFrame, dim_junk: pd.DataFrame) -> pd.DataFrame:
    """Set junk_id on every fact row from its (source type, unit, care unit) combination."""
    lookup = dict(zip(junk_keys(dim_junk), dim_junk["junk_id"]))
    out = fact.copy()
    out["junk_id"] = pd.Series([lookup.get(k) for k in junk_keys(out)], index=out.index, dtype="Int64")
    unlinked = int(out["junk_id"].isna().sum())
    if unlinked:
        log.warning("Junk: %d fact rows have no matching junk row", unlinked)
    return out
