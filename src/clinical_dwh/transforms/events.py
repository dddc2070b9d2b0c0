"""
Fact builder: conform lab events, ICD diagnoses and OMR bedside measurements
into disorder-event rows, then backfill care unit and provider stay.
"""

from __future__ import annotations
import logging
import pandas as pd
from clinical_dwh.core.config import (
    CONCEPT_DIAGNOSIS,
    CONCEPT_LAB,
    OMR_KEYWORDS,
    SOURCE_DIAGNOSIS,
    SOURCE_LAB,
    SOURCE_OMR,
)
from clinical_dwh.transforms.cleaning import clean_text, parse_decimal, parse_timestamps, to_code, to_ids
from clinical_dwh.transforms.concepts import keyword_mask, match_codes, match_names
from clinical_dwh.transforms.intervals import PAST, contains_mask

log = logging.getLogger(__name__)

FACT_COLS = [
    "disorder_event_id",
    "patient_id",
    "admission_id",
    "event_datetime",
    "careunit_id",
    "clinical_concept_id",
    "measurement_value",
    "measurement_unit",
    "event_source_type",
    "event_date",
    "junk_id",
    "provider_id",
]

PASS_COLS = [
    "patient_id", "admission_id", "event_datetime", "clinical_concept_id",
    "measurement_value", "measurement_unit", "event_source_type", "event_date",
]


def _report_dropped(label: str, total: int, kept: int) -> None:
    if total - kept:
        log.warning("%s: skipped %d rows missing required fields", label, total - kept)
    log.info("%s: %d events", label, kept)


def lab_events(labevents: pd.DataFrame, dim_concepts: pd.DataFrame) -> pd.DataFrame:
    """Lab pass: needs patient, admission and chart time; value and unit are copied as-is."""
    value = clean_text(labevents["value"])
    df = pd.DataFrame({
        "patient_id": to_ids(labevents["subject_id"]),
        "admission_id": to_ids(labevents["hadm_id"]),
        "event_datetime": parse_timestamps(labevents["charttime"]),
        "clinical_concept_id": match_codes(labevents["itemid"], dim_concepts, CONCEPT_LAB),
        "measurement_value": value.where(value.notna(), to_code(labevents["valuenum"])),
        "measurement_unit": clean_text(labevents["valueuom"]),
        "event_source_type": SOURCE_LAB,
    })
    keep = df["patient_id"].notna() & df["admission_id"].notna() & df["event_datetime"].notna()
    df = df[keep].copy()
    df["event_date"] = df["event_datetime"]
    _report_dropped("Lab pass", len(labevents), len(df))
    return df[PASS_COLS]


def diagnosis_events(diagnoses_icd: pd.DataFrame, dim_admissions: pd.DataFrame,
                     dim_concepts: pd.DataFrame) -> pd.DataFrame:
    """Diagnosis pass: timed at the admission's admit time, far past when that is unknown."""
    df = pd.DataFrame({
        "patient_id": to_ids(diagnoses_icd["subject_id"]),
        "admission_id": to_ids(diagnoses_icd["hadm_id"]),
        "clinical_concept_id": match_codes(diagnoses_icd["icd_code"], dim_concepts, CONCEPT_DIAGNOSIS),
    })
    df = df[df["patient_id"].notna() & df["admission_id"].notna()]

    df = df.merge(dim_admissions[["admission_id", "admittime"]], on="admission_id", how="left")
    df["event_datetime"] = df["admittime"].fillna(pd.Timestamp(PAST))
    df["measurement_value"] = None
    df["measurement_unit"] = None
    df["event_source_type"] = SOURCE_DIAGNOSIS
    df["event_date"] = pd.NaT
    _report_dropped("Diagnosis pass", len(diagnoses_icd), len(df))
    return df[PASS_COLS]


def omr_events(omr: pd.DataFrame, dim_concepts: pd.DataFrame) -> pd.DataFrame:
    """OMR pass: electrolyte results only, numeric text kept when it is a strict decimal."""
    hits = omr[keyword_mask(omr["result_name"], OMR_KEYWORDS)]
    df = pd.DataFrame({
        "patient_id": to_ids(hits["subject_id"]),
        "admission_id": pd.Series(pd.NA, index=hits.index, dtype="Int64"),
        "event_datetime": parse_timestamps(hits["chartdate"]),
        "clinical_concept_id": match_names(hits["result_name"], dim_concepts, CONCEPT_LAB),
        "measurement_value": parse_decimal(hits["result_value"]),
        "measurement_unit": None,
        "event_source_type": SOURCE_OMR,
    })
    df = df[df["patient_id"].notna() & df["event_datetime"].notna()].copy()
    df["event_date"] = df["event_datetime"]
    _report_dropped("OMR pass", len(hits), len(df))
    return df[PASS_COLS]


def unify_events(*passes: pd.DataFrame) -> pd.DataFrame:
    """Stack the pass outputs into fact rows with generated event ids."""
    fact = pd.concat(passes, ignore_index=True)
    fact.insert(0, "disorder_event_id", range(1, len(fact) + 1))
    fact["careunit_id"] = None
    fact["junk_id"] = pd.Series(pd.NA, index=fact.index, dtype="Int64")
    fact["provider_id"] = pd.Series(pd.NA, index=fact.index, dtype="Int64")
    for col in ("patient_id", "admission_id", "clinical_concept_id"):
        fact[col] = fact[col].astype("Int64")
    return fact[FACT_COLS]


def resolve_stays(fact: pd.DataFrame, dim_provider: pd.DataFrame) -> pd.DataFrame:
    """Pick, per fact row, the stay of the same patient and admission containing the event time.

    Bounds are inclusive and open bounds are unbounded. When several stays
    contain the event the one entered last wins, then the highest provider_id.
    Returns disorder_event_id, provider_id, careunit_id for matched rows only.
    """
    events = fact[["disorder_event_id", "patient_id", "admission_id", "event_datetime"]]
    events = events.dropna(subset=["patient_id", "admission_id", "event_datetime"])
    stays = dim_provider[["provider_id", "patient_id", "admission_id", "careunit_id", "intime", "outtime"]]
    stays = stays.dropna(subset=["patient_id", "admission_id"])

    candidates = events.merge(stays, on=["patient_id", "admission_id"], how="inner")
    candidates = candidates[contains_mask(candidates["intime"], candidates["outtime"], candidates["event_datetime"])]

    ambiguous = int(candidates["disorder_event_id"].duplicated().sum())
    if ambiguous:
        log.info("Stay resolution: %d extra overlapping stay matches resolved by latest entry", ambiguous)

    candidates = candidates.sort_values(["disorder_event_id", "intime", "provider_id"], na_position="first")
    chosen = candidates.drop_duplicates("disorder_event_id", keep="last")
    return chosen[["disorder_event_id", "provider_id", "careunit_id"]]


def backfill_care_units(fact: pd.DataFrame, dim_provider: pd.DataFrame) -> pd.DataFrame:
    chosen = resolve_stays(fact, dim_provider)
    lookup = dict(zip(chosen["disorder_event_id"], chosen["careunit_id"]))
    out = fact.copy()
    out["careunit_id"] = clean_text(out["disorder_event_id"].map(lookup))
    log.info("Care units: %d of %d events placed in a unit", int(out["careunit_id"].notna().sum()), len(out))
    return out


def backfill_providers(fact: pd.DataFrame, dim_provider: pd.DataFrame) -> pd.DataFrame:
    chosen = resolve_stays(fact, dim_provider)
    lookup = dict(zip(chosen["disorder_event_id"], chosen["provider_id"]))
    out = fact.copy()
    out["provider_id"] = out["disorder_event_id"].map(lookup).astype("Int64")
    log.info("Providers: %d of %d events linked to a stay", int(out["provider_id"].notna().sum()), len(out))
    return out
