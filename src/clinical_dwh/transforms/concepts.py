"""
Clinical concept dimension: electrolyte / acid-base lab items and ICD diagnoses
selected by keyword, plus the single Unknown fallback concept.
"""

from __future__ import annotations
import logging
import pandas as pd
from clinical_dwh.core.config import (
    CONCEPT_DIAGNOSIS,
    CONCEPT_LAB,
    CONCEPT_UNKNOWN,
    DIAGNOSIS_KEYWORDS,
    LAB_KEYWORDS,
    UNKNOWN_CONCEPT,
)
from clinical_dwh.transforms.cleaning import clean_text, normalize_name, to_code

log = logging.getLogger(__name__)

OUT_COLS = ["clinical_concept_id", "concept_type", "concept_name", "code", "description"]


def keyword_mask(text: pd.Series, keywords: list[str]) -> pd.Series:
    """True where `text` contains any keyword, ignoring case."""
    lowered = text.fillna("").astype(str).str.lower()
    mask = pd.Series(False, index=text.index)
    for kw in keywords:
        mask |= lowered.str.contains(kw.lower(), regex=False)
    return mask


def _concept_rows(catalog: pd.DataFrame, name_col: str, code_col: str, concept_type: str,
                  keywords: list[str]) -> pd.DataFrame:
    hits = catalog[keyword_mask(catalog[name_col], keywords)]
    names = clean_text(hits[name_col])
    return pd.DataFrame({
        "concept_type": concept_type,
        "concept_name": names,
        "code": to_code(hits[code_col]),
        "description": names,
    })


def build_dim_concepts(d_labitems: pd.DataFrame, d_icd_diagnoses: pd.DataFrame) -> pd.DataFrame:
    labs = _concept_rows(d_labitems, "label", "itemid", CONCEPT_LAB, LAB_KEYWORDS)
    dx = _concept_rows(d_icd_diagnoses, "long_title", "icd_code", CONCEPT_DIAGNOSIS, DIAGNOSIS_KEYWORDS)
    unknown = pd.DataFrame([UNKNOWN_CONCEPT])

    dim = pd.concat([labs, dx, unknown], ignore_index=True)
    dim.insert(0, "clinical_concept_id", range(1, len(dim) + 1))
    log.info("Concepts: %d lab, %d diagnosis, 1 unknown", len(labs), len(dx))
    return dim[OUT_COLS]


def unknown_concept_id(dim_concepts: pd.DataFrame) -> int:
    unknown = dim_concepts[dim_concepts["concept_type"] == CONCEPT_UNKNOWN]
    if len(unknown) != 1:
        raise ValueError(f"Expected exactly one Unknown concept, found {len(unknown)}")
    return int(unknown["clinical_concept_id"].iloc[0])


def _first_per_key(bucket: pd.DataFrame, key: pd.Series) -> dict:
    # several concepts can share a code or label; the lowest id wins so a match never fans out
    keyed = bucket.assign(_key=key).dropna(subset=["_key"])
    keyed = keyed.sort_values("clinical_concept_id").drop_duplicates("_key", keep="first")
    return dict(zip(keyed["_key"], keyed["clinical_concept_id"]))


def match_codes(codes: pd.Series, dim_concepts: pd.DataFrame, concept_type: str) -> pd.Series:
    """Exact code match within one concept type; unmatched rows are <NA>."""
    bucket = dim_concepts[dim_concepts["concept_type"] == concept_type]
    lookup = _first_per_key(bucket, bucket["code"])
    return to_code(codes).map(lookup).astype("Int64")


def match_names(names: pd.Series, dim_concepts: pd.DataFrame, concept_type: str = CONCEPT_LAB) -> pd.Series:
    """Trimmed, case-insensitive name match within one concept type."""
    bucket = dim_concepts[dim_concepts["concept_type"] == concept_type]
    lookup = _first_per_key(bucket, normalize_name(bucket["concept_name"]))
    return normalize_name(names).map(lookup).astype("Int64")


def assign_unknown(fact: pd.DataFrame, dim_concepts: pd.DataFrame) -> pd.DataFrame:
    """Point every fact row without a concept at the Unknown concept."""
    out = fact.copy()
    missing = out["clinical_concept_id"].isna()
    out.loc[missing, "clinical_concept_id"] = unknown_concept_id(dim_concepts)
    out["clinical_concept_id"] = out["clinical_concept_id"].astype("Int64")
    if missing.any():
        log.info("Assigned Unknown concept to %d unmatched events", int(missing.sum()))
    return out
