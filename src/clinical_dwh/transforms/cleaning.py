"""
Value coercion shared by the transform passes. Source frames arrive either as
all-text CSV reads or typed database reads; these helpers accept both.
"""

from __future__ import annotations
import re
import pandas as pd

# strict decimal: digits, optional fractional part, nothing else
DECIMAL_RX = re.compile(r"^[0-9]+(\.[0-9]+)?$")

MISSING_TOKENS = {"", "nan", "none", "null", "nat"}


def _missing(v) -> bool:
    return v is None or (not isinstance(v, str) and pd.isna(v))


def _apply(fn, series: pd.Series) -> pd.Series:
    # object dtype: absent values are None, never NaN
    return pd.Series([fn(v) for v in series], index=series.index, dtype=object)


def clean_text(series: pd.Series) -> pd.Series:
    """Trim strings and map blanks / missing tokens to None."""
    def _one(v):
        if _missing(v):
            return None
        s = str(v).strip()
        return None if s.lower() in MISSING_TOKENS else s
    return _apply(_one, series)


def to_code(series: pd.Series) -> pd.Series:
    """Render source codes (itemid, ICD) as text; 50983.0 becomes '50983'."""
    def _one(v):
        if _missing(v):
            return None
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        s = str(v).strip()
        return s or None
    return _apply(_one, series)


def to_ids(series: pd.Series) -> pd.Series:
    """Integer identifiers; anything unparseable becomes <NA>."""
    return pd.to_numeric(series, errors="coerce").astype("Int64")


def parse_timestamps(series: pd.Series) -> pd.Series:
    """Lenient timestamp parsing; blanks and garbage become NaT."""
    if pd.api.types.is_datetime64_any_dtype(series):
        return series
    return pd.to_datetime(clean_text(series), errors="coerce", format="mixed")


def parse_decimal(series: pd.Series) -> pd.Series:
    """Keep values that are strict decimals, as text; everything else is None."""
    def _one(v):
        if _missing(v):
            return None
        s = str(v).strip()
        return s if DECIMAL_RX.match(s) else None
    return _apply(_one, series)


def normalize_name(series: pd.Series) -> pd.Series:
    """Case-insensitive, whitespace-trimmed matching key."""
    return _apply(lambda s: None if _missing(s) else s.lower(), clean_text(series))
