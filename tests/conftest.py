"""
Shared fixtures: a small MIMIC-IV shaped source and a file-backed SQLite warehouse.
"""
import pandas as pd
import pytest
from clinical_dwh.core.db import get_engine
from clinical_dwh.services.etl import run_etl


def _frame(cols, rows):
    return pd.DataFrame(rows, columns=cols, dtype=object)


@pytest.fixture
def sources():
    """Raw relations as a CSV export would read them (all text)."""
    return {
        "patients": _frame(["subject_id", "gender", "dod"], [
            ["1", "F", None],
            ["2", "M", "2150-03-01"],
            ["3", "F", None],
        ]),
        "admissions": _frame(
            ["subject_id", "hadm_id", "admittime", "dischtime", "admission_type", "insurance"], [
                ["1", "100", "2150-01-01 08:00:00", "2150-01-05 12:00:00", "EMERGENCY", "Medicare"],
                ["2", "200", "2150-02-01 09:00:00", None, "URGENT", "Other"],
                ["3", "300", "", "2150-03-03 10:00:00", "ELECTIVE", "Medicaid"],
            ]),
        "transfers": _frame(["subject_id", "hadm_id", "careunit", "intime", "outtime"], [
            ["1", "100", "MICU", "2150-01-01 08:00:00", "2150-01-03 08:00:00"],
            ["1", "100", "Med Floor", "2150-01-03 08:00:00", "2150-01-05 12:00:00"],
            ["2", "200", "SICU", "2150-02-01 09:00:00", None],
            ["3", None, "Emergency Department", "2150-03-01 00:00:00", "2150-03-01 05:00:00"],
        ]),
        "d_labitems": _frame(["itemid", "label"], [
            ["50983", "Sodium"],
            ["50971", "Potassium"],
            ["50882", "Bicarbonate"],
            ["50912", "Creatinine"],
            ["50820", "pH"],
        ]),
        "labevents": _frame(
            ["subject_id", "hadm_id", "itemid", "charttime", "value", "valuenum", "valueuom"], [
                ["1", "100", "50983", "2150-01-02 10:00:00", "140", "140", "mEq/L"],
                ["1", "100", "50971", "2150-01-03 08:00:00", "4.1", "4.1", "mEq/L"],
                ["2", "200", "50912", "2150-02-10 10:00:00", "1.1", "1.1", "mg/dL"],
                ["1", None, "50983", "2150-01-02 11:00:00", "139", "139", "mEq/L"],
                ["2", "200", "50983", None, "141", "141", "mEq/L"],
                ["1", "100", "50882", "not a date", "24", "24", "mEq/L"],
            ]),
        "d_icd_diagnoses": _frame(["icd_code", "long_title"], [
            ["2761", "Hyposmolality and/or hyponatremia"],
            ["E872", "Acidosis"],
            ["V3000", "Single liveborn, born in hospital"],
        ]),
        "diagnoses_icd": _frame(["subject_id", "hadm_id", "icd_code"], [
            ["1", "100", "2761"],
            ["2", "200", "Z9999"],
            ["3", "300", "E872"],
        ]),
        "omr": _frame(["subject_id", "chartdate", "result_name", "result_value"], [
            ["1", "2150-01-04", "Sodium", "141"],
            ["1", "2150-01-04", " sodium ", "140.5"],
            ["2", "2150-02-11", "Potassium", "n/a"],
            ["3", "2150-03-02", "Blood Pressure", "120/80"],
        ]),
    }


@pytest.fixture
def engine(tmp_path):
    eng = get_engine(f"sqlite:///{tmp_path / 'dwh.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def finished_run(engine, sources):
    return run_etl(engine=engine, sources=sources)
