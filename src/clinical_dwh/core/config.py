
from pathlib import Path
import os
from dotenv import load_dotenv

load_dotenv()

# project paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
DATA_DIR    = BASE_DIR / "data"
RAW_DIR     = DATA_DIR / "raw"
LOGS_DIR    = DATA_DIR / "logs"
REPORTS_DIR = DATA_DIR / "reports"

# source: MIMIC-IV hosp module, either a database schema or a directory of CSV exports
SOURCE_DATABASE_URL = os.getenv("SOURCE_DATABASE_URL")
SOURCE_SCHEMA       = os.getenv("SOURCE_SCHEMA", "mimic4")
MIMIC_DIR           = Path(os.getenv("MIMIC_DIR", RAW_DIR / "mimic4"))

# reports and logs
QUALITY_REPORT = REPORTS_DIR / "quality_report.csv"
LOG_LEVEL      = os.getenv("LOG_LEVEL", "INFO")

# Database
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5433")
DB_NAME = os.getenv("DB_NAME")

# staging tables share the warehouse names behind this prefix
STAGE_PREFIX = "stage_"

# boundary placeholders for missing admission / stay timestamps
SENTINEL_PAST   = "1900-01-01 00:00:00"
SENTINEL_FUTURE = "2999-12-31 23:59:59"

# event source types
SOURCE_LAB       = "lab"
SOURCE_DIAGNOSIS = "diagnosis"
SOURCE_OMR       = "omr"

# concept types
CONCEPT_LAB       = "Lab"
CONCEPT_DIAGNOSIS = "Diagnosis"
CONCEPT_UNKNOWN   = "Unknown"

UNKNOWN_CONCEPT = {
    "concept_type": CONCEPT_UNKNOWN,
    "concept_name": "Unknown concept",
    "code": "UNKNOWN",
    "description": "No matching concept found",
}

# electrolyte / acid-base allow-lists (case-insensitive substring match)
LAB_KEYWORDS = ["sodium", "potassium", "bicarbonate", "chloride", "ph", "base excess", "anion gap"]
DIAGNOSIS_KEYWORDS = [
    "hypo", "hyper", "acidosis", "alkalosis", "electrolyte",
    "sodium", "potassium", "bicarbonate", "ph",
]
OMR_KEYWORDS = ["sodium", "potassium", "bicarbonate", "chloride", "anion gap", "ph"]


def database_url() -> str:
    """Warehouse connection string; DATABASE_URL wins over the DB_* parts."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if not all([DB_USER, DB_PASSWORD, DB_NAME]):
        raise ValueError("Missing required DB environment variables")
    return f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
