"""
ORM models for the disorder-event warehouse, plus the Core tables used for the
staging area and for the constraint-free fact table that promotion loads into.
"""

from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import (
    Column, String, Boolean, DateTime, Date, Integer, ForeignKey, Text, MetaData, Table
)
from clinical_dwh.core.config import STAGE_PREFIX

class Base(DeclarativeBase):
    pass

class DimPatient(Base):
    __tablename__ = "dim_patients"

    patient_id = Column(Integer, primary_key=True, autoincrement=False)
    gender     = Column(String(10))
    dod        = Column(Date)

class DimAdmission(Base):
    __tablename__ = "dim_admissions"

    admission_id   = Column(Integer, primary_key=True, autoincrement=False)
    patient_id     = Column(Integer)
    admission_type = Column(String(50))
    admittime      = Column(DateTime)
    dischtime      = Column(DateTime)
    insurance      = Column(String(50))

class DimProvider(Base):
    """One care-unit stay (transfer) per row."""
    __tablename__ = "dim_provider"

    provider_id  = Column(Integer, primary_key=True, autoincrement=False)
    patient_id   = Column(Integer)
    admission_id = Column(Integer)
    careunit_id  = Column(String(50))
    intime       = Column(DateTime)
    outtime      = Column(DateTime)

class DimConcept(Base):
    __tablename__ = "dim_concepts"

    clinical_concept_id = Column(Integer, primary_key=True, autoincrement=False)
    concept_type        = Column(String(200))   # Lab / Diagnosis / Unknown
    concept_name        = Column(String(2500))
    code                = Column(String(200))
    description         = Column(Text)

class DimDate(Base):
    __tablename__ = "dim_date"

    event_datetime = Column(DateTime, primary_key=True)
    month          = Column(Integer)
    year           = Column(Integer)
    day_of_week    = Column(Integer)  # 1 = Monday
    day_name       = Column(String(10))
    month_name     = Column(String(10))
    is_weekend     = Column(Boolean)

class DimJunk(Base):
    __tablename__ = "dim_junk_disorder_event"

    junk_id           = Column(Integer, primary_key=True, autoincrement=False)
    event_source_type = Column(String(20))
    measurement_unit  = Column(String(50))
    careunit_id       = Column(String(50))

class FactDisorderEvent(Base):
    __tablename__ = "fact_disorder_events"

    disorder_event_id   = Column(Integer, primary_key=True, autoincrement=True)
    patient_id          = Column(Integer, ForeignKey("dim_patients.patient_id", name="fk_patient"), nullable=False)
    admission_id        = Column(Integer, ForeignKey("dim_admissions.admission_id", name="fk_admission"))
    event_datetime      = Column(DateTime, ForeignKey("dim_date.event_datetime", name="fk_date"))
    careunit_id         = Column(String(50))
    clinical_concept_id = Column(Integer, ForeignKey("dim_concepts.clinical_concept_id", name="fk_concept"))
    measurement_value   = Column(String(100))
    measurement_unit    = Column(String(50))
    event_source_type   = Column(String(20))
    junk_id             = Column(Integer, ForeignKey("dim_junk_disorder_event.junk_id", name="fk_junk"))
    provider_id         = Column(Integer, ForeignKey("dim_provider.provider_id", name="fk_provider"))

class AggDisordersPerAdmission(Base):
    __tablename__ = "agg_disorders_per_admission"

    agg_id            = Column(Integer, primary_key=True, autoincrement=True)
    admission_id      = Column(Integer)
    total_events      = Column(Integer)
    unique_concepts   = Column(Integer)
    different_sources = Column(Integer)

class EtlRunLog(Base):
    __tablename__ = "etl_run_log"

    run_id      = Column(String(32), primary_key=True)
    started_at  = Column(DateTime, nullable=False)
    finished_at = Column(DateTime)
    status      = Column(String(20), nullable=False, default="running")
    stages      = Column(Text)
    notes       = Column(Text)


DIMENSIONS = [DimPatient, DimAdmission, DimProvider, DimConcept, DimDate, DimJunk]

# rebuilt on every run, in load order
WAREHOUSE_TABLES = [m.__table__ for m in DIMENSIONS] + [
    FactDisorderEvent.__table__,
    AggDisordersPerAdmission.__table__,
]


def unconstrained_copy(table: Table, name: str, metadata: MetaData, keep_keys: bool = True) -> Table:
    """Same columns and types as `table`, without foreign keys."""
    cols = [
        Column(
            c.name, c.type,
            primary_key=keep_keys and c.primary_key,
            nullable=c.nullable if keep_keys else True,
            autoincrement=c.autoincrement if keep_keys else False,
        )
        for c in table.columns
    ]
    return Table(name, metadata, *cols)


# staging area: same shape as the warehouse, no keys or constraints
staging_metadata = MetaData()
STAGING = {
    t.name: unconstrained_copy(t, STAGE_PREFIX + t.name, staging_metadata, keep_keys=False)
    for t in WAREHOUSE_TABLES if t is not AggDisordersPerAdmission.__table__
}
STAGING["fact_disorder_events"].append_column(Column("event_date", DateTime))

# promotion target; the enforcer swaps in FactDisorderEvent once orphans are gone
unchecked_metadata = MetaData()
UNCHECKED_FACT = unconstrained_copy(FactDisorderEvent.__table__, FactDisorderEvent.__tablename__, unchecked_metadata)

# fact column -> referenced dimension column; only patient_id is mandatory
FACT_REFERENCES = {
    "patient":   ("patient_id", DimPatient.__table__.c.patient_id, True),
    "admission": ("admission_id", DimAdmission.__table__.c.admission_id, False),
    "concept":   ("clinical_concept_id", DimConcept.__table__.c.clinical_concept_id, False),
    "date":      ("event_datetime", DimDate.__table__.c.event_datetime, False),
    "junk":      ("junk_id", DimJunk.__table__.c.junk_id, False),
    "provider":  ("provider_id", DimProvider.__table__.c.provider_id, False),
}
