from clinical_dwh.models.tables import (
    Base,
    DimPatient,
    DimAdmission,
    DimProvider,
    DimConcept,
    DimDate,
    DimJunk,
    FactDisorderEvent,
    AggDisordersPerAdmission,
    EtlRunLog,
    DIMENSIONS,
    WAREHOUSE_TABLES,
    STAGING,
    UNCHECKED_FACT,
    FACT_REFERENCES,
)
