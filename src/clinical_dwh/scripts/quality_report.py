"""
Re-run the quality gate against the current staging and warehouse tables.
Run with: python -m clinical_dwh.scripts.quality_report
"""
from clinical_dwh.core.config import QUALITY_REPORT
from clinical_dwh.core.db import get_engine
from clinical_dwh.core.logging_setup import setup_logging
from clinical_dwh.services.quality import validate_warehouse

def main():
    setup_logging()
    report = validate_warehouse(get_engine())
    report.write_csv(QUALITY_REPORT)

    print(report.to_frame().to_string(index=False))
    print(f"\n{len(report.checks) - len(report.failures())}/{len(report.checks)} checks clean")

if __name__ == "__main__":
    main()
