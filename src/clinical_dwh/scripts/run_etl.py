"""
CLI wrapper for the clinical disorder warehouse pipeline.
Run with:
    python -m clinical_dwh.scripts.run_etl [MIMIC_CSV_DIR]
Or directly:
    python src/clinical_dwh/scripts/run_etl.py
"""
import logging
import sys
from clinical_dwh.core.config import QUALITY_REPORT
from clinical_dwh.core.logging_setup import setup_logging
from clinical_dwh.services.etl import run_etl

if __name__ == "__main__":
    setup_logging()
    log = logging.getLogger(__name__)

    source_dir = sys.argv[1] if len(sys.argv) > 1 else None
    log.info("Starting clinical warehouse pipeline")
    run = run_etl(source_dir=source_dir, report_path=QUALITY_REPORT)

    print(run.report.to_frame().to_string(index=False))
    log.info(f"Run {run.run_id} stages: {run.stage_list}")
