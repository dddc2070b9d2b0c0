"""
Logging for pipeline runs: console plus a rotating file under LOGS_DIR.
Messages emitted on behalf of a run go through RunLogAdapter so they carry its id.
"""
import logging
import logging.handlers
from pathlib import Path
from clinical_dwh.core.config import LOG_LEVEL, LOGS_DIR

DEFAULT_FMT = "%(asctime)s - %(levelname)-5s - %(name)s - %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"


class RunLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['run_id'][:8]}] {msg}", kwargs


def run_logger(name: str, run_id: str) -> RunLogAdapter:
    return RunLogAdapter(logging.getLogger(name), {"run_id": run_id})


def setup_logging(level: str | None = None, file_name: str = "dwh_pipeline.log",
                  log_dir: str | Path | None = None) -> None:
    if getattr(setup_logging, "_configured", False):
        return
    log_dir = Path(log_dir or LOGS_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(DEFAULT_FMT, datefmt=DATE_FMT)

    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    run_file = logging.handlers.RotatingFileHandler(
        log_dir / file_name, maxBytes=5_000_000, backupCount=5, encoding="utf-8"
    )
    run_file.setFormatter(formatter)
    root.addHandler(run_file)

    # statement echo only when explicitly asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    setup_logging._configured = True
