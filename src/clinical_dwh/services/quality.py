"""
Quality gate: read-only checks over staging and warehouse.

Every check yields a count with an expected value of zero. Nothing here raises
on bad data; a check that cannot run (for example after a partial run left a
table missing) is reported with actual=None and the error text.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable
import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from clinical_dwh.core.config import QUALITY_REPORT
from clinical_dwh.models.tables import (
    AggDisordersPerAdmission,
    Base,
    DimJunk,
    FACT_REFERENCES,
    FactDisorderEvent,
    STAGING,
)
from clinical_dwh.services.enforce import orphan_condition

log = logging.getLogger(__name__)

REPORT_COLS = ["category", "check", "actual", "expected", "passed", "detail"]


@dataclass
class CheckResult:
    category: str
    check: str
    actual: int | None
    expected: int = 0
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.actual is not None and self.actual == self.expected


@dataclass
class QualityReport:
    run_id: str | None = None
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def get(self, category: str, check: str) -> CheckResult:
        for c in self.checks:
            if c.category == category and c.check == check:
                return c
        raise KeyError(f"{category}/{check}")

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {"category": c.category, "check": c.check, "actual": c.actual,
             "expected": c.expected, "passed": c.passed, "detail": c.detail}
            for c in self.checks
        ]
        return pd.DataFrame(rows, columns=REPORT_COLS)

    def write_csv(self, path: str | Path = QUALITY_REPORT) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False)
        log.info("Wrote quality report: %s (%d checks)", path, len(self.checks))
        return path


def _count(conn: Connection, stmt) -> int:
    return conn.execute(stmt).scalar_one() or 0


def _run(engine: Engine, report: QualityReport, category: str, check: str,
         fn: Callable[[Connection], tuple[int, str]]) -> None:
    # own connection per check so one failed statement cannot poison the rest
    try:
        with engine.connect() as conn:
            actual, detail = fn(conn)
    except SQLAlchemyError as e:
        message = str(e).splitlines()[0]
        log.warning("Quality check %s/%s could not run: %s", category, check, message)
        report.checks.append(CheckResult(category, check, None, detail=message))
        return
    report.checks.append(CheckResult(category, check, actual, detail=detail))


# checks

def _row_count(name: str):
    stage, warehouse = STAGING[name], Base.metadata.tables[name]

    def check(conn):
        s = _count(conn, select(func.count()).select_from(stage))
        w = _count(conn, select(func.count()).select_from(warehouse))
        return s - w, f"stage={s} warehouse={w}"
    return check


def _fact_vs_aggregate(conn):
    fact = _count(conn, select(func.count()).select_from(FactDisorderEvent.__table__))
    agg = _count(conn, select(func.sum(AggDisordersPerAdmission.__table__.c.total_events)))
    return fact - agg, f"fact_total={fact} agg_total={agg}"


def _orphans(fact_col: str, dim_col, mandatory: bool):
    def check(conn):
        stmt = select(func.count()).select_from(FactDisorderEvent.__table__).where(
            orphan_condition(fact_col, dim_col, mandatory)
        )
        return _count(conn, stmt), ""
    return check


def _duplicates(*cols):
    def check(conn):
        dupes = select(*cols).group_by(*cols).having(func.count() > 1).subquery()
        return _count(conn, select(func.count()).select_from(dupes)), ""
    return check


def validate_warehouse(engine: Engine, run_id: str | None = None) -> QualityReport:
    report = QualityReport(run_id=run_id)

    for name in STAGING:
        _run(engine, report, "row_count", name, _row_count(name))

    _run(engine, report, "consistency", "fact_vs_aggregate", _fact_vs_aggregate)

    for name, (fact_col, dim_col, mandatory) in FACT_REFERENCES.items():
        _run(engine, report, "orphans", name, _orphans(fact_col, dim_col, mandatory))

    for name, (_, dim_col, _) in FACT_REFERENCES.items():
        _run(engine, report, "duplicates", name, _duplicates(dim_col))
    junk = DimJunk.__table__.c
    # GROUP BY puts NULLs in one group, so this is a null-safe triple comparison
    _run(engine, report, "duplicates", "junk_combination",
         _duplicates(junk.event_source_type, junk.measurement_unit, junk.careunit_id))

    failed = report.failures()
    if failed:
        for c in failed:
            log.warning("Quality check %s/%s: actual=%s expected=%s %s",
                        c.category, c.check, c.actual, c.expected, c.detail)
        log.warning("Quality gate: %d of %d checks need attention", len(failed), len(report.checks))
    else:
        log.info("Quality gate: all %d checks clean ✓", len(report.checks))
    return report
