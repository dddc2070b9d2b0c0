"""
Pipeline run context: run id, stage completion flags and the versioned frames
each stage produced.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
import pandas as pd
from clinical_dwh.core.logging_setup import run_logger

if TYPE_CHECKING:
    from clinical_dwh.services.quality import QualityReport

# stage -> stages that must have completed first
PREREQUISITES = {
    "extract":          (),
    "concepts":         ("extract",),
    "dimensions":       ("extract",),
    "events":           ("concepts", "dimensions"),
    "unknown_concepts": ("events",),
    "care_units":       ("unknown_concepts",),
    "providers":        ("care_units",),
    "junk":             ("providers",),
    "dates":            ("junk",),
    "staging":          ("dates",),
    "promotion":        ("staging",),
    "enforcement":      ("promotion",),
    "aggregation":      ("enforcement",),
    "quality_gate":     ("aggregation",),
}
STAGES = list(PREREQUISITES)


class PipelineStageError(RuntimeError):
    """A stage was started before the stages it reads from completed."""


@dataclass
class PipelineRun:
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=datetime.now)
    completed: dict[str, datetime] = field(default_factory=dict)
    frames: dict[str, list[tuple[str, pd.DataFrame]]] = field(default_factory=dict)
    report: QualityReport | None = None

    def start(self, stage: str) -> None:
        if stage not in PREREQUISITES:
            raise PipelineStageError(f"Unknown stage '{stage}'")
        missing = [s for s in PREREQUISITES[stage] if s not in self.completed]
        if missing:
            raise PipelineStageError(f"Stage '{stage}' needs {missing} to complete first")
        run_logger(__name__, self.run_id).info("stage %s", stage)

    def complete(self, stage: str, **frames: pd.DataFrame) -> None:
        """Mark `stage` done and keep the frames it produced as new versions."""
        for name, df in frames.items():
            self.frames.setdefault(name, []).append((stage, df))
        self.completed[stage] = datetime.now()

    def frame(self, name: str) -> pd.DataFrame:
        """Latest version of a named frame."""
        if name not in self.frames:
            raise KeyError(f"No frame '{name}' produced in run {self.run_id}")
        return self.frames[name][-1][1]

    def versions(self, name: str) -> list[str]:
        """Stages that produced a version of `name`, oldest first."""
        return [stage for stage, _ in self.frames.get(name, [])]

    def release(self, *names: str) -> None:
        """Drop all but the latest version of each named frame."""
        for name in names:
            if name in self.frames:
                self.frames[name] = self.frames[name][-1:]

    @property
    def stage_list(self) -> str:
        return ",".join(s for s in STAGES if s in self.completed)
