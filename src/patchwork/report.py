"""Run report persisted as JSON in the workspace.

The report is rewritten as batches settle, so ``patchwork status`` shows
live progress of a run in another terminal.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from patchwork.core.logging import get_logger
from patchwork.core.models import Batch, BatchStatus, GateResult

_logger = get_logger("report")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    PLANNED = "planned"
    """Dry run: batches planned, nothing executed."""

    SKIPPED = "skipped"
    """Fewer findings than the configured minimum."""

    RUNNING = "running"
    COMPLETED = "completed"
    """Every batch completed."""

    FAILED = "failed"
    """At least one batch failed."""

    TIMED_OUT = "timed_out"
    """The global run timeout elapsed before all batches settled."""

    ABORTED = "aborted"
    """A fatal remote error stopped the run."""


class BatchRecord(BaseModel):
    """Serializable view of a batch."""

    id: str
    group_key: str
    strategy: str
    severity: str
    priority: int
    status: BatchStatus
    finding_numbers: list[int]
    task_id: str | None = None
    task_url: str | None = None
    artifact_ref: str | None = None
    confidence_score: float | None = None
    failure_reason: str | None = None
    gate_passed: bool | None = None
    gate_attempts: int | None = None
    gate_reason: str | None = None
    needs_review: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_batch(cls, batch: Batch) -> BatchRecord:
        return cls(
            id=batch.id,
            group_key=batch.group_key,
            strategy=batch.strategy.value,
            severity=batch.severity.value,
            priority=batch.priority,
            status=batch.status,
            finding_numbers=[f.number for f in batch.findings],
            task_id=batch.task_id,
            task_url=batch.task_url,
            artifact_ref=batch.artifact_ref,
            confidence_score=batch.confidence_score,
            failure_reason=batch.failure_reason.value if batch.failure_reason else None,
            gate_passed=batch.gate_passed,
            needs_review=batch.needs_review,
            started_at=batch.started_at,
            completed_at=batch.completed_at,
        )


class RunReport(BaseModel):
    """Everything known about one run."""

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    repository: str
    status: RunStatus = RunStatus.RUNNING
    strategy: str = ""
    total_findings: int = 0
    batches: list[BatchRecord] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime | None = None

    @property
    def pull_requests(self) -> list[str]:
        return [b.artifact_ref for b in self.batches if b.artifact_ref]

    def count(self, status: BatchStatus) -> int:
        return sum(1 for b in self.batches if b.status == status)

    @property
    def needs_review(self) -> list[BatchRecord]:
        return [b for b in self.batches if b.needs_review]

    def update_batches(self, batches: Iterable[Batch]) -> None:
        """Refresh records from ``batches``, keeping recorded gate outcomes."""
        previous = {b.id: b for b in self.batches}
        records = []
        for batch in batches:
            record = BatchRecord.from_batch(batch)
            old = previous.get(batch.id)
            if old is not None:
                record.gate_attempts = old.gate_attempts
                record.gate_reason = old.gate_reason
            records.append(record)
        self.batches = records

    def record_gate(self, batch_id: str, result: GateResult) -> None:
        """Attach a gate outcome to the record of ``batch_id``."""
        for record in self.batches:
            if record.id == batch_id:
                record.gate_attempts = result.attempts
                record.gate_reason = result.reason
                return

    def finish(self, status: RunStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = _utc_now()


def save_report(report: RunReport, path: Path) -> None:
    """Write the report atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".json.tmp")
    with open(temp_file, "w") as f:
        json.dump(report.model_dump(mode="json"), f, indent=2)
    temp_file.replace(path)


def load_report(path: Path) -> RunReport | None:
    """Read a report; returns None when missing or corrupt."""
    if not path.exists():
        return None
    try:
        with open(path) as f:
            return RunReport.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        _logger.warning("report.load_failed", path=str(path), error=str(e))
        return None


__all__ = [
    "BatchRecord",
    "RunReport",
    "RunStatus",
    "load_report",
    "save_report",
]
