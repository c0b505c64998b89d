"""Domain models: findings, batches and remote tasks.

Findings are immutable once loaded. A Batch is owned by the scheduler
while it runs and only its lifecycle fields change after creation; the
status moves strictly ``pending -> in_progress -> completed|failed``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from patchwork.core.exceptions import InvalidTransitionError

UNKNOWN_CATEGORY = "UNKNOWN"
ROOT_DIRECTORY = "/"


def _utc_now() -> datetime:
    return datetime.now(UTC)


# ─── Severity ──────────────────────────────────────────────────────


class Severity(str, Enum):
    """Finding severity as reported by the scanner."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    WARNING = "warning"
    NOTE = "note"
    ERROR = "error"

    @classmethod
    def parse(cls, raw: object) -> Severity:
        """Map a raw scanner severity to a Severity; unknown values are MEDIUM."""
        if not isinstance(raw, str) or not raw:
            return cls.MEDIUM
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.MEDIUM

    @property
    def rank(self) -> int:
        """Sort rank, lower is more severe. ``error`` ranks with ``high``."""
        return _SEVERITY_RANK[self]

    @property
    def base_score(self) -> int:
        """Base priority contribution of this severity."""
        return _SEVERITY_SCORE[self]


# Iteration order used when grouping by severity and when deriving a
# batch's severity. ``error`` comes last here even though it ranks and
# scores like ``high``.
SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.WARNING,
    Severity.NOTE,
    Severity.ERROR,
)

_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.ERROR: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.WARNING: 4,
    Severity.NOTE: 5,
}

_SEVERITY_SCORE: dict[Severity, int] = {
    Severity.CRITICAL: 100,
    Severity.HIGH: 80,
    Severity.ERROR: 80,
    Severity.MEDIUM: 60,
    Severity.LOW: 40,
    Severity.WARNING: 20,
    Severity.NOTE: 10,
}


class BatchingStrategy(str, Enum):
    """How the partitioner groups findings into batches."""

    SEVERITY_THEN_CATEGORY = "severity-then-category"
    SEVERITY_ONLY = "severity-only"
    BY_LOCATION = "by-location"
    BY_CATEGORY = "by-category"
    BY_COMPLEXITY = "by-complexity"

    @classmethod
    def _missing_(cls, value: object) -> BatchingStrategy | None:
        # Names used by CodeQL-oriented configs
        aliases = {
            "severity-then-cwe": cls.SEVERITY_THEN_CATEGORY,
            "by-file": cls.BY_LOCATION,
            "by-cwe": cls.BY_CATEGORY,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class Complexity(str, Enum):
    """Estimated fix complexity bucket, in processing order."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


# ─── Findings ──────────────────────────────────────────────────────


class Location(BaseModel):
    """Source location of a finding."""

    model_config = ConfigDict(frozen=True)

    path: str = ""
    start_line: int = 0
    end_line: int = 0

    @property
    def directory(self) -> str:
        """Containing directory; root-level or path-less findings give ``/``."""
        return "/".join(self.path.split("/")[:-1]) or ROOT_DIRECTORY

    @property
    def line_span(self) -> int:
        return self.end_line - self.start_line


class Finding(BaseModel):
    """One security finding to remediate (a work item)."""

    model_config = ConfigDict(frozen=True)

    number: int
    severity: Severity = Severity.MEDIUM
    category: str = UNKNOWN_CATEGORY
    location: Location = Field(default_factory=Location)
    rule_id: str = "unknown"
    rule_name: str = "Unknown Rule"
    description: str = ""
    message: str = ""
    html_url: str = ""
    categories: tuple[str, ...] = ()
    created_at: datetime | None = None


# ─── Remote tasks ──────────────────────────────────────────────────


class TaskStatus(str, Enum):
    """Closed status vocabulary for remote tasks.

    Raw service statuses are mapped onto these at the client boundary
    (see ``patchwork.backends.status``).
    """

    QUEUED = "queued"
    WORKING = "working"
    BLOCKED = "blocked"
    RESUMED = "resumed"
    FINISHED = "finished"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class TaskProgress(BaseModel):
    """Structured progress a remote agent reports about its own work."""

    percent: float | None = None
    current_step: str | None = None
    artifact_ref: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    raw: dict[str, Any] = Field(default_factory=dict)


class TaskMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime = Field(default_factory=_utc_now)


class TaskHandle(BaseModel):
    """What a successful ``create`` returns."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    url: str


class RemoteTask(BaseModel):
    """Snapshot of one remote execution (an agent session)."""

    task_id: str
    url: str
    status: TaskStatus = TaskStatus.QUEUED
    progress: TaskProgress | None = None
    artifact_ref: str | None = None
    messages: list[TaskMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @classmethod
    def from_handle(cls, handle: TaskHandle) -> RemoteTask:
        return cls(task_id=handle.task_id, url=handle.url, status=TaskStatus.WORKING)

    @property
    def artifact(self) -> str | None:
        """Produced artifact, preferring the service's own reference."""
        if self.artifact_ref:
            return self.artifact_ref
        if self.progress is not None and self.progress.artifact_ref:
            return self.progress.artifact_ref
        return None

    @property
    def percent_complete(self) -> float:
        if self.progress is None or self.progress.percent is None:
            return 0.0
        return self.progress.percent


# ─── Batches ───────────────────────────────────────────────────────


class BatchStatus(str, Enum):
    """Lifecycle status of a batch."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


class FailureReason(str, Enum):
    """Why a batch failed. ``GATE_FAILED`` is the only one with an artifact."""

    TIMEOUT = "timeout"
    POLL_FAILURES = "poll_failures"
    TASK_FAILED = "task_failed"
    GATE_FAILED = "gate_failed"
    CREATE_FAILED = "create_failed"


_ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.IN_PROGRESS, BatchStatus.FAILED}),
    BatchStatus.IN_PROGRESS: frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
}


class Batch(BaseModel):
    """A bounded, ordered group of findings handled by one remote task."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    findings: list[Finding] = Field(min_length=1)
    strategy: BatchingStrategy
    group_key: str
    severity: Severity
    priority: int
    status: BatchStatus = BatchStatus.PENDING
    task_id: str | None = None
    task_url: str | None = None
    artifact_ref: str | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    failure_reason: FailureReason | None = None
    gate_passed: bool | None = None
    needs_review: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def size(self) -> int:
        return len(self.findings)

    def _transition(self, target: BatchStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Batch {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_in_progress(self, handle: TaskHandle) -> None:
        """Link the batch to its remote task and start the clock."""
        self._transition(BatchStatus.IN_PROGRESS)
        self.task_id = handle.task_id
        self.task_url = handle.url
        self.started_at = _utc_now()

    def mark_completed(self) -> None:
        self._transition(BatchStatus.COMPLETED)
        self.completed_at = _utc_now()

    def mark_failed(self, reason: FailureReason) -> None:
        self._transition(BatchStatus.FAILED)
        self.failure_reason = reason
        self.completed_at = _utc_now()


class GateResult(BaseModel):
    """Outcome of waiting on an external check for a produced artifact."""

    passed: bool
    attempts: int = 0
    reason: str = ""


__all__ = [
    "Batch",
    "BatchStatus",
    "BatchingStrategy",
    "Complexity",
    "FailureReason",
    "Finding",
    "GateResult",
    "Location",
    "RemoteTask",
    "ROOT_DIRECTORY",
    "SEVERITY_ORDER",
    "Severity",
    "TaskHandle",
    "TaskMessage",
    "TaskProgress",
    "TaskStatus",
    "UNKNOWN_CATEGORY",
]
