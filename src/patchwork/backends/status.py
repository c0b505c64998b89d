"""Mapping of raw remote statuses onto TaskStatus.

Raw status strings never leave the backend: they are mapped here, and a
service with a different vocabulary only needs a different table.
"""

from __future__ import annotations

from patchwork.core.models import RemoteTask, TaskStatus

STATUS_MAP: dict[str, TaskStatus] = {
    "queued": TaskStatus.QUEUED,
    "pending": TaskStatus.QUEUED,
    "working": TaskStatus.WORKING,
    "running": TaskStatus.WORKING,
    "blocked": TaskStatus.BLOCKED,
    "resumed": TaskStatus.RESUMED,
    "finished": TaskStatus.FINISHED,
    "expired": TaskStatus.EXPIRED,
    "suspended": TaskStatus.SUSPENDED,
}

# Prefix matches for transitional states such as ``suspend_requested_frontend``
_PREFIX_MAP: tuple[tuple[str, TaskStatus], ...] = (
    ("suspend_requested", TaskStatus.SUSPENDED),
    ("resume_requested", TaskStatus.RESUMED),
)

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({
    TaskStatus.FINISHED,
    TaskStatus.EXPIRED,
    TaskStatus.SUSPENDED,
})

COMPLETE_PERCENT = 100.0


def map_status(raw: str | None) -> TaskStatus:
    """Map a raw service status to TaskStatus; unknown values are QUEUED."""
    if not raw:
        return TaskStatus.QUEUED
    value = raw.strip().lower()
    if value in STATUS_MAP:
        return STATUS_MAP[value]
    for prefix, status in _PREFIX_MAP:
        if value.startswith(prefix):
            return status
    return TaskStatus.QUEUED


def is_terminal(task: RemoteTask) -> bool:
    """Whether a task is done.

    A task is done when its status is terminal, or when it reports full
    progress and has produced an artifact, whatever its status says.
    """
    if task.status in TERMINAL_STATUSES:
        return True
    return task.percent_complete >= COMPLETE_PERCENT and task.artifact is not None
