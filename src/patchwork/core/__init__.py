"""Core domain models, configuration and errors."""

from patchwork.core.exceptions import (
    FatalRemoteError,
    PatchworkError,
    RemoteTaskError,
)
from patchwork.core.models import (
    Batch,
    BatchingStrategy,
    BatchStatus,
    FailureReason,
    Finding,
    RemoteTask,
    Severity,
    TaskStatus,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "BatchingStrategy",
    "FailureReason",
    "FatalRemoteError",
    "Finding",
    "PatchworkError",
    "RemoteTask",
    "RemoteTaskError",
    "Severity",
    "TaskStatus",
]
