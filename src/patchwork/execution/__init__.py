"""Execution layer: scheduling of batches, poll backoff and the CI gate."""

from patchwork.execution.backoff import PollBackoff
from patchwork.execution.concurrency import AdaptiveConcurrency
from patchwork.execution.gate import (
    CheckResult,
    CheckState,
    CheckStatusProvider,
    CIGate,
    GitHubChecksProvider,
    extract_pr_number,
)
from patchwork.execution.scheduler import BatchScheduler, SchedulerStats

__all__ = [
    "AdaptiveConcurrency",
    "BatchScheduler",
    "CIGate",
    "CheckResult",
    "CheckState",
    "CheckStatusProvider",
    "GitHubChecksProvider",
    "PollBackoff",
    "SchedulerStats",
    "extract_pr_number",
]
