"""Partitioning of findings into prioritized batches."""

from patchwork.batching.complexity import estimate_complexity
from patchwork.batching.partitioner import (
    BatchSummary,
    Partitioner,
    calculate_priority,
    highest_severity,
    partition,
    prioritize_batch,
    rebatch,
    skip_batch,
    summarize,
)

__all__ = [
    "BatchSummary",
    "Partitioner",
    "calculate_priority",
    "estimate_complexity",
    "highest_severity",
    "partition",
    "prioritize_batch",
    "rebatch",
    "skip_batch",
    "summarize",
]
