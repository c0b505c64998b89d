"""Partition findings into prioritized, bounded-size batches.

Partitioning is pure: the same findings, strategy and size always yield
batches with the same membership, group keys, priorities and order. Only
batch ids differ between calls.

Every strategy reduces to an ordered list of groups. Each group is cut
into chunks of at most ``max_batch_size`` findings, each chunk becomes a
Batch, and the result is sorted by descending priority with ties kept in
emission order.

Priority formula:
  base     = severity score (critical 100 ... note 10)
  + size   = min(2 * batch size, 20)
  + bucket = +15 simple / +5 moderate / -10 complex  (by-complexity only)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from patchwork.batching.complexity import COMPLEXITY_BONUS, estimate_complexity
from patchwork.core.logging import get_logger
from patchwork.core.models import (
    SEVERITY_ORDER,
    Batch,
    BatchingStrategy,
    BatchStatus,
    Complexity,
    Finding,
    Severity,
)

_logger = get_logger("batching.partitioner")

MAX_SIZE_BONUS = 20
SIZE_BONUS_PER_FINDING = 2


@dataclass
class _Group:
    """An ordered group of findings before chunking."""

    label: str
    findings: list[Finding]
    # Set when the group is keyed on a single severity
    severity: Severity | None = None
    complexity: Complexity | None = None


GroupingFn = Callable[[list[Finding]], list[_Group]]


# ─── Helpers ───────────────────────────────────────────────────────


def _chunk(findings: Sequence[Finding], size: int) -> list[list[Finding]]:
    return [list(findings[i:i + size]) for i in range(0, len(findings), size)]


def _by_severity_rank(findings: Iterable[Finding]) -> list[Finding]:
    return sorted(findings, key=lambda f: f.severity.rank)


def _group_by(findings: Iterable[Finding], key: Callable[[Finding], str]) -> dict[str, list[Finding]]:
    groups: dict[str, list[Finding]] = {}
    for finding in findings:
        groups.setdefault(key(finding), []).append(finding)
    return groups


def _of_severity(findings: list[Finding], severity: Severity) -> list[Finding]:
    return [f for f in findings if f.severity == severity]


def highest_severity(findings: Iterable[Finding]) -> Severity:
    """First severity in the fixed severity order present among ``findings``.

    Falls back to MEDIUM for an empty input.
    """
    present = {f.severity for f in findings}
    for severity in SEVERITY_ORDER:
        if severity in present:
            return severity
    return Severity.MEDIUM


def calculate_priority(
    severity: Severity,
    size: int,
    complexity: Complexity | None = None,
) -> int:
    """Priority score of a batch; higher runs first."""
    priority = severity.base_score + min(size * SIZE_BONUS_PER_FINDING, MAX_SIZE_BONUS)
    if complexity is not None:
        priority += COMPLEXITY_BONUS[complexity]
    return priority


# ─── Strategies ────────────────────────────────────────────────────


def _severity_then_category(findings: list[Finding]) -> list[_Group]:
    groups: list[_Group] = []
    for severity in SEVERITY_ORDER:
        by_category = _group_by(_of_severity(findings, severity), lambda f: f.category)
        for category, members in by_category.items():
            groups.append(_Group(f"{severity.value}-{category}", members, severity=severity))
    return groups


def _severity_only(findings: list[Finding]) -> list[_Group]:
    groups: list[_Group] = []
    for severity in SEVERITY_ORDER:
        members = _of_severity(findings, severity)
        if members:
            groups.append(_Group(severity.value, members, severity=severity))
    return groups


def _by_location(findings: list[Finding]) -> list[_Group]:
    return [
        _Group(directory, _by_severity_rank(members))
        for directory, members in _group_by(findings, lambda f: f.location.directory).items()
    ]


def _by_category(findings: list[Finding]) -> list[_Group]:
    return [
        _Group(category, _by_severity_rank(members))
        for category, members in _group_by(findings, lambda f: f.category).items()
    ]


def _by_complexity(findings: list[Finding]) -> list[_Group]:
    buckets: dict[Complexity, list[Finding]] = {c: [] for c in Complexity}
    for finding in findings:
        buckets[estimate_complexity(finding)].append(finding)
    return [
        _Group(complexity.value, _by_severity_rank(members), complexity=complexity)
        for complexity, members in buckets.items()
        if members
    ]


_STRATEGIES: dict[BatchingStrategy, GroupingFn] = {
    BatchingStrategy.SEVERITY_THEN_CATEGORY: _severity_then_category,
    BatchingStrategy.SEVERITY_ONLY: _severity_only,
    BatchingStrategy.BY_LOCATION: _by_location,
    BatchingStrategy.BY_CATEGORY: _by_category,
    BatchingStrategy.BY_COMPLEXITY: _by_complexity,
}


# ─── Public API ────────────────────────────────────────────────────


def partition(
    findings: Iterable[Finding],
    strategy: BatchingStrategy | str,
    max_batch_size: int,
) -> list[Batch]:
    """Group findings into batches ordered by descending priority.

    Args:
        findings: Findings to partition; input order is preserved within
            groups except where a strategy sorts by severity.
        strategy: A BatchingStrategy or its string value.
        max_batch_size: Maximum findings per batch.

    Returns:
        Pending batches, highest priority first.

    Raises:
        ValueError: If ``max_batch_size`` is not a positive integer or the
            strategy is unknown.
    """
    if isinstance(max_batch_size, bool) or not isinstance(max_batch_size, int) or max_batch_size < 1:
        raise ValueError(f"max_batch_size must be a positive integer, got {max_batch_size!r}")
    strategy = BatchingStrategy(strategy)

    batches: list[Batch] = []
    for group in _STRATEGIES[strategy](list(findings)):
        chunks = _chunk(group.findings, max_batch_size)
        for index, chunk in enumerate(chunks, start=1):
            severity = group.severity or highest_severity(chunk)
            batches.append(Batch(
                findings=chunk,
                strategy=strategy,
                group_key=group.label if len(chunks) == 1 else f"{group.label}-part{index}",
                severity=severity,
                priority=calculate_priority(severity, len(chunk), group.complexity),
            ))

    ordered = sorted(batches, key=lambda b: b.priority, reverse=True)
    _logger.debug(
        "partitioner.batches_created",
        strategy=strategy.value,
        findings=sum(b.size for b in ordered),
        batches=len(ordered),
    )
    return ordered


def rebatch(
    batches: Iterable[Batch],
    strategy: BatchingStrategy | str,
    max_batch_size: int,
) -> list[Batch]:
    """Re-plan from scratch: flatten all findings and partition again."""
    findings = [finding for batch in batches for finding in batch.findings]
    return partition(findings, strategy, max_batch_size)


def prioritize_batch(batches: Iterable[Batch], batch_id: str, priority: int) -> list[Batch]:
    """Return the plan with one batch's priority overridden, re-sorted."""
    updated = [
        batch.model_copy(update={"priority": priority}) if batch.id == batch_id else batch
        for batch in batches
    ]
    return sorted(updated, key=lambda b: b.priority, reverse=True)


def skip_batch(batches: Iterable[Batch], batch_id: str) -> list[Batch]:
    """Return the plan without the given batch."""
    return [batch for batch in batches if batch.id != batch_id]


@dataclass
class BatchSummary:
    """Counts over a batch plan."""

    total_batches: int = 0
    total_findings: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_batches": self.total_batches,
            "total_findings": self.total_findings,
            "by_severity": dict(self.by_severity),
            "by_status": dict(self.by_status),
        }


def summarize(batches: Iterable[Batch]) -> BatchSummary:
    """Findings per batch severity and batches per status."""
    summary = BatchSummary()
    for batch in batches:
        summary.total_batches += 1
        summary.total_findings += batch.size
        sev = batch.severity.value
        summary.by_severity[sev] = summary.by_severity.get(sev, 0) + batch.size
        status = batch.status.value
        summary.by_status[status] = summary.by_status.get(status, 0) + 1
    return summary


class Partitioner:
    """A partitioner bound to a strategy and a maximum batch size."""

    def __init__(self, strategy: BatchingStrategy | str, max_batch_size: int) -> None:
        self.strategy = BatchingStrategy(strategy)
        self.max_batch_size = max_batch_size

    def partition(self, findings: Iterable[Finding]) -> list[Batch]:
        return partition(findings, self.strategy, self.max_batch_size)

    def rebatch(
        self,
        batches: Iterable[Batch],
        strategy: BatchingStrategy | str | None = None,
    ) -> list[Batch]:
        """Re-plan ``batches`` with ``strategy`` (defaults to this partitioner's).

        Only pending batches should be passed in; running or finished work
        is not re-planned.
        """
        pending = [b for b in batches if b.status == BatchStatus.PENDING]
        return rebatch(pending, strategy or self.strategy, self.max_batch_size)


__all__ = [
    "BatchSummary",
    "Partitioner",
    "calculate_priority",
    "highest_severity",
    "partition",
    "prioritize_batch",
    "rebatch",
    "skip_batch",
    "summarize",
]
