"""Adaptive concurrency ceiling.

The ceiling starts at the configured maximum and drops by one each time
capacity refusals (rate limit or concurrency limit on create) reach the
reduction threshold. It never goes below one and never rises again within
a run.
"""

from __future__ import annotations

from patchwork.core.logging import get_logger

_logger = get_logger("concurrency")


class AdaptiveConcurrency:
    """Tracks the live-task ceiling for one scheduler run."""

    def __init__(self, max_concurrent: int, reduce_after: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if reduce_after < 1:
            raise ValueError("reduce_after must be at least 1")
        self.initial = max_concurrent
        self.ceiling = max_concurrent
        self.reduce_after = reduce_after
        self.refusals = 0
        self.total_refusals = 0
        self.reductions = 0

    def has_capacity(self, active: int) -> bool:
        return active < self.ceiling

    def record_refusal(self) -> bool:
        """Count one capacity refusal.

        Returns:
            True if this refusal lowered the ceiling.
        """
        self.refusals += 1
        self.total_refusals += 1
        if self.refusals < self.reduce_after:
            return False

        self.refusals = 0
        if self.ceiling <= 1:
            return False
        self.ceiling -= 1
        self.reductions += 1
        _logger.warning(
            "concurrency.ceiling_reduced",
            ceiling=self.ceiling,
            initial=self.initial,
            total_refusals=self.total_refusals,
        )
        return True
