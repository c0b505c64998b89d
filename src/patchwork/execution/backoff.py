"""Per-batch poll scheduling with exponential backoff.

Each active batch owns one PollBackoff. A successful poll resets the
interval to the minimum; a failed poll multiplies it by the backoff
multiplier up to the maximum. The batch is not polled again until its
``next_poll_at`` has passed.

Example usage:
    backoff = PollBackoff(initial=10.0, maximum=60.0, multiplier=1.5)
    backoff.schedule_next(now)
    ...
    if backoff.is_due(now):
        try:
            task = await client.poll(task_id)
            backoff.record_success(now)
        except TransientRemoteError:
            failures = backoff.record_failure(now)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PollBackoff:
    """Poll interval state for one active batch."""

    initial: float
    """Interval after a success, in seconds."""

    maximum: float
    """Upper bound for the interval, in seconds."""

    multiplier: float
    """Growth factor applied after each failed poll."""

    interval: float = 0.0
    """Current interval; set to ``initial`` on creation."""

    consecutive_failures: int = 0
    """Failed polls since the last success."""

    next_poll_at: float = 0.0
    """Clock time before which the batch is not polled."""

    def __post_init__(self) -> None:
        if self.interval <= 0:
            self.interval = self.initial

    def is_due(self, now: float) -> bool:
        return now >= self.next_poll_at

    def schedule_next(self, now: float) -> None:
        self.next_poll_at = now + self.interval

    def record_success(self, now: float) -> None:
        """Reset failures and interval, then schedule the next poll."""
        self.consecutive_failures = 0
        self.interval = self.initial
        self.schedule_next(now)

    def record_failure(self, now: float) -> int:
        """Grow the interval and schedule the next poll.

        Returns:
            Consecutive failures including this one.
        """
        self.consecutive_failures += 1
        self.interval = min(self.interval * self.multiplier, self.maximum)
        self.schedule_next(now)
        return self.consecutive_failures
