"""Batch scheduler: drives batches through remote tasks.

One asyncio control loop owns all scheduling state. Each iteration:

1. If paused, sleep and check again.
2. Admit pending batches, highest priority first, while the number of
   live tasks is below the concurrency ceiling. Capacity refusals put the
   batch back at the front of the queue and start a cooldown; repeated
   refusals lower the ceiling for the rest of the run.
3. Advance active batches: enforce the per-batch timeout, poll batches
   that are due, back off on transient poll failures, and settle batches
   whose task reached a terminal state.
4. Sleep until the next poll is due, never less than the minimum poll
   interval.

Produced pull requests go through the CI gate as background tasks so a
slow gate does not hold up polling of other batches. A gated batch keeps
its live task, and so its concurrency slot, until the gate decides.

Example usage:
    scheduler = BatchScheduler(client, config.scheduler, gate=gate)
    results = await scheduler.run(batches, on_progress=show, on_complete=record)
    if scheduler.stats.timed_out:
        ...
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from patchwork.backends.base import RemoteTaskClient
from patchwork.backends.status import is_terminal
from patchwork.core.config import SchedulerConfig
from patchwork.core.exceptions import CapacityError, FatalRemoteError, RemoteTaskError
from patchwork.core.logging import ExecutionContext, get_logger, with_context
from patchwork.core.models import (
    Batch,
    BatchStatus,
    FailureReason,
    GateResult,
    RemoteTask,
    TaskStatus,
)
from patchwork.execution.backoff import PollBackoff
from patchwork.execution.concurrency import AdaptiveConcurrency
from patchwork.execution.gate import CIGate

_logger = get_logger("scheduler")

ProgressCallback = Callable[[Batch, RemoteTask], Awaitable[None] | None]
CompletionCallback = Callable[
    [Batch, RemoteTask | None, GateResult | None], Awaitable[None] | None
]
PauseCheck = Callable[[], Awaitable[bool] | bool]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass
class SchedulerStats:
    """Counters for one scheduler run."""

    admitted: int = 0
    """Batches for which a remote task was created."""

    completed: int = 0
    """Batches that ended ``completed``."""

    failed: int = 0
    """Batches that ended ``failed``, for any reason."""

    capacity_refusals: int = 0
    """Create calls refused for rate or concurrency limits."""

    ceiling_reductions: int = 0
    """Times the concurrency ceiling was lowered."""

    final_ceiling: int = 0
    """Concurrency ceiling when the run ended."""

    poll_failures: int = 0
    """Transient poll failures across all batches."""

    timed_out: bool = False
    """The run stopped because the global run timeout elapsed."""

    needs_review: int = 0
    """Completed batches whose reported confidence is below the threshold."""

    failures_by_reason: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "admitted": self.admitted,
            "completed": self.completed,
            "failed": self.failed,
            "needs_review": self.needs_review,
            "capacity_refusals": self.capacity_refusals,
            "ceiling_reductions": self.ceiling_reductions,
            "final_ceiling": self.final_ceiling,
            "poll_failures": self.poll_failures,
            "timed_out": self.timed_out,
            "failures_by_reason": dict(self.failures_by_reason),
        }


@dataclass
class _ActiveBatch:
    """Scheduler-side state of a batch that holds a live task."""

    batch: Batch
    task: RemoteTask
    started_at: float
    backoff: PollBackoff
    gate_task: asyncio.Task[GateResult] | None = None
    gate_result: GateResult | None = None


class BatchScheduler:
    """Runs batches through a RemoteTaskClient under bounded concurrency."""

    def __init__(
        self,
        client: RemoteTaskClient,
        config: SchedulerConfig,
        gate: CIGate | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        run_id: str | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            client: Backend that creates and polls remote tasks.
            config: Concurrency, timeout and polling settings.
            gate: CI gate for produced artifacts. Without one, a produced
                artifact completes the batch.
            clock: Monotonic time source in seconds.
            sleep: Async sleep used for every wait.
            run_id: Correlation id added to log events.
        """
        self.client = client
        self.config = config
        self.gate = gate
        self._clock = clock
        self._sleep = sleep
        self._context = ExecutionContext(component="scheduler")
        if run_id is not None:
            self._context = ExecutionContext(run_id=run_id, component="scheduler")

        self._concurrency = AdaptiveConcurrency(
            config.max_concurrent, config.rate_limit_reduce_after
        )
        self._pending: deque[Batch] = deque()
        self._active: dict[str, _ActiveBatch] = {}
        self._results: dict[str, RemoteTask] = {}
        self._cooldown_until = float("-inf")
        self._last_create_at: float | None = None
        self._on_progress: ProgressCallback | None = None
        self._on_complete: CompletionCallback | None = None
        self.stats = SchedulerStats(final_ceiling=config.max_concurrent)

    @property
    def ceiling(self) -> int:
        """Current concurrency ceiling."""
        return self._concurrency.ceiling

    @property
    def active_count(self) -> int:
        return len(self._active)

    # ─── Run loop ──────────────────────────────────────────────────

    async def run(
        self,
        batches: Iterable[Batch],
        on_progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
        is_paused: PauseCheck | None = None,
    ) -> dict[str, RemoteTask]:
        """Drive pending batches until all settle or the run times out.

        Callbacks may be plain functions or coroutines. Progress callbacks
        for a batch always precede its completion callback, which is called
        exactly once per settled batch.

        Args:
            batches: Batches to run; only ``pending`` ones are scheduled.
            on_progress: Called on admission and after every successful poll.
            on_complete: Called when a batch settles with the batch, its last
                task state and its gate result. The task is None when
                creation failed; the gate result is None unless the batch
                went through the gate.
            is_paused: Checked before every iteration.

        Returns:
            Last known task state for every batch that settled with a task.

        Raises:
            FatalRemoteError: Credentials were rejected; the run is aborted
                and remaining batches keep their current status.
        """
        self._pending = deque(
            sorted(
                (b for b in batches if b.status == BatchStatus.PENDING),
                key=lambda b: b.priority,
                reverse=True,
            )
        )
        self._on_progress = on_progress
        self._on_complete = on_complete
        start = self._clock()
        was_paused = False

        with with_context(self._context):
            _logger.info(
                "scheduler.started",
                batches=len(self._pending),
                max_concurrent=self.config.max_concurrent,
            )
            try:
                while self._pending or self._active:
                    if self._clock() - start >= self.config.run_timeout_seconds:
                        self.stats.timed_out = True
                        _logger.error(
                            "scheduler.run_timeout",
                            pending=len(self._pending),
                            active=len(self._active),
                        )
                        break

                    paused = bool(await _maybe_await(is_paused())) if is_paused else False
                    if paused:
                        if not was_paused:
                            _logger.info("scheduler.paused", active=len(self._active))
                        was_paused = True
                        await self._sleep(self.config.pause_check_interval_seconds)
                        continue
                    if was_paused:
                        _logger.info("scheduler.resumed")
                        was_paused = False

                    await self._admit()
                    await self._advance()

                    if self._pending or self._active:
                        await self._sleep(self._next_tick(start))
            finally:
                await self._cancel_gates()
                self.stats.final_ceiling = self._concurrency.ceiling
                self.stats.ceiling_reductions = self._concurrency.reductions

            _logger.info("scheduler.finished", **self.stats.to_dict())
        return dict(self._results)

    def _next_tick(self, start: float) -> float:
        now = self._clock()
        floor = self.config.min_poll_interval_seconds
        wakeups = [
            entry.backoff.next_poll_at - now
            for entry in self._active.values()
            if entry.gate_task is None
        ]
        if self._pending and self._concurrency.has_capacity(len(self._active)):
            wakeups.append(self._cooldown_until - now)
        delay = max(min(wakeups, default=floor), floor)
        remaining = self.config.run_timeout_seconds - (now - start)
        return max(min(delay, remaining), 0.0)

    # ─── Admission ─────────────────────────────────────────────────

    async def _respect_create_spacing(self) -> None:
        if self._last_create_at is None:
            return
        wait = self.config.create_spacing_seconds - (self._clock() - self._last_create_at)
        if wait > 0:
            await self._sleep(wait)

    async def _admit(self) -> None:
        while self._pending and self._concurrency.has_capacity(len(self._active)):
            if self._clock() < self._cooldown_until:
                return

            await self._respect_create_spacing()
            batch = self._pending.popleft()
            try:
                handle = await self.client.create(batch)
            except CapacityError as e:
                self._last_create_at = self._clock()
                self._pending.appendleft(batch)
                self.stats.capacity_refusals += 1
                self._concurrency.record_refusal()
                self._cooldown_until = self._clock() + self.config.rate_limit_cooldown_seconds
                _logger.warning(
                    "scheduler.capacity_refused",
                    batch_id=batch.id,
                    error_type=type(e).__name__,
                    ceiling=self._concurrency.ceiling,
                    cooldown_seconds=self.config.rate_limit_cooldown_seconds,
                )
                return
            except FatalRemoteError:
                _logger.error("scheduler.fatal_error", batch_id=batch.id, operation="create")
                raise
            except RemoteTaskError as e:
                self._last_create_at = self._clock()
                _logger.error("scheduler.create_failed", batch_id=batch.id, error=str(e))
                batch.mark_failed(FailureReason.CREATE_FAILED)
                self._count_failure(FailureReason.CREATE_FAILED)
                if self._on_complete is not None:
                    await _maybe_await(self._on_complete(batch, None, None))
                continue

            now = self._clock()
            self._last_create_at = now
            batch.mark_in_progress(handle)
            task = RemoteTask.from_handle(handle)
            backoff = PollBackoff(
                initial=self.config.min_poll_interval_seconds,
                maximum=self.config.max_poll_interval_seconds,
                multiplier=self.config.backoff_multiplier,
            )
            backoff.schedule_next(now)
            self._active[batch.id] = _ActiveBatch(batch, task, now, backoff)
            self.stats.admitted += 1
            _logger.info(
                "scheduler.batch_admitted",
                batch_id=batch.id,
                task_id=handle.task_id,
                group_key=batch.group_key,
                priority=batch.priority,
                active=len(self._active),
                ceiling=self._concurrency.ceiling,
            )
            await self._notify_progress(batch, task)

    # ─── Progress ──────────────────────────────────────────────────

    async def _advance(self) -> None:
        for batch_id in list(self._active):
            entry = self._active[batch_id]

            if entry.gate_task is not None:
                if entry.gate_task.done():
                    await self._finish_gate(entry)
                continue

            now = self._clock()
            if now - entry.started_at >= self.config.batch_timeout_seconds:
                _logger.error(
                    "scheduler.batch_timeout",
                    batch_id=batch_id,
                    elapsed_seconds=round(now - entry.started_at, 1),
                )
                entry.batch.mark_failed(FailureReason.TIMEOUT)
                await self._release(entry)
                continue

            if not entry.backoff.is_due(now):
                continue

            await self._poll(entry)

    async def _poll(self, entry: _ActiveBatch) -> None:
        batch = entry.batch
        assert batch.task_id is not None
        try:
            task = await self.client.poll(batch.task_id)
        except FatalRemoteError:
            _logger.error("scheduler.fatal_error", batch_id=batch.id, operation="poll")
            raise
        except RemoteTaskError as e:
            failures = entry.backoff.record_failure(self._clock())
            self.stats.poll_failures += 1
            _logger.warning(
                "scheduler.poll_failed",
                batch_id=batch.id,
                consecutive_failures=failures,
                next_interval=entry.backoff.interval,
                error=str(e),
            )
            if failures >= self.config.max_poll_failures:
                batch.mark_failed(FailureReason.POLL_FAILURES)
                await self._release(entry)
            return

        entry.task = task
        entry.backoff.record_success(self._clock())
        await self._notify_progress(batch, task)
        if is_terminal(task):
            await self._settle(entry)

    async def _settle(self, entry: _ActiveBatch) -> None:
        batch, task = entry.batch, entry.task
        artifact = task.artifact
        if artifact is not None:
            batch.artifact_ref = artifact
        if task.progress is not None and task.progress.confidence is not None:
            batch.confidence_score = task.progress.confidence

        if artifact is not None:
            if self.gate is not None:
                assert batch.task_id is not None
                _logger.info("scheduler.gate_started", batch_id=batch.id, artifact_ref=artifact)
                entry.gate_task = asyncio.create_task(
                    self.gate.wait_for_gate(artifact, batch.task_id)
                )
                return
            batch.mark_completed()
        elif task.status == TaskStatus.FINISHED:
            batch.mark_completed()
        else:
            batch.mark_failed(FailureReason.TASK_FAILED)
        await self._release(entry)

    async def _finish_gate(self, entry: _ActiveBatch) -> None:
        assert entry.gate_task is not None
        error = entry.gate_task.exception()
        if isinstance(error, FatalRemoteError):
            _logger.error("scheduler.fatal_error", batch_id=entry.batch.id, operation="gate")
            raise error
        if error is not None:
            _logger.error(
                "scheduler.gate_error",
                batch_id=entry.batch.id,
                error_type=type(error).__name__,
                error=str(error),
            )
            result = GateResult(passed=False, reason=f"gate error: {error}")
        else:
            result = entry.gate_task.result()
        entry.gate_task = None
        entry.gate_result = result
        entry.batch.gate_passed = result.passed
        if result.passed:
            entry.batch.mark_completed()
        else:
            _logger.warning(
                "scheduler.gate_failed",
                batch_id=entry.batch.id,
                attempts=result.attempts,
                reason=result.reason,
            )
            entry.batch.mark_failed(FailureReason.GATE_FAILED)
        await self._release(entry)

    async def _release(self, entry: _ActiveBatch) -> None:
        """Terminate the task of a settled batch and report completion."""
        batch = entry.batch
        del self._active[batch.id]
        if batch.task_id is not None:
            try:
                terminated = await self.client.terminate(batch.task_id)
            except RemoteTaskError as e:
                terminated = False
                _logger.warning("scheduler.terminate_failed", batch_id=batch.id, error=str(e))
            _logger.debug("scheduler.task_terminated", batch_id=batch.id, confirmed=terminated)

        self._results[batch.id] = entry.task
        if batch.status == BatchStatus.COMPLETED:
            self.stats.completed += 1
            self._flag_low_confidence(batch)
        elif batch.failure_reason is not None:
            self._count_failure(batch.failure_reason)
        _logger.info(
            "scheduler.batch_settled",
            batch_id=batch.id,
            status=batch.status.value,
            failure_reason=batch.failure_reason.value if batch.failure_reason else None,
            artifact_ref=batch.artifact_ref,
        )
        if self._on_complete is not None:
            await _maybe_await(self._on_complete(batch, entry.task, entry.gate_result))

    # ─── Helpers ───────────────────────────────────────────────────

    def _flag_low_confidence(self, batch: Batch) -> None:
        threshold = self.config.min_confidence_threshold
        if batch.confidence_score is None or batch.confidence_score >= threshold:
            return
        batch.needs_review = True
        self.stats.needs_review += 1
        _logger.warning(
            "scheduler.needs_review",
            batch_id=batch.id,
            confidence=batch.confidence_score,
            threshold=threshold,
            artifact_ref=batch.artifact_ref,
        )

    def _count_failure(self, reason: FailureReason) -> None:
        self.stats.failed += 1
        self.stats.failures_by_reason[reason.value] = (
            self.stats.failures_by_reason.get(reason.value, 0) + 1
        )

    async def _notify_progress(self, batch: Batch, task: RemoteTask) -> None:
        if self._on_progress is not None:
            await _maybe_await(self._on_progress(batch, task))

    async def _cancel_gates(self) -> None:
        gates = [e.gate_task for e in self._active.values() if e.gate_task is not None]
        for gate_task in gates:
            gate_task.cancel()
        if gates:
            await asyncio.gather(*gates, return_exceptions=True)


__all__ = [
    "BatchScheduler",
    "CompletionCallback",
    "PauseCheck",
    "ProgressCallback",
    "SchedulerStats",
]
