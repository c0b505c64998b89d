"""Shared test helpers for patchwork tests."""

from __future__ import annotations

import asyncio
from typing import Any

from patchwork.backends.base import RemoteTaskClient
from patchwork.core.models import (
    Batch,
    BatchingStrategy,
    Finding,
    GateResult,
    Location,
    RemoteTask,
    Severity,
    TaskHandle,
    TaskProgress,
    TaskStatus,
)
from patchwork.prompts import PromptBuilder

PollOutcome = RemoteTask | TaskStatus | Exception


def make_finding(
    number: int,
    severity: str = "high",
    category: str = "CWE-79",
    path: str = "src/app.py",
    start_line: int = 1,
    end_line: int | None = None,
    **overrides: Any,
) -> Finding:
    """Build a Finding with sensible defaults."""
    return Finding(
        number=number,
        severity=Severity(severity),
        category=category,
        location=Location(
            path=path,
            start_line=start_line,
            end_line=start_line if end_line is None else end_line,
        ),
        rule_id=overrides.pop("rule_id", f"py/rule-{number}"),
        rule_name=overrides.pop("rule_name", f"Rule {number}"),
        **overrides,
    )


def make_batch(
    group_key: str,
    priority: int = 80,
    severity: str = "high",
    numbers: tuple[int, ...] = (1,),
) -> Batch:
    """Build a pending Batch directly, bypassing the partitioner."""
    return Batch(
        findings=[make_finding(n, severity) for n in numbers],
        strategy=BatchingStrategy.SEVERITY_THEN_CATEGORY,
        group_key=group_key,
        severity=Severity(severity),
        priority=priority,
    )


def task_state(
    status: TaskStatus = TaskStatus.FINISHED,
    *,
    percent: float | None = None,
    artifact: str | None = None,
    progress_artifact: str | None = None,
    confidence: float | None = None,
    current_step: str | None = None,
) -> RemoteTask:
    """Build a poll result; FakeRemoteClient fills in the task id and url."""
    progress = None
    if any(v is not None for v in (percent, progress_artifact, confidence, current_step)):
        progress = TaskProgress(
            percent=percent,
            artifact_ref=progress_artifact,
            confidence=confidence,
            current_step=current_step,
        )
    return RemoteTask(
        task_id="", url="", status=status, progress=progress, artifact_ref=artifact
    )


class FakeClock:
    """Virtual monotonic clock whose sleep advances time instantly.

    Each sleep also yields to the event loop once so background tasks
    (CI gate waits) get to run.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)
        await asyncio.sleep(0)


class FakeRemoteClient(RemoteTaskClient):
    """Scripted in-memory RemoteTaskClient.

    ``create_outcomes`` is consumed one entry per create call: None means
    success, an exception is raised. Once exhausted, creates succeed.

    Poll results are scripted per batch group key with ``script()``; the
    last outcome repeats. Unscripted batches finish without an artifact.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.create_outcomes: list[Exception | None] = []
        self.poll_scripts: dict[str, list[PollOutcome]] = {}
        self.create_attempts: list[str] = []
        self.created: list[Batch] = []
        self.create_times: list[float] = []
        self.polls: list[tuple[str, float]] = []
        self.messages: list[tuple[str, str]] = []
        self.terminated: list[str] = []
        self.terminate_error: Exception | None = None
        self.prompts = PromptBuilder(repository="acme/webapp")
        self.live: set[str] = set()
        self.max_live = 0
        self.closed = False
        self._group_keys: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "fake"

    def script(self, group_key: str, *outcomes: PollOutcome) -> None:
        self.poll_scripts[group_key] = list(outcomes)

    def _now(self) -> float:
        return self.clock() if self.clock is not None else 0.0

    async def create(self, batch: Batch) -> TaskHandle:
        self.create_attempts.append(batch.group_key)
        if self.create_outcomes:
            outcome = self.create_outcomes.pop(0)
            if outcome is not None:
                raise outcome

        task_id = f"task-{len(self.created) + 1}"
        self.created.append(batch)
        self.create_times.append(self._now())
        self._group_keys[task_id] = batch.group_key
        self.live.add(task_id)
        self.max_live = max(self.max_live, len(self.live))
        return TaskHandle(task_id=task_id, url=f"https://agents.example/sessions/{task_id}")

    async def poll(self, task_id: str) -> RemoteTask:
        self.polls.append((task_id, self._now()))
        script = self.poll_scripts.get(self._group_keys[task_id], [])
        if len(script) > 1:
            outcome = script.pop(0)
        elif script:
            outcome = script[0]
        else:
            outcome = TaskStatus.FINISHED

        if isinstance(outcome, Exception):
            raise outcome
        url = f"https://agents.example/sessions/{task_id}"
        if isinstance(outcome, TaskStatus):
            return RemoteTask(task_id=task_id, url=url, status=outcome)
        return outcome.model_copy(update={"task_id": task_id, "url": url})

    async def message(self, task_id: str, text: str) -> bool:
        self.messages.append((task_id, text))
        return True

    async def terminate(self, task_id: str) -> bool:
        self.terminated.append(task_id)
        self.live.discard(task_id)
        if self.terminate_error is not None:
            raise self.terminate_error
        return True

    async def close(self) -> None:
        self.closed = True

    def polls_of(self, task_id: str) -> list[float]:
        """Times at which ``task_id`` was polled."""
        return [at for polled, at in self.polls if polled == task_id]


class FakeGate:
    """Stands in for CIGate, returning queued results in order.

    Exceptions among the results are raised instead of returned.
    """

    def __init__(self, *results: GateResult | Exception) -> None:
        self.results = list(results) or [GateResult(passed=True, attempts=0, reason="checks passed")]
        self.calls: list[tuple[str, str]] = []

    async def wait_for_gate(self, artifact_ref: str, task_id: str) -> GateResult:
        self.calls.append((artifact_ref, task_id))
        outcome = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeChecks:
    """Stands in for a CheckStatusProvider, returning scripted results."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: list[str] = []

    async def get_status(self, artifact_ref: str) -> Any:
        self.calls.append(artifact_ref)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]
