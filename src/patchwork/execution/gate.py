"""CI gate for produced pull requests.

After a remote task produces a pull request, the gate waits for the
repository's checks on it. A failed check run on a commit not seen before
uses one remediation attempt: the task is asked to fix the failure and
the gate keeps waiting for a result on the next commit. The gate gives up
when attempts run out or its timeout elapses.

Example usage:
    provider = GitHubChecksProvider.from_config(github_config, gate_config)
    gate = CIGate(provider, client, gate_config)
    result = await gate.wait_for_gate(pr_url, task_id)
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from patchwork.backends.base import RemoteTaskClient
from patchwork.core.config import GateConfig, GitHubConfig
from patchwork.core.logging import get_logger
from patchwork.core.models import GateResult
from patchwork.prompts import PromptBuilder

_logger = get_logger("gate")

_PR_NUMBER_PATTERN = re.compile(r"/pull/(\d+)")

PASSING_CONCLUSIONS = frozenset({"success", "neutral", "skipped"})
FAILING_CONCLUSIONS = frozenset({
    "failure",
    "timed_out",
    "cancelled",
    "action_required",
    "startup_failure",
})


def extract_pr_number(artifact_ref: str) -> int | None:
    """Pull request number from a PR URL such as ``.../pull/42``."""
    match = _PR_NUMBER_PATTERN.search(artifact_ref)
    return int(match.group(1)) if match else None


class CheckState(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class CheckResult:
    """Check status of an artifact at one commit."""

    state: CheckState
    commit: str | None = None
    summary: str = ""


class CheckStatusProvider(Protocol):
    """Reports the pass/fail state of an artifact's external checks."""

    async def get_status(self, artifact_ref: str) -> CheckResult: ...


class GitHubChecksProvider:
    """Check status of a pull request from the GitHub checks API.

    Resolves the PR's head commit, then aggregates its check runs. Any
    HTTP or parsing failure is reported as PENDING so the gate keeps
    waiting until its own timeout.
    """

    def __init__(
        self,
        repository: str,
        token: str,
        api_base: str = "https://api.github.com",
        check_names: list[str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repository = repository
        self.api_base = api_base.rstrip("/")
        self.check_names = [n.lower() for n in check_names or []]
        self.timeout = timeout
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, github: GitHubConfig, gate: GateConfig) -> GitHubChecksProvider:
        return cls(
            repository=github.repository,
            token=github.token(),
            api_base=github.api_base,
            check_names=gate.check_name_filter,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _get_json(self, path: str, **params: Any) -> Any:
        client = await self._get_client()
        response = await client.get(path, params=params or None)
        response.raise_for_status()
        return response.json()

    async def get_status(self, artifact_ref: str) -> CheckResult:
        number = extract_pr_number(artifact_ref)
        if number is None:
            _logger.warning("gate.not_a_pull_request", artifact_ref=artifact_ref)
            return CheckResult(CheckState.PENDING, summary="artifact is not a pull request URL")

        try:
            pull = await self._get_json(f"/repos/{self.repository}/pulls/{number}")
            sha = pull["head"]["sha"]
            data = await self._get_json(
                f"/repos/{self.repository}/commits/{sha}/check-runs", per_page=100
            )
            runs = data.get("check_runs") or []
            if not isinstance(runs, list):
                raise TypeError(f"check_runs is {type(runs).__name__}, not a list")
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            _logger.warning("gate.checks_unavailable", pr=number, error=str(e))
            return CheckResult(CheckState.PENDING, summary=str(e))

        valid = [r for r in runs if isinstance(r, dict)]
        if len(valid) < len(runs):
            _logger.warning("gate.malformed_check_runs", pr=number, skipped=len(runs) - len(valid))
        return self._aggregate(str(sha), valid)

    def _selected(self, name: str) -> bool:
        lowered = name.lower()
        return any(fragment in lowered for fragment in self.check_names)

    def _aggregate(self, sha: str, runs: list[dict[str, Any]]) -> CheckResult:
        if self.check_names:
            runs = [r for r in runs if self._selected(str(r.get("name") or ""))]
        if not runs:
            return CheckResult(CheckState.PENDING, commit=sha, summary="no check runs yet")

        failed = [
            r.get("name", "?")
            for r in runs
            if r.get("status") == "completed" and r.get("conclusion") in FAILING_CONCLUSIONS
        ]
        if failed:
            return CheckResult(CheckState.FAILED, commit=sha, summary="\n".join(f"- {n}" for n in failed))

        if all(
            r.get("status") == "completed" and r.get("conclusion") in PASSING_CONCLUSIONS
            for r in runs
        ):
            return CheckResult(CheckState.PASSED, commit=sha)

        return CheckResult(CheckState.PENDING, commit=sha)


class CIGate:
    """Waits for an artifact's checks to pass, asking the task to remediate failures."""

    def __init__(
        self,
        checks: CheckStatusProvider,
        client: RemoteTaskClient,
        config: GateConfig,
        prompts: PromptBuilder | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.checks = checks
        self.client = client
        self.config = config
        self.prompts = prompts or PromptBuilder(repository="")
        self._clock = clock
        self._sleep = sleep

    async def wait_for_gate(self, artifact_ref: str, task_id: str) -> GateResult:
        """Poll checks for ``artifact_ref`` until they pass or the gate gives up.

        Args:
            artifact_ref: Pull request URL produced by the task.
            task_id: Remote task to message when checks fail.

        Returns:
            GateResult with the number of remediation attempts used.
        """
        max_attempts = self.config.max_remediation_attempts
        deadline = self._clock() + self.config.timeout_seconds
        attempts = 0
        seen_failures: set[str] = set()

        log = _logger.bind(task_id=task_id)
        log.info("gate.started", artifact_ref=artifact_ref)
        while True:
            result = await self.checks.get_status(artifact_ref)

            if result.state == CheckState.PASSED:
                log.info("gate.passed", commit=result.commit, attempts=attempts)
                return GateResult(passed=True, attempts=attempts, reason="checks passed")

            commit_key = result.commit or ""
            if result.state == CheckState.FAILED and commit_key not in seen_failures:
                seen_failures.add(commit_key)
                attempts += 1
                log.warning(
                    "gate.checks_failed",
                    commit=result.commit,
                    attempt=attempts,
                    max_attempts=max_attempts,
                )
                if attempts >= max_attempts:
                    return GateResult(
                        passed=False,
                        attempts=attempts,
                        reason=f"checks failed after {attempts} attempt(s)",
                    )
                await self.client.message(
                    task_id,
                    self.prompts.build_remediation_prompt(
                        artifact_ref=artifact_ref,
                        commit=commit_key or "unknown",
                        attempt=attempts,
                        max_attempts=max_attempts,
                        summary=result.summary,
                    ),
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                log.warning("gate.timed_out", attempts=attempts)
                return GateResult(
                    passed=False, attempts=attempts, reason="timed out waiting for checks"
                )
            await self._sleep(min(self.config.poll_interval_seconds, remaining))


__all__ = [
    "CIGate",
    "CheckResult",
    "CheckState",
    "CheckStatusProvider",
    "FAILING_CONCLUSIONS",
    "GitHubChecksProvider",
    "PASSING_CONCLUSIONS",
    "extract_pr_number",
]
