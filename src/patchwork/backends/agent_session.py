"""HTTP backend for an agent-session API.

Endpoints used:
    POST   /sessions                 start a session for a batch
    GET    /sessions/{id}            session status and structured output
    POST   /sessions/{id}/message    send a follow-up message
    DELETE /sessions/{id}            terminate a session

HTTP failures are translated into the RemoteTaskError hierarchy so the
scheduler can decide between requeueing, retrying, failing a batch and
aborting the run.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from patchwork.backends.base import RemoteTaskClient
from patchwork.backends.status import map_status
from patchwork.core.config import RemoteConfig
from patchwork.core.exceptions import (
    ConcurrencyLimitError,
    FatalRemoteError,
    RateLimitedError,
    RemoteTaskError,
    TransientRemoteError,
)
from patchwork.core.logging import get_logger
from patchwork.core.models import Batch, RemoteTask, TaskHandle, TaskMessage, TaskProgress
from patchwork.prompts import PromptBuilder

_logger = get_logger("backend.agent_session")

_AUTH_FAILURE_CODES = frozenset({401, 403})
_CONCURRENCY_MARKERS = ("concurrent session", "concurrency limit", "too many sessions")


def _error_excerpt(response: httpx.Response) -> str:
    return response.text[:200]


def _mentions_concurrency(response: httpx.Response) -> bool:
    text = response.text.lower()
    return any(marker in text for marker in _CONCURRENCY_MARKERS)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_progress(structured: Any) -> TaskProgress | None:
    """Build TaskProgress from a session's ``structured_output``.

    Malformed fields are dropped rather than rejected: the agent writes
    this object itself and may get it wrong.
    """
    if not isinstance(structured, dict):
        return None
    confidence = _as_float(structured.get("confidenceScore"))
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        confidence = None
    current = structured.get("currentTask")
    artifact = structured.get("prUrl")
    return TaskProgress(
        percent=_as_float(structured.get("progress")),
        current_step=current if isinstance(current, str) else None,
        artifact_ref=artifact if isinstance(artifact, str) and artifact else None,
        confidence=confidence,
        raw=structured,
    )


class AgentSessionClient(RemoteTaskClient):
    """RemoteTaskClient backed by an agent-session REST API.

    Example usage:
        client = AgentSessionClient(api_key="...", repository="acme/webapp")
        handle = await client.create(batch)
        task = await client.poll(handle.task_id)
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        repository: str,
        api_base: str = "https://api.devin.ai/v1",
        app_base: str = "https://app.devin.ai",
        timeout: float = 30.0,
        tags: list[str] | None = None,
        prompt_builder: PromptBuilder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Bearer credential for the API.
            repository: ``owner/name`` the sessions work on.
            api_base: API base URL.
            app_base: Base URL for human-facing session links.
            timeout: Per-request timeout in seconds.
            tags: Tags added to every session.
            prompt_builder: Renders the task prompt; defaults to the built-in template.
            transport: Custom httpx transport, e.g. ``httpx.MockTransport`` in tests.
        """
        self.api_base = api_base.rstrip("/")
        self.app_base = app_base.rstrip("/")
        self.repository = repository
        self.timeout = timeout
        self.tags = list(tags) if tags is not None else ["codeql-remediation"]
        self.prompts = prompt_builder or PromptBuilder(repository)
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: RemoteConfig, repository: str) -> AgentSessionClient:
        """Create a client from configuration, reading the credential from the environment.

        Raises:
            ConfigurationError: If the credential variable is unset.
        """
        return cls(
            api_key=config.api_key(),
            repository=repository,
            api_base=config.api_base,
            app_base=config.app_base,
            timeout=config.request_timeout_seconds,
            tags=config.tags,
            prompt_builder=PromptBuilder(repository, template_file=config.prompt_template_file),
        )

    @property
    def name(self) -> str:
        return "agent-session"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Lazy initialization to avoid creating the client before the event loop.
        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    def session_url(self, task_id: str) -> str:
        return f"{self.app_base}/sessions/{task_id}"

    # ─── Create ────────────────────────────────────────────────────

    async def create(self, batch: Batch) -> TaskHandle:
        payload = {
            "prompt": self.prompts.build_task_prompt(batch),
            "title": PromptBuilder.task_title(batch),
            "tags": [*self.tags, batch.severity.value, batch.group_key],
        }
        client = await self._get_client()
        try:
            response = await client.post("/sessions", json=payload)
        except httpx.HTTPError as e:
            raise TransientRemoteError(f"Session create failed: {e}") from e

        status = response.status_code
        if status in _AUTH_FAILURE_CODES:
            _logger.error("agent_session.auth_failed", operation="create", status_code=status)
            raise FatalRemoteError(
                f"Agent API rejected credentials (HTTP {status})", status_code=status
            )
        if status == 429:
            raise RateLimitedError("Agent API rate limit exceeded", status_code=status)
        if status == 409 or (not response.is_success and _mentions_concurrency(response)):
            raise ConcurrencyLimitError(
                f"Agent API concurrency limit reached: {_error_excerpt(response)}",
                status_code=status,
            )
        if status >= 500:
            raise TransientRemoteError(
                f"Agent API server error {status}: {_error_excerpt(response)}",
                status_code=status,
            )
        if not response.is_success:
            raise RemoteTaskError(
                f"Session create rejected ({status}): {_error_excerpt(response)}",
                status_code=status,
            )

        try:
            data = response.json()
            task_id = data["session_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteTaskError(f"Malformed create response: {e}", status_code=status) from e

        handle = TaskHandle(task_id=task_id, url=data.get("url") or self.session_url(task_id))
        _logger.info(
            "agent_session.created",
            batch_id=batch.id,
            task_id=handle.task_id,
            group_key=batch.group_key,
        )
        return handle

    # ─── Poll ──────────────────────────────────────────────────────

    async def poll(self, task_id: str) -> RemoteTask:
        client = await self._get_client()
        try:
            response = await client.get(f"/sessions/{task_id}")
        except httpx.HTTPError as e:
            raise TransientRemoteError(f"Poll of {task_id} failed: {e}") from e

        status = response.status_code
        if status in _AUTH_FAILURE_CODES:
            _logger.error("agent_session.auth_failed", operation="poll", status_code=status)
            raise FatalRemoteError(
                f"Agent API rejected credentials (HTTP {status})", status_code=status
            )
        if not response.is_success:
            raise TransientRemoteError(
                f"Poll of {task_id} returned {status}: {_error_excerpt(response)}",
                status_code=status,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransientRemoteError(f"Poll of {task_id} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise TransientRemoteError(f"Poll of {task_id} returned {type(data).__name__}")

        try:
            task = self._parse_session(task_id, data)
        except ValidationError as e:
            raise TransientRemoteError(f"Malformed session {task_id}: {e}") from e

        _logger.debug(
            "agent_session.polled",
            task_id=task_id,
            status=task.status.value,
            progress=task.percent_complete,
        )
        return task

    def _parse_session(self, task_id: str, data: dict[str, Any]) -> RemoteTask:
        pull_request = data.get("pull_request") or {}
        fields: dict[str, Any] = {
            "task_id": data.get("session_id") or task_id,
            "url": data.get("url") or self.session_url(task_id),
            "status": map_status(data.get("status_enum") or data.get("status")),
            "progress": parse_progress(data.get("structured_output")),
            "artifact_ref": pull_request.get("url") if isinstance(pull_request, dict) else None,
            "messages": [
                TaskMessage(
                    role=m.get("role") or "devin",
                    content=m.get("content") or "",
                    **({"timestamp": m["timestamp"]} if m.get("timestamp") else {}),
                )
                for m in data.get("messages") or []
                if isinstance(m, dict)
            ],
        }
        for key in ("created_at", "updated_at"):
            if data.get(key):
                fields[key] = data[key]
        return RemoteTask(**fields)

    # ─── Message / terminate ───────────────────────────────────────

    async def message(self, task_id: str, text: str) -> bool:
        client = await self._get_client()
        try:
            response = await client.post(f"/sessions/{task_id}/message", json={"message": text})
        except httpx.HTTPError as e:
            _logger.warning("agent_session.message_failed", task_id=task_id, error=str(e))
            return False
        if not response.is_success:
            _logger.warning(
                "agent_session.message_rejected",
                task_id=task_id,
                status_code=response.status_code,
            )
        return response.is_success

    async def terminate(self, task_id: str) -> bool:
        client = await self._get_client()
        try:
            response = await client.delete(f"/sessions/{task_id}")
        except httpx.HTTPError as e:
            _logger.warning("agent_session.terminate_failed", task_id=task_id, error=str(e))
            return False
        if not response.is_success:
            _logger.warning(
                "agent_session.terminate_rejected",
                task_id=task_id,
                status_code=response.status_code,
            )
        return response.is_success

    async def close(self) -> None:
        """Close the HTTP client connection."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> AgentSessionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
