"""Abstract base for remote task backends.

A backend starts long-running remote tasks (agent sessions) and reports
on them. The scheduler only talks to this interface, so a backend can be
swapped for an in-memory fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from patchwork.core.models import Batch, RemoteTask, TaskHandle


class RemoteTaskClient(ABC):
    """Create, poll, message and terminate remote tasks."""

    @abstractmethod
    async def create(self, batch: Batch) -> TaskHandle:
        """Start a remote task for ``batch``.

        Raises:
            RateLimitedError: The service is rate limiting requests.
            ConcurrencyLimitError: The service is at its task limit.
            FatalRemoteError: Credentials were rejected.
            RemoteTaskError: Any other failure; the batch cannot be started.
        """
        ...

    @abstractmethod
    async def poll(self, task_id: str) -> RemoteTask:
        """Fetch the current state of a task.

        Raises:
            TransientRemoteError: Network, server or rate-limit failure.
            FatalRemoteError: Credentials were rejected.
        """
        ...

    @abstractmethod
    async def message(self, task_id: str, text: str) -> bool:
        """Send a follow-up message to a running task. Best effort.

        Returns:
            True if the service accepted the message.
        """
        ...

    @abstractmethod
    async def terminate(self, task_id: str) -> bool:
        """Stop a task. Best effort; failures are logged, not raised.

        Returns:
            True if the service confirmed termination.
        """
        ...

    async def close(self) -> None:
        """Release held resources. Default is a no-op."""
        return None

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        ...
