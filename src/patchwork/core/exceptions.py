"""Exception hierarchy for patchwork.

All patchwork exceptions inherit from PatchworkError, so callers can catch
broadly or narrowly. Remote-service outcomes are split by how the scheduler
must react to them:

- ``CapacityError`` (rate limit / concurrency limit): requeue and cool down.
- ``TransientRemoteError``: on poll, retry with backoff; on create, fail the batch.
- ``FatalRemoteError``: abort the whole run.
- any other ``RemoteTaskError``: fail the affected batch only.
"""

from __future__ import annotations


class PatchworkError(Exception):
    """Base exception for all patchwork errors."""


class ConfigurationError(PatchworkError):
    """Raised when a run configuration is missing or invalid."""


class FindingsLoadError(PatchworkError):
    """Raised when a findings export cannot be read or parsed."""


class InvalidTransitionError(PatchworkError):
    """Raised when a batch status change would break the lifecycle order."""


class RemoteTaskError(PatchworkError):
    """A remote task operation failed.

    Attributes:
        status_code: HTTP status returned by the remote service, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CapacityError(RemoteTaskError):
    """The remote service refused new work for now; safe to retry later."""


class RateLimitedError(CapacityError):
    """The remote service rate-limited a request."""


class ConcurrencyLimitError(CapacityError):
    """The remote service is already running its maximum number of tasks."""


class TransientRemoteError(RemoteTaskError):
    """A network or server failure that may succeed on retry."""


class FatalRemoteError(RemoteTaskError):
    """Authentication or authorization failure; the run cannot continue."""


__all__ = [
    "CapacityError",
    "ConcurrencyLimitError",
    "ConfigurationError",
    "FatalRemoteError",
    "FindingsLoadError",
    "InvalidTransitionError",
    "PatchworkError",
    "RateLimitedError",
    "RemoteTaskError",
    "TransientRemoteError",
]
