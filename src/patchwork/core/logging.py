"""Structured logging infrastructure for patchwork.

Wraps structlog with patchwork-specific context such as run_id, batch_id
and component names. Supports console and JSON rendering, plus rotating
file output.

Example usage:
    from patchwork.core.logging import ExecutionContext, configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")
    logger = get_logger("scheduler")
    logger.info("scheduler.batch_admitted", batch_id="abc")

    ctx = ExecutionContext(run_id="run-1")
    with with_context(ctx.with_batch("abc")):
        logger.debug("scheduler.poll")  # includes run_id and batch_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names containing any of these fragments are never logged verbatim
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})

REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable correlation context for one scheduler run.

    Attributes:
        run_id: Unique id of the remediation run.
        batch_id: Batch currently being handled, if any.
        component: Component name for the current operation.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    batch_id: str | None = None
    component: str = "unknown"

    def with_batch(self, batch_id: str) -> ExecutionContext:
        """Return a copy scoped to ``batch_id``."""
        return replace(self, batch_id=batch_id)

    def with_component(self, component: str) -> ExecutionContext:
        """Return a copy scoped to ``component``."""
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        """Context fields for log events (``None`` values omitted)."""
        result: dict[str, Any] = {"run_id": self.run_id, "component": self.component}
        if self.batch_id is not None:
            result["batch_id"] = self.batch_id
        return result


_current_context: ContextVar[ExecutionContext | None] = ContextVar(
    "patchwork_context", default=None
)


def get_current_context() -> ExecutionContext | None:
    """Return the active ExecutionContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Make ``ctx`` the active context for the duration of the block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
        return REDACTED
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts credential-looking fields.

    Nested dicts are sanitized one level deep, which covers request
    headers and payload summaries.
    """
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Merge the active ExecutionContext; explicit event keys win."""
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class PatchworkLogger:
    """Component-bound logger over structlog.

    The underlying structlog logger is fetched on every call so that
    loggers created at import time honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    @property
    def component(self) -> str:
        return self._component

    def bind(self, **context: Any) -> PatchworkLogger:
        """Return a new logger with ``context`` bound."""
        return PatchworkLogger(self._component, **{
            k: v for k, v in {**self._context, **context}.items() if k != "component"
        })

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure patchwork structured logging.

    Call once at startup. Replaces any handlers already on the root logger.

    Args:
        level: Minimum log level.
        format: ``console`` for human-readable stderr output, ``json`` for
            JSON lines (to ``file_path`` when given, stdout otherwise),
            ``both`` for console on stderr plus JSON to ``file_path``.
        file_path: Log file, rotated at ``max_file_size_mb``.
        max_file_size_mb: Rotation threshold in megabytes.
        backup_count: Rotated files to keep.
        include_timestamps: Add an ISO8601 UTC ``timestamp`` field.
        include_context: Merge the active ExecutionContext into events.

    Raises:
        ValueError: If ``format="both"`` without ``file_path``.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            ))
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> PatchworkLogger:
    """Get a logger bound to ``component``."""
    return PatchworkLogger(component, **initial_context)


__all__ = [
    "ExecutionContext",
    "PatchworkLogger",
    "REDACTED",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
