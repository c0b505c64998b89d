"""Shared utilities for patchwork CLI commands.

Holds the global output and logging options set by the app callback,
plus config and workspace resolution shared by several commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from patchwork.core.config import RunConfig, WorkspaceConfig
from patchwork.core.exceptions import ConfigurationError
from patchwork.core.logging import configure_logging, get_logger

from .output import output_error

_logger = get_logger("cli")


# =============================================================================
# Exit codes
# =============================================================================


class ExitCode:
    """Process exit codes of ``patchwork run``."""

    SUCCESS = 0
    BATCH_FAILED = 1
    RUN_TIMEOUT = 2
    FATAL = 3


# =============================================================================
# Output level management
# =============================================================================


class OutputLevel(str, Enum):
    """Output verbosity level."""

    QUIET = "quiet"  # Errors only
    NORMAL = "normal"
    VERBOSE = "verbose"  # Per-poll progress lines


_output_level: OutputLevel = OutputLevel.NORMAL


def get_output_level() -> OutputLevel:
    return _output_level


def set_output_level(level: OutputLevel) -> None:
    global _output_level
    _output_level = level


def is_verbose() -> bool:
    return _output_level == OutputLevel.VERBOSE


def is_quiet() -> bool:
    return _output_level == OutputLevel.QUIET


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging options collected from global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt.lower()  # type: ignore[assignment]


def get_log_config() -> CliLoggingConfig:
    return _log_config


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global CLI options, once per process.

    Raises:
        typer.Exit: If the options are inconsistent.
    """
    if _log_config.configured:
        return

    # A log file with the default console format also gets JSON lines
    fmt = _log_config.format
    if _log_config.file is not None and fmt == "console":
        fmt = "both"

    try:
        configure_logging(
            level=_log_config.level,
            format=fmt,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        output_error(f"Logging configuration error: {e}", console_instance=console)
        raise typer.Exit(1) from None


def reset_cli_state() -> None:
    """Reset global CLI options (used by tests)."""
    global _output_level, _log_config
    _output_level = OutputLevel.NORMAL
    _log_config = CliLoggingConfig()


# =============================================================================
# Config and workspace helpers
# =============================================================================

DEFAULT_WORKSPACE = WorkspaceConfig().path


def load_run_config(config_file: Path, json_output: bool = False) -> RunConfig:
    """Load a run config or exit with a readable error.

    Raises:
        typer.Exit: With code 1 if the config is invalid.
    """
    try:
        return RunConfig.from_yaml(config_file)
    except ConfigurationError as e:
        output_error(
            str(e),
            hints=["Check the YAML against the documented RunConfig fields"],
            json_output=json_output,
        )
        raise typer.Exit(1) from None


def workspace_option(default: Path = DEFAULT_WORKSPACE) -> Path:
    return typer.Option(
        default,
        "--workspace",
        "-w",
        help="Workspace directory holding the run report and control file",
    )
