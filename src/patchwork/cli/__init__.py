"""patchwork CLI.

The CLI is built with Typer and organized into command modules:

    cli/
    ├── __init__.py       # This file - app assembly and global options
    ├── helpers.py        # Output level, logging setup, config loading
    ├── output.py         # Rich formatting
    └── commands/
        ├── plan.py       # plan command
        ├── run.py        # run command
        ├── pause.py      # pause, resume commands
        └── status.py     # status command
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from patchwork import __version__

from . import helpers as helpers
from .commands import pause, plan, resume, run, status
from .helpers import (
    OutputLevel,
    configure_global_logging,
    set_log_file,
    set_log_format,
    set_log_level,
    set_output_level,
)
from .output import console

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("json", "console", "both")

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="patchwork",
    help="Batch security findings into prioritized AI agent sessions",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"patchwork v{__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.VERBOSE)


def quiet_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.QUIET)


def log_level_callback(value: str | None) -> str | None:
    if value:
        if value.upper() not in _LOG_LEVELS:
            raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}")
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        if value.lower() not in _LOG_FORMATS:
            raise typer.BadParameter(f"must be one of {', '.join(_LOG_FORMATS)}")
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        is_eager=True,
        help="Show per-poll progress",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        callback=quiet_callback,
        is_eager=True,
        help="Show minimal output (errors only)",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="PATCHWORK_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="PATCHWORK_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="PATCHWORK_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """patchwork - remediate code-scanning findings with AI agent sessions."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

app.command()(plan)
app.command()(run)
app.command()(pause)
app.command()(resume)
app.command()(status)


__all__ = [
    "OutputLevel",
    "app",
    "console",
    "main",
]
