"""Pause and resume commands for the patchwork CLI.

A running scheduler checks the workspace control file before every loop
iteration. Pausing stops new admissions and polling until resumed; live
remote tasks keep running on the remote side.
"""

from __future__ import annotations

from pathlib import Path

import typer

from patchwork.control import set_paused
from patchwork.core.config import CONTROL_FILE_NAME

from ..helpers import is_quiet, workspace_option
from ..output import console, output_json


def _toggle(workspace: Path, paused: bool, json_output: bool) -> None:
    control_file = workspace / CONTROL_FILE_NAME
    state = set_paused(control_file, paused)
    if json_output:
        output_json({"paused": state.paused, "control_file": str(control_file)})
    elif not is_quiet():
        word = "paused" if paused else "resumed"
        console.print(f"[green]Run {word}[/green] [dim]({control_file})[/dim]")


def pause(
    workspace: Path = workspace_option(),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
) -> None:
    """Pause the run using this workspace."""
    _toggle(workspace, True, json_output)


def resume(
    workspace: Path = workspace_option(),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
) -> None:
    """Resume a paused run."""
    _toggle(workspace, False, json_output)
