"""Status command for the patchwork CLI.

Reads the run report from a workspace. The report is rewritten as
batches settle, so this also works while a run is in progress.
"""

from __future__ import annotations

from pathlib import Path

import typer

from patchwork.control import load_control
from patchwork.core.config import CONTROL_FILE_NAME, REPORT_FILE_NAME
from patchwork.report import load_report

from ..helpers import workspace_option
from ..output import (
    console,
    create_batches_table,
    create_run_summary_panel,
    output_error,
    output_json,
)


def status(
    workspace: Path = workspace_option(),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output the report as JSON"),
) -> None:
    """Show the last run recorded in a workspace."""
    report = load_report(workspace / REPORT_FILE_NAME)
    if report is None:
        output_error(
            f"No run report in {workspace}",
            hints=["Start a run with 'patchwork run CONFIG --findings FILE'"],
            json_output=json_output,
        )
        raise typer.Exit(1)

    paused = load_control(workspace / CONTROL_FILE_NAME).paused
    if json_output:
        output_json(
            report.model_dump(mode="json")
            | {
                "pull_requests": report.pull_requests,
                "needs_review": [b.group_key for b in report.needs_review],
                "paused": paused,
            }
        )
        return

    console.print(create_run_summary_panel(report))
    if paused:
        console.print("[magenta]Paused[/magenta] [dim](run 'patchwork resume' to continue)[/dim]")
    if report.batches:
        console.print(create_batches_table(report.batches))
    for url in report.pull_requests:
        console.print(f"  [link={url}]{url}[/link]")
