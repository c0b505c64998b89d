"""Rich output formatting for the patchwork CLI.

Centralizes the console instance, status colors, tables and panels so
every command renders batches and runs the same way.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Literal

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from patchwork.core.models import Batch, BatchStatus, Severity
from patchwork.report import BatchRecord, RunReport, RunStatus

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Color schemes for status values
# =============================================================================


class StatusColors:
    """Color mappings for batch, run and severity values."""

    BATCH_STATUS: dict[BatchStatus, str] = {
        BatchStatus.PENDING: "yellow",
        BatchStatus.IN_PROGRESS: "blue",
        BatchStatus.COMPLETED: "green",
        BatchStatus.FAILED: "red",
    }

    RUN_STATUS: dict[RunStatus, str] = {
        RunStatus.PLANNED: "cyan",
        RunStatus.SKIPPED: "dim",
        RunStatus.RUNNING: "blue",
        RunStatus.COMPLETED: "green",
        RunStatus.FAILED: "red",
        RunStatus.TIMED_OUT: "yellow",
        RunStatus.ABORTED: "red",
    }

    SEVERITY: dict[Severity, str] = {
        Severity.CRITICAL: "bold red",
        Severity.HIGH: "red",
        Severity.ERROR: "red",
        Severity.MEDIUM: "yellow",
        Severity.LOW: "cyan",
        Severity.WARNING: "dim",
        Severity.NOTE: "dim",
    }

    @classmethod
    def get_batch_color(cls, status: BatchStatus) -> str:
        return cls.BATCH_STATUS.get(status, "white")

    @classmethod
    def get_run_color(cls, status: RunStatus) -> str:
        return cls.RUN_STATUS.get(status, "white")

    @classmethod
    def get_severity_color(cls, severity: Severity | str) -> str:
        try:
            return cls.SEVERITY.get(Severity(severity), "white")
        except ValueError:
            return "white"


# =============================================================================
# Formatting
# =============================================================================


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds as "5.2s", "3m 12s" or "1h 30m"."""
    if seconds is None:
        return "N/A"

    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def output_json(data: Any, console_instance: Console | None = None) -> None:
    """Write JSON verbatim, without Rich markup, highlighting or wrapping."""
    out = console_instance or console
    out.out(json.dumps(data, indent=2, default=str), highlight=False)


# =============================================================================
# Table builders
# =============================================================================


def create_plan_table(batches: Sequence[Batch], title: str = "Batch Plan") -> Table:
    """Table of planned batches in execution order."""
    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Group", style="cyan", no_wrap=True)
    table.add_column("Severity")
    table.add_column("Priority", justify="right")
    table.add_column("Findings", justify="right")
    table.add_column("Alerts", style="dim")

    for index, batch in enumerate(batches, start=1):
        color = StatusColors.get_severity_color(batch.severity)
        table.add_row(
            str(index),
            batch.group_key,
            f"[{color}]{batch.severity.value}[/{color}]",
            str(batch.priority),
            str(batch.size),
            ", ".join(f"#{f.number}" for f in batch.findings),
        )
    return table


def create_batches_table(records: Sequence[BatchRecord], title: str = "Batches") -> Table:
    """Table of batch outcomes from a run report."""
    table = Table(title=title)
    table.add_column("Group", style="cyan", no_wrap=True)
    table.add_column("Status", style="bold")
    table.add_column("Findings", justify="right")
    table.add_column("Pull Request")
    table.add_column("Confidence", justify="right")
    table.add_column("Failure", style="red")

    for record in records:
        color = StatusColors.get_batch_color(record.status)
        confidence = (
            f"{record.confidence_score:.0%}" if record.confidence_score is not None else "-"
        )
        if record.needs_review:
            confidence = f"[yellow]{confidence} review[/yellow]"
        table.add_row(
            record.group_key,
            f"[{color}]{record.status.value}[/{color}]",
            str(len(record.finding_numbers)),
            record.artifact_ref or "-",
            confidence,
            record.failure_reason or "",
        )
    return table


# =============================================================================
# Panel builders
# =============================================================================


def create_run_summary_panel(report: RunReport) -> Panel:
    """Summary panel for a finished (or in-flight) run."""
    color = StatusColors.get_run_color(report.status)
    duration = None
    if report.finished_at is not None:
        duration = (report.finished_at - report.started_at).total_seconds()

    lines = [
        f"[bold]{report.repository}[/bold]  [dim]{report.run_id}[/dim]",
        f"Status: [{color}]{report.status.value.upper()}[/{color}]",
        "",
        "[bold]Batches[/bold]",
        f"  Completed: {report.count(BatchStatus.COMPLETED)}/{len(report.batches)}",
        f"  Failed: {report.count(BatchStatus.FAILED)}",
        f"  In progress: {report.count(BatchStatus.IN_PROGRESS)}",
        f"  Pending: {report.count(BatchStatus.PENDING)}",
        "",
        f"Findings: {report.total_findings}",
        f"Pull requests: {len(report.pull_requests)}",
        f"Needs review: {len(report.needs_review)}",
        f"Duration: {format_duration(duration)}",
    ]
    if report.error:
        lines.extend(["", f"[red]Error:[/red] {escape(report.error)}"])

    border = "green" if report.status == RunStatus.COMPLETED else "yellow"
    return Panel("\n".join(lines), title="Run Summary", border_style=border)


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Print an error or warning with optional hints, or as JSON."""
    out = console_instance or console
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        output_json(result, out)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    out.print(f"[{color}]{label}:[/{color}] {escape(message)}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {escape(hint)}")
