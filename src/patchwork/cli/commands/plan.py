"""Plan command for the patchwork CLI.

Loads a findings export, filters and triages it, and shows the batches a
run would create, in the order they would be admitted. Nothing is sent
to any remote service.
"""

from __future__ import annotations

from pathlib import Path

import typer

from patchwork.batching import partition, summarize
from patchwork.core.config import PartitionConfig
from patchwork.core.exceptions import FindingsLoadError
from patchwork.core.models import BatchingStrategy, Severity
from patchwork.findings import filter_by_severity, load_findings, triage
from patchwork.report import BatchRecord

from ..helpers import is_quiet
from ..output import console, create_plan_table, output_error, output_json

_DEFAULTS = PartitionConfig()


def plan(
    findings_file: Path = typer.Argument(
        ...,
        help="Code-scanning alert export (JSON)",
        exists=True,
        readable=True,
    ),
    strategy: str = typer.Option(
        _DEFAULTS.strategy.value,
        "--strategy",
        "-s",
        help="Batching strategy: " + ", ".join(s.value for s in BatchingStrategy),
    ),
    max_batch_size: int = typer.Option(
        _DEFAULTS.max_batch_size,
        "--max-batch-size",
        "-m",
        min=1,
        help="Maximum findings per batch",
    ),
    severity: list[str] | None = typer.Option(
        None,
        "--severity",
        help="Severity to include (repeatable). Defaults to critical, high and medium.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the plan as JSON",
    ),
) -> None:
    """Show how findings would be batched."""
    try:
        chosen = BatchingStrategy(strategy)
        severities = [Severity(s.lower()) for s in severity] if severity else _DEFAULTS.severity_filter
    except ValueError as e:
        output_error(str(e), json_output=json_output)
        raise typer.Exit(1) from None

    try:
        findings = load_findings(findings_file)
    except FindingsLoadError as e:
        output_error(str(e), json_output=json_output)
        raise typer.Exit(1) from None

    selected = triage(filter_by_severity(findings, severities))
    batches = partition(selected, chosen, max_batch_size)
    summary = summarize(batches)

    if json_output:
        output_json({
            "strategy": chosen.value,
            "max_batch_size": max_batch_size,
            "total_findings": len(selected),
            "filtered_out": len(findings) - len(selected),
            "summary": summary.to_dict(),
            "batches": [BatchRecord.from_batch(b).model_dump(mode="json") for b in batches],
        })
        return

    if is_quiet():
        return
    if not batches:
        console.print("[yellow]No findings match the severity filter.[/yellow]")
        return
    console.print(create_plan_table(batches, title=f"Batch Plan ({chosen.value})"))
    console.print(
        f"\n{summary.total_findings} findings in {summary.total_batches} batches"
        f" ({len(findings) - len(selected)} filtered out)"
    )
