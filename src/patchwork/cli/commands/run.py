"""Run command for the patchwork CLI.

Loads findings, plans batches, and drives them through agent sessions
with the CI gate, writing the run report to the workspace as batches
settle.

Exit codes:
    0  every batch completed (or nothing to do / dry run)
    1  at least one batch failed, or the run could not start
    2  the global run timeout elapsed
    3  the remote service rejected credentials and the run was aborted
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.panel import Panel

from patchwork.backends import AgentSessionClient
from patchwork.batching import Partitioner
from patchwork.control import ControlFilePauseCheck, apply_control, load_control
from patchwork.core.config import RunConfig
from patchwork.core.exceptions import ConfigurationError, FatalRemoteError, FindingsLoadError
from patchwork.core.logging import ExecutionContext, get_logger, with_context
from patchwork.core.models import Batch, BatchStatus, GateResult, RemoteTask
from patchwork.execution import BatchScheduler, CIGate, GitHubChecksProvider
from patchwork.findings import filter_by_severity, load_findings, triage
from patchwork.report import RunReport, RunStatus, save_report

from ..helpers import ExitCode, is_quiet, is_verbose, load_run_config
from ..output import (
    console,
    create_batches_table,
    create_plan_table,
    create_run_summary_panel,
    output_error,
    output_json,
)

_logger = get_logger("cli.run")


def run(
    config_file: Path = typer.Argument(
        ...,
        help="Path to YAML run configuration",
        exists=True,
        readable=True,
    ),
    findings_file: Path = typer.Option(
        ...,
        "--findings",
        "-f",
        help="Code-scanning alert export (JSON)",
        exists=True,
        readable=True,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Plan batches and write the report without creating sessions",
    ),
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Override the workspace directory from the config",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the final report as JSON",
    ),
) -> None:
    """Remediate findings with remote agent sessions."""
    config = load_run_config(config_file, json_output)
    if workspace is not None:
        config.workspace.path = workspace
    if dry_run:
        config.dry_run = True

    code = asyncio.run(_run(config, findings_file, json_output))
    raise typer.Exit(code)


def _finish(report: RunReport, config: RunConfig, json_output: bool) -> None:
    save_report(report, config.workspace.report_file)
    if json_output:
        output_json(report.model_dump(mode="json") | {
            "pull_requests": report.pull_requests,
            "needs_review": [b.group_key for b in report.needs_review],
        })
    elif not is_quiet():
        if report.batches and report.status != RunStatus.PLANNED:
            console.print(create_batches_table(report.batches))
        console.print(create_run_summary_panel(report))


async def _run(config: RunConfig, findings_file: Path, json_output: bool) -> int:
    """Execute one run and return the process exit code."""
    report = RunReport(
        repository=config.github.repository,
        strategy=config.partition.strategy.value,
    )
    with with_context(ExecutionContext(run_id=report.run_id, component="cli")):
        try:
            findings = load_findings(findings_file)
        except FindingsLoadError as e:
            output_error(str(e), json_output=json_output)
            return ExitCode.BATCH_FAILED

        selected = triage(filter_by_severity(findings, config.partition.severity_filter))
        report.total_findings = len(selected)

        if len(selected) < config.partition.min_findings:
            _logger.info(
                "run.below_threshold",
                findings=len(selected),
                min_findings=config.partition.min_findings,
            )
            report.finish(
                RunStatus.SKIPPED,
                f"{len(selected)} findings, below the minimum of {config.partition.min_findings}",
            )
            _finish(report, config, json_output)
            return ExitCode.SUCCESS

        partitioner = Partitioner(config.partition.strategy, config.partition.max_batch_size)
        control = load_control(config.workspace.control_file)
        batches = apply_control(partitioner.partition(selected), control, partitioner)
        report.update_batches(batches)

        if config.dry_run:
            report.finish(RunStatus.PLANNED)
            if not json_output and not is_quiet():
                console.print(create_plan_table(batches, title="Dry Run - Batch Plan"))
            _finish(report, config, json_output)
            return ExitCode.SUCCESS

        try:
            client = AgentSessionClient.from_config(config.remote, config.github.repository)
            checks = (
                GitHubChecksProvider.from_config(config.github, config.gate)
                if config.gate.enabled
                else None
            )
        except ConfigurationError as e:
            output_error(str(e), json_output=json_output)
            return ExitCode.BATCH_FAILED

        if not json_output and not is_quiet():
            console.print(Panel(
                f"[bold]{config.github.repository}[/bold]\n"
                f"Findings: {len(selected)} in {len(batches)} batches\n"
                f"Strategy: {partitioner.strategy.value}\n"
                f"Max concurrent sessions: {config.scheduler.max_concurrent}\n"
                f"CI gate: {'on' if checks else 'off'}\n"
                f"Workspace: {config.workspace.path}",
                title="Remediation Run",
            ))

        gate = CIGate(checks, client, config.gate, prompts=client.prompts) if checks else None
        scheduler = BatchScheduler(client, config.scheduler, gate=gate, run_id=report.run_id)
        return await _execute(report, batches, scheduler, config, json_output, client, checks)


async def _execute(
    report: RunReport,
    batches: list[Batch],
    scheduler: BatchScheduler,
    config: RunConfig,
    json_output: bool,
    client: AgentSessionClient,
    checks: GitHubChecksProvider | None,
) -> int:
    show = not json_output and not is_quiet()

    def on_progress(batch: Batch, task: RemoteTask) -> None:
        if show and is_verbose():
            step = task.progress.current_step if task.progress else None
            console.print(
                f"[dim]{batch.group_key}: {task.status.value} "
                f"{task.percent_complete:.0f}%{f' - {step}' if step else ''}[/dim]"
            )

    def on_complete(
        batch: Batch, task: RemoteTask | None, gate_result: GateResult | None
    ) -> None:
        report.update_batches(batches)
        if gate_result is not None:
            report.record_gate(batch.id, gate_result)
        save_report(report, config.workspace.report_file)
        if show:
            if batch.status == BatchStatus.COMPLETED:
                review = " [yellow](needs review)[/yellow]" if batch.needs_review else ""
                console.print(
                    f"[green]✓[/green] {batch.group_key} {batch.artifact_ref or ''}{review}"
                )
            else:
                reason = batch.failure_reason.value if batch.failure_reason else "failed"
                console.print(f"[red]✗[/red] {batch.group_key} ({reason})")

    save_report(report, config.workspace.report_file)
    exit_code = ExitCode.SUCCESS
    try:
        await scheduler.run(
            batches,
            on_progress=on_progress,
            on_complete=on_complete,
            is_paused=ControlFilePauseCheck(config.workspace.control_file),
        )
    except FatalRemoteError as e:
        report.finish(RunStatus.ABORTED, str(e))
        exit_code = ExitCode.FATAL
    finally:
        await client.close()
        if checks is not None:
            await checks.close()

    report.update_batches(batches)
    report.stats = scheduler.stats.to_dict()
    if exit_code == ExitCode.SUCCESS:
        if scheduler.stats.timed_out:
            report.finish(RunStatus.TIMED_OUT, "run timeout elapsed before all batches settled")
            exit_code = ExitCode.RUN_TIMEOUT
        elif any(b.status == BatchStatus.FAILED for b in batches):
            report.finish(RunStatus.FAILED)
            exit_code = ExitCode.BATCH_FAILED
        else:
            report.finish(RunStatus.COMPLETED)

    _finish(report, config, json_output)
    return exit_code
