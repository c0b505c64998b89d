"""Tests for patchwork CLI commands."""

from __future__ import annotations

import importlib
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from patchwork import __version__
from patchwork.cli import app
from patchwork.control import load_control
from patchwork.core.config import CONTROL_FILE_NAME, REPORT_FILE_NAME
from patchwork.core.exceptions import FatalRemoteError
from patchwork.core.models import BatchStatus, TaskStatus
from patchwork.execution import CheckResult, CheckState
from patchwork.report import RunReport, RunStatus, load_report, save_report
from tests.helpers import FakeRemoteClient, task_state

runner = CliRunner()
run_module = importlib.import_module("patchwork.cli.commands.run")


def _alert(number: int, severity: str, cwe: str, path: str) -> dict:
    return {
        "number": number,
        "state": "open",
        "rule": {
            "id": f"py/rule-{number}",
            "name": f"Rule {number}",
            "security_severity_level": severity,
            "tags": ["security", f"external/cwe/{cwe}"],
        },
        "most_recent_instance": {
            "location": {"path": path, "start_line": 3, "end_line": 4},
            "message": {"text": "tainted input"},
        },
    }


@pytest.fixture
def findings_file(tmp_path: Path) -> Path:
    path = tmp_path / "alerts.json"
    path.write_text(json.dumps([
        _alert(1, "critical", "cwe-089", "src/db.py"),
        _alert(2, "critical", "cwe-089", "src/report.py"),
        _alert(3, "high", "cwe-079", "src/views.py"),
        _alert(4, "medium", "cwe-089", "src/admin.py"),
        _alert(5, "medium", "cwe-089", "src/api.py"),
        _alert(6, "low", "cwe-022", "src/files.py"),
    ]))
    return path


@pytest.fixture
def config_file(tmp_path: Path, temp_workspace: Path) -> Path:
    path = tmp_path / "run.yaml"
    path.write_text(
        "github:\n"
        "  repository: acme/webapp\n"
        "partition:\n"
        "  min_findings: 1\n"
        "scheduler:\n"
        "  max_concurrent: 2\n"
        "  min_poll_interval_seconds: 0.01\n"
        "  max_poll_interval_seconds: 0.05\n"
        "  create_spacing_seconds: 0\n"
        "  rate_limit_cooldown_seconds: 0.01\n"
        "  pause_check_interval_seconds: 0.01\n"
        "gate:\n"
        "  enabled: false\n"
        "workspace:\n"
        f"  path: {temp_workspace}\n"
    )
    return path


@pytest.fixture
def fake_remote(monkeypatch) -> FakeRemoteClient:
    """Route the run command to an in-memory remote client."""
    remote = FakeRemoteClient()

    class _Factory:
        @staticmethod
        def from_config(config, repository):
            return remote

    monkeypatch.setattr(run_module, "AgentSessionClient", _Factory)
    return remote


class TestVersion:
    """Tests for the --version flag."""

    def test_version_shows_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"patchwork v{__version__}" in result.stdout

    def test_invalid_log_level(self) -> None:
        result = runner.invoke(app, ["--log-level", "LOUD", "status"])
        assert result.exit_code != 0


class TestPlanCommand:
    """Tests for the plan command."""

    def test_plan_json(self, findings_file: Path) -> None:
        """Test the worked example: critical, high and medium batches."""
        result = runner.invoke(app, ["plan", str(findings_file), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["strategy"] == "severity-then-category"
        assert data["total_findings"] == 5
        assert data["filtered_out"] == 1
        assert [b["group_key"] for b in data["batches"]] == [
            "critical-CWE-89",
            "high-CWE-79",
            "medium-CWE-89",
        ]
        assert [b["priority"] for b in data["batches"]] == [104, 82, 64]
        assert data["summary"]["total_batches"] == 3

    def test_plan_strategy_and_size(self, findings_file: Path) -> None:
        result = runner.invoke(
            app,
            ["plan", str(findings_file), "-s", "severity-only", "-m", "1", "--json"],
        )

        assert result.exit_code == 0
        keys = [b["group_key"] for b in json.loads(result.stdout)["batches"]]
        assert keys[:2] == ["critical-part1", "critical-part2"]
        assert len(keys) == 5

    def test_plan_severity_filter(self, findings_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(findings_file), "--severity", "low", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [b["group_key"] for b in data["batches"]] == ["low-CWE-22"]

    def test_plan_table(self, findings_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(findings_file)])

        assert result.exit_code == 0
        assert "5 findings in 3 batches (1 filtered out)" in result.stdout

    def test_plan_nothing_matches(self, findings_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(findings_file), "--severity", "note"])

        assert result.exit_code == 0
        assert "No findings match" in result.stdout

    def test_plan_unknown_strategy(self, findings_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(findings_file), "-s", "by-mood"])

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_plan_bad_findings_file(self, tmp_path: Path) -> None:
        path = tmp_path / "alerts.json"
        path.write_text("not json")

        result = runner.invoke(app, ["plan", str(path), "--json"])

        assert result.exit_code == 1
        assert json.loads(result.stdout)["success"] is False


class TestPauseResume:
    """Tests for the pause and resume commands."""

    def test_pause_then_resume(self, temp_workspace: Path) -> None:
        control_file = temp_workspace / CONTROL_FILE_NAME

        result = runner.invoke(app, ["pause", "-w", str(temp_workspace)])
        assert result.exit_code == 0
        assert "Run paused" in result.stdout
        assert load_control(control_file).paused is True

        result = runner.invoke(app, ["resume", "-w", str(temp_workspace), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["paused"] is False
        assert load_control(control_file).paused is False


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_without_report(self, temp_workspace: Path) -> None:
        result = runner.invoke(app, ["status", "-w", str(temp_workspace)])

        assert result.exit_code == 1
        assert "No run report" in result.stdout

    def test_status_json(self, temp_workspace: Path) -> None:
        report = RunReport(repository="acme/webapp", strategy="by-category")
        report.finish(RunStatus.COMPLETED)
        save_report(report, temp_workspace / REPORT_FILE_NAME)
        runner.invoke(app, ["pause", "-w", str(temp_workspace)])

        result = runner.invoke(app, ["status", "-w", str(temp_workspace), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["run_id"] == report.run_id
        assert data["status"] == "completed"
        assert data["paused"] is True
        assert data["pull_requests"] == []

    def test_status_table(self, temp_workspace: Path) -> None:
        report = RunReport(repository="acme/webapp")
        save_report(report, temp_workspace / REPORT_FILE_NAME)

        result = runner.invoke(app, ["status", "-w", str(temp_workspace)])

        assert result.exit_code == 0
        assert "acme/webapp" in result.stdout
        assert "RUNNING" in result.stdout


class TestRunCommand:
    """Tests for the run command and its exit codes."""

    def _report(self, workspace: Path) -> RunReport:
        report = load_report(workspace / REPORT_FILE_NAME)
        assert report is not None
        return report

    def test_dry_run(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        result = runner.invoke(
            app, ["run", str(config_file), "-f", str(findings_file), "--dry-run"]
        )

        assert result.exit_code == 0
        assert fake_remote.created == []
        report = self._report(temp_workspace)
        assert report.status == RunStatus.PLANNED
        assert [b.group_key for b in report.batches] == [
            "critical-CWE-89",
            "high-CWE-79",
            "medium-CWE-89",
        ]

    def test_successful_run(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        fake_remote.script(
            "high-CWE-79",
            TaskStatus.WORKING,
            task_state(TaskStatus.FINISHED, artifact="https://github.com/acme/webapp/pull/5"),
        )

        result = runner.invoke(
            app, ["run", str(config_file), "-f", str(findings_file), "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "completed"
        assert data["pull_requests"] == ["https://github.com/acme/webapp/pull/5"]
        assert data["stats"]["completed"] == 3
        assert fake_remote.closed is True
        assert self._report(temp_workspace).count(BatchStatus.COMPLETED) == 3

    def test_failed_batch_exits_1(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        fake_remote.script("medium-CWE-89", TaskStatus.EXPIRED)

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 1
        report = self._report(temp_workspace)
        assert report.status == RunStatus.FAILED
        failed = [b for b in report.batches if b.status == BatchStatus.FAILED]
        assert [b.failure_reason for b in failed] == ["task_failed"]

    def test_fatal_error_exits_3(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        fake_remote.create_outcomes = [FatalRemoteError("401", status_code=401)]

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 3
        report = self._report(temp_workspace)
        assert report.status == RunStatus.ABORTED
        assert fake_remote.closed is True

    def test_run_timeout_exits_2(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        config_file.write_text(config_file.read_text().replace(
            "  max_concurrent: 2\n", "  max_concurrent: 2\n  run_timeout_seconds: 0.05\n"
        ))
        for key in ("critical-CWE-89", "high-CWE-79", "medium-CWE-89"):
            fake_remote.script(key, TaskStatus.WORKING)

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 2
        assert self._report(temp_workspace).status == RunStatus.TIMED_OUT

    def test_below_minimum_is_skipped(self, config_file, findings_file, temp_workspace, fake_remote) -> None:
        config_file.write_text(
            config_file.read_text().replace("min_findings: 1", "min_findings: 50")
        )

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 0
        assert self._report(temp_workspace).status == RunStatus.SKIPPED
        assert fake_remote.created == []

    def test_skipped_batches_from_control_file(
        self, config_file, findings_file, temp_workspace, fake_remote
    ) -> None:
        (temp_workspace / CONTROL_FILE_NAME).write_text(
            json.dumps({"skip_batches": ["medium-CWE-89"]})
        )

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 0
        assert [b.group_key for b in fake_remote.created] == ["critical-CWE-89", "high-CWE-79"]

    def test_missing_api_key(self, config_file, findings_file, monkeypatch) -> None:
        monkeypatch.delenv("DEVIN_API_KEY", raising=False)

        result = runner.invoke(app, ["run", str(config_file), "-f", str(findings_file)])

        assert result.exit_code == 1
        assert "DEVIN_API_KEY" in result.stdout

    def test_invalid_config(self, tmp_path, findings_file) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("scheduler:\n  max_concurrent: 0\n")

        result = runner.invoke(app, ["run", str(path), "-f", str(findings_file)])

        assert result.exit_code == 1
        assert "Error" in result.stdout


class _StubChecks:
    """Check provider answering every query with one result, or raising one error."""

    def __init__(self, outcome: CheckResult | Exception) -> None:
        self.outcome = outcome
        self.closed = False

    async def get_status(self, artifact_ref: str) -> CheckResult:
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def close(self) -> None:
        self.closed = True


class TestRunWithGate:
    """Tests for runs with the CI gate enabled."""

    PR = "https://github.com/acme/webapp/pull/5"

    @pytest.fixture
    def gated_config(self, config_file: Path) -> Path:
        config_file.write_text(config_file.read_text().replace(
            "  enabled: false\n",
            "  enabled: true\n  poll_interval_seconds: 0.01\n  timeout_seconds: 5\n",
        ))
        return config_file

    def _use_checks(self, monkeypatch, checks: _StubChecks) -> None:
        class _Factory:
            @staticmethod
            def from_config(github, gate):
                return checks

        monkeypatch.setattr(run_module, "GitHubChecksProvider", _Factory)

    def test_gate_error_fails_only_its_batch(
        self, gated_config, findings_file, temp_workspace, fake_remote, monkeypatch
    ) -> None:
        checks = _StubChecks(AttributeError("'str' object has no attribute 'get'"))
        self._use_checks(monkeypatch, checks)
        fake_remote.script("high-CWE-79", task_state(TaskStatus.FINISHED, artifact=self.PR))

        result = runner.invoke(app, ["run", str(gated_config), "-f", str(findings_file), "--json"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["status"] == "failed"
        by_key = {b["group_key"]: b for b in data["batches"]}
        assert by_key["high-CWE-79"]["failure_reason"] == "gate_failed"
        assert by_key["high-CWE-79"]["gate_attempts"] == 0
        assert "no attribute 'get'" in by_key["high-CWE-79"]["gate_reason"]
        assert by_key["critical-CWE-89"]["status"] == "completed"
        assert by_key["medium-CWE-89"]["status"] == "completed"
        assert checks.closed is True
        assert self._report(temp_workspace).finished_at is not None

    def test_gate_outcome_and_review_flag_in_report(
        self, gated_config, findings_file, temp_workspace, fake_remote, monkeypatch
    ) -> None:
        self._use_checks(monkeypatch, _StubChecks(CheckResult(CheckState.PASSED, commit="c1")))
        fake_remote.script(
            "high-CWE-79",
            task_state(TaskStatus.FINISHED, artifact=self.PR, confidence=0.5),
        )

        result = runner.invoke(app, ["run", str(gated_config), "-f", str(findings_file), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["needs_review"] == ["high-CWE-79"]
        assert data["stats"]["needs_review"] == 1
        record = next(b for b in data["batches"] if b["group_key"] == "high-CWE-79")
        assert record["gate_passed"] is True
        assert record["gate_attempts"] == 0
        assert record["gate_reason"] == "checks passed"
        assert record["needs_review"] is True

        saved = next(b for b in self._report(temp_workspace).batches if b.group_key == "high-CWE-79")
        assert saved.gate_reason == "checks passed"
        assert saved.needs_review is True

    def _report(self, workspace: Path) -> RunReport:
        report = load_report(workspace / REPORT_FILE_NAME)
        assert report is not None
        return report
