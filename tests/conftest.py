"""Pytest fixtures for patchwork tests."""

import logging
from pathlib import Path
from typing import Generator

import pytest
import structlog

from patchwork.cli import helpers as cli_helpers
from patchwork.core.config import GitHubConfig, RunConfig, SchedulerConfig
from patchwork.core.models import Finding

from tests.helpers import FakeClock, FakeRemoteClient, make_finding


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    """Scheduler settings with round numbers and no create spacing."""
    return SchedulerConfig(
        max_concurrent=2,
        batch_timeout_seconds=600.0,
        run_timeout_seconds=3600.0,
        min_poll_interval_seconds=10.0,
        max_poll_interval_seconds=60.0,
        backoff_multiplier=1.5,
        max_poll_failures=3,
        create_spacing_seconds=0.0,
        rate_limit_cooldown_seconds=30.0,
        rate_limit_reduce_after=3,
        pause_check_interval_seconds=5.0,
    )


@pytest.fixture
def sample_findings() -> list[Finding]:
    """Five findings spanning severities, categories and files."""
    return [
        make_finding(1, "critical", "CWE-89", "src/db/query.py", 10, 12),
        make_finding(2, "high", "CWE-79", "src/web/views.py", 40, 41),
        make_finding(3, "high", "CWE-79", "src/web/forms.py", 5, 30),
        make_finding(4, "medium", "CWE-22", "src/files.py", 7, 7),
        make_finding(5, "medium", "CWE-362", "src/db/pool.py", 100, 160),
    ]


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a sample run configuration dictionary."""
    return {
        "github": {"repository": "acme/webapp"},
        "partition": {"strategy": "by-complexity", "max_batch_size": 4, "min_findings": 1},
        "scheduler": {"max_concurrent": 2, "batch_timeout_seconds": 2400},
        "gate": {"enabled": False},
    }


@pytest.fixture
def run_config(sample_config_dict: dict, temp_workspace: Path) -> RunConfig:
    config = RunConfig.model_validate(sample_config_dict)
    config.workspace.path = temp_workspace
    return config


@pytest.fixture
def github_config() -> GitHubConfig:
    return GitHubConfig(repository="acme/webapp")
