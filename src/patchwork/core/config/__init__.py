"""Configuration models for patchwork runs.

All models are re-exported here so callers can use
``from patchwork.core.config import RunConfig``.
"""

from patchwork.core.config.execution import GateConfig, PartitionConfig, SchedulerConfig
from patchwork.core.config.job import RunConfig
from patchwork.core.config.remote import GitHubConfig, RemoteConfig
from patchwork.core.config.workspace import (
    CONTROL_FILE_NAME,
    REPORT_FILE_NAME,
    LogConfig,
    WorkspaceConfig,
)

__all__ = [
    "CONTROL_FILE_NAME",
    "GateConfig",
    "GitHubConfig",
    "LogConfig",
    "PartitionConfig",
    "REPORT_FILE_NAME",
    "RemoteConfig",
    "RunConfig",
    "SchedulerConfig",
    "WorkspaceConfig",
]
