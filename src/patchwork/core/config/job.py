"""Top-level run configuration.

Example YAML:
    github:
      repository: acme/webapp
    partition:
      strategy: by-complexity
      max_batch_size: 4
    scheduler:
      max_concurrent: 2
      batch_timeout_seconds: 2400
    gate:
      max_remediation_attempts: 3
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from patchwork.core.config.execution import GateConfig, PartitionConfig, SchedulerConfig
from patchwork.core.config.remote import GitHubConfig, RemoteConfig
from patchwork.core.config.workspace import LogConfig, WorkspaceConfig
from patchwork.core.exceptions import ConfigurationError


class RunConfig(BaseModel):
    """Complete configuration for one remediation run."""

    github: GitHubConfig
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    partition: PartitionConfig = Field(default_factory=PartitionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    dry_run: bool = Field(
        default=False, description="Plan batches without creating remote tasks"
    )

    @classmethod
    def from_yaml(cls, path: Path) -> RunConfig:
        """Load a run configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is unreadable, not a mapping,
                or fails validation.
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config {path}: {e}") from e
        return cls._validate_data(data, source=str(path))

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> RunConfig:
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}") from e
        return cls._validate_data(data, source="<string>")

    @classmethod
    def _validate_data(cls, data: object, source: str) -> RunConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(f"{source}: top level must be a mapping")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"{source}: {e}") from e
