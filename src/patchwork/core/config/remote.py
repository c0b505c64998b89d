"""Remote service configuration models.

Credentials are never stored in configuration files: each model names
the environment variable that holds its secret.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from patchwork.core.exceptions import ConfigurationError

_REPOSITORY_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


def _read_secret(env_name: str) -> str:
    value = os.environ.get(env_name, "").strip()
    if not value:
        raise ConfigurationError(f"Environment variable {env_name} is not set")
    return value


class RemoteConfig(BaseModel):
    """Agent-session API settings."""

    api_base: str = Field(
        default="https://api.devin.ai/v1",
        description="Base URL of the agent-session API",
    )
    app_base: str = Field(
        default="https://app.devin.ai",
        description="Base URL for human-facing session links",
    )
    api_key_env: str = Field(
        default="DEVIN_API_KEY",
        description="Environment variable containing the API credential",
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-request HTTP timeout"
    )
    tags: list[str] = Field(
        default=["codeql-remediation"],
        description="Tags attached to every created session",
    )
    prompt_template_file: Path | None = Field(
        default=None,
        description="Jinja2 template replacing the built-in task prompt",
    )

    def api_key(self) -> str:
        """Resolve the credential from the environment.

        Raises:
            ConfigurationError: If the variable is unset or empty.
        """
        return _read_secret(self.api_key_env)


class GitHubConfig(BaseModel):
    """Source-control settings used by the CI gate."""

    repository: str = Field(description="Target repository as ``owner/name``")
    api_base: str = Field(default="https://api.github.com")
    token_env: str = Field(
        default="GITHUB_TOKEN",
        description="Environment variable containing the GitHub token",
    )

    @field_validator("repository")
    @classmethod
    def _validate_repository(cls, value: str) -> str:
        if not _REPOSITORY_PATTERN.match(value):
            raise ValueError(f"repository must look like 'owner/name', got {value!r}")
        return value

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[1]

    def token(self) -> str:
        return _read_secret(self.token_env)
