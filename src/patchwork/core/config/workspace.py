"""Workspace and logging configuration models."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

CONTROL_FILE_NAME = ".patchwork-control.json"
REPORT_FILE_NAME = ".patchwork-run.json"


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="json for structured lines, console for human-readable, "
        "both for console on stderr and JSON to file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(default=50, gt=0, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)

    @model_validator(mode="after")
    def _check_file_path_required(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("file_path is required when format='both'")
        return self


class WorkspaceConfig(BaseModel):
    """Where run artifacts (report, control file) live."""

    path: Path = Field(
        default=Path("./patchwork-workspace"),
        description="Directory for the run report and the control file",
    )

    @property
    def control_file(self) -> Path:
        return self.path / CONTROL_FILE_NAME

    @property
    def report_file(self) -> Path:
        return self.path / REPORT_FILE_NAME
