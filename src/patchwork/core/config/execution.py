"""Scheduling, backoff and gate configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from patchwork.core.models import BatchingStrategy, Severity


class PartitionConfig(BaseModel):
    """How findings are filtered and grouped into batches."""

    strategy: BatchingStrategy = Field(
        default=BatchingStrategy.SEVERITY_THEN_CATEGORY,
        description="Batching strategy used by the partitioner",
    )
    max_batch_size: int = Field(
        default=5, ge=1, le=100, description="Maximum findings per batch"
    )
    severity_filter: list[Severity] = Field(
        default=[Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM],
        min_length=1,
        description="Only findings with these severities are remediated",
    )
    min_findings: int = Field(
        default=3,
        ge=0,
        description="Skip the run when fewer findings than this remain after filtering",
    )


class SchedulerConfig(BaseModel):
    """Concurrency, polling and retry bounds for the batch scheduler.

    Every wait the scheduler performs is bounded by one of these values.
    """

    max_concurrent: int = Field(
        default=3, ge=1, le=50, description="Initial concurrency ceiling for remote tasks"
    )
    batch_timeout_seconds: float = Field(
        default=1800.0, gt=0, description="Wall-clock limit for a single batch (30 min)"
    )
    run_timeout_seconds: float = Field(
        default=3600.0, gt=0, description="Wall-clock limit for the whole run (1 hour)"
    )
    min_poll_interval_seconds: float = Field(
        default=10.0, gt=0, description="Initial and minimum interval between polls"
    )
    max_poll_interval_seconds: float = Field(
        default=60.0, gt=0, description="Backoff cap for the poll interval"
    )
    backoff_multiplier: float = Field(
        default=1.5, gt=1, description="Poll interval growth factor after a failed poll"
    )
    max_poll_failures: int = Field(
        default=5, ge=1, description="Consecutive failed polls before a batch fails"
    )
    create_spacing_seconds: float = Field(
        default=2.0, ge=0, description="Minimum delay between consecutive task creations"
    )
    rate_limit_cooldown_seconds: float = Field(
        default=60.0, ge=0, description="Wait after the service refuses a new task"
    )
    rate_limit_reduce_after: int = Field(
        default=3,
        ge=1,
        description="Capacity refusals within a run before the ceiling drops by one",
    )
    pause_check_interval_seconds: float = Field(
        default=5.0, gt=0, description="Sleep between checks while paused"
    )
    min_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Completed batches whose reported confidence is below this "
        "are flagged for human review",
    )

    @model_validator(mode="after")
    def _validate_poll_bounds(self) -> SchedulerConfig:
        if self.min_poll_interval_seconds > self.max_poll_interval_seconds:
            raise ValueError(
                f"min_poll_interval_seconds ({self.min_poll_interval_seconds}) must not "
                f"exceed max_poll_interval_seconds ({self.max_poll_interval_seconds})"
            )
        return self


class GateConfig(BaseModel):
    """Post-artifact verification (CI check) settings."""

    enabled: bool = Field(default=True, description="Require CI to pass on produced PRs")
    max_remediation_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Failed CI results tolerated; the last one fails the gate",
    )
    poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Interval between CI status checks"
    )
    timeout_seconds: float = Field(
        default=1800.0, gt=0, description="Total time to wait for CI (30 min)"
    )
    check_name_filter: list[str] = Field(
        default_factory=list,
        description="Only consider check runs whose name contains one of these "
        "(case-insensitive). Empty means all check runs.",
    )

    @model_validator(mode="after")
    def _validate_interval(self) -> GateConfig:
        if self.poll_interval_seconds > self.timeout_seconds:
            raise ValueError(
                f"poll_interval_seconds ({self.poll_interval_seconds}) must not "
                f"exceed timeout_seconds ({self.timeout_seconds})"
            )
        return self
