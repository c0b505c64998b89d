"""Run control file: pause/resume and plan overrides.

The control file is a small JSON document in the workspace. ``patchwork
pause`` and ``patchwork resume`` write it, and a running scheduler reads
it before every loop iteration through ControlFilePauseCheck.

Example file:
    {
      "paused": false,
      "skip_batches": ["low-CWE-79"],
      "priority_overrides": {"high-CWE-89": 200},
      "rebatch_requested": false
    }

Batch references in ``skip_batches`` and ``priority_overrides`` match
either a batch id or a group key. Group keys are stable between ``plan``
and ``run``; ids are not.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from patchwork.batching import Partitioner, prioritize_batch, skip_batch
from patchwork.core.logging import get_logger
from patchwork.core.models import Batch, BatchingStrategy

_logger = get_logger("control")


class ControlState(BaseModel):
    """Operator controls for a run."""

    paused: bool = False
    skip_batches: list[str] = Field(default_factory=list)
    priority_overrides: dict[str, int] = Field(default_factory=dict)
    rebatch_requested: bool = False
    rebatch_strategy: BatchingStrategy | None = None
    updated_at: datetime | None = None


def load_control(path: Path) -> ControlState:
    """Read the control file; a missing or unreadable file means defaults."""
    if not path.exists():
        return ControlState()
    try:
        with open(path) as f:
            return ControlState.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        _logger.warning("control.load_failed", path=str(path), error=str(e))
        return ControlState()


def save_control(path: Path, state: ControlState) -> None:
    """Write the control file atomically."""
    state.updated_at = datetime.now(UTC)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".json.tmp")
    with open(temp_file, "w") as f:
        json.dump(state.model_dump(mode="json"), f, indent=2)
    temp_file.replace(path)


def set_paused(path: Path, paused: bool) -> ControlState:
    """Toggle the ``paused`` flag, keeping the other controls."""
    state = load_control(path)
    state.paused = paused
    save_control(path, state)
    _logger.info("control.paused" if paused else "control.resumed", path=str(path))
    return state


def _matching_ids(batches: list[Batch], ref: str) -> list[str]:
    return [b.id for b in batches if ref in (b.id, b.group_key)]


def apply_control(
    batches: Iterable[Batch],
    control: ControlState,
    partitioner: Partitioner | None = None,
) -> list[Batch]:
    """Apply a control state to a batch plan.

    A requested rebatch happens first (when a partitioner is given), then
    skipped batches are dropped and priority overrides applied.
    """
    plan = list(batches)
    if control.rebatch_requested and partitioner is not None:
        plan = partitioner.rebatch(plan, control.rebatch_strategy)
        _logger.info(
            "control.rebatched",
            strategy=(control.rebatch_strategy or partitioner.strategy).value,
            batches=len(plan),
        )

    for ref in control.skip_batches:
        for batch_id in _matching_ids(plan, ref):
            plan = skip_batch(plan, batch_id)
            _logger.info("control.batch_skipped", ref=ref, batch_id=batch_id)

    for ref, priority in control.priority_overrides.items():
        for batch_id in _matching_ids(plan, ref):
            plan = prioritize_batch(plan, batch_id, priority)
    return plan


class ControlFilePauseCheck:
    """Pause predicate backed by the control file, for BatchScheduler.run."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __call__(self) -> bool:
        return load_control(self.path).paused


__all__ = [
    "ControlFilePauseCheck",
    "ControlState",
    "apply_control",
    "load_control",
    "save_control",
    "set_paused",
]
