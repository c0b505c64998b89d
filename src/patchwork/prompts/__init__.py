"""Prompt templating for remote agent tasks."""

from patchwork.prompts.templating import (
    DEFAULT_REMEDIATION_TEMPLATE,
    DEFAULT_TASK_TEMPLATE,
    BatchContext,
    PromptBuilder,
)

__all__ = [
    "BatchContext",
    "DEFAULT_REMEDIATION_TEMPLATE",
    "DEFAULT_TASK_TEMPLATE",
    "PromptBuilder",
]
