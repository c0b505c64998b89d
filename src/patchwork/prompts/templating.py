"""Prompt templating for remote agent tasks.

Builds the initial task prompt for a batch and the follow-up message
sent when a produced pull request fails its checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2

from patchwork.core.models import Batch

# Keys the agent is asked to keep current in its structured output. The
# client reads ``progress``, ``currentTask``, ``prUrl`` and ``confidenceScore``.
STRUCTURED_OUTPUT_SCHEMA = """\
{
  "fixes": [
    {
      "alertNumber": <number>,
      "status": "pending" | "in_progress" | "completed" | "failed",
      "filePath": "<string>",
      "explanation": "<string>",
      "confidenceScore": <0.0-1.0>,
      "testsPassed": <boolean>
    }
  ],
  "currentTask": "<string>",
  "progress": <0-100>,
  "prUrl": "<string or null>",
  "confidenceScore": <0.0-1.0>,
  "confidenceExplanation": "<string>",
  "checklist": {
    "repositoryCloned": <boolean>,
    "branchCreated": <boolean>,
    "alertsAnalyzed": <number>,
    "alertsFixed": <number>,
    "testsRun": <boolean>,
    "testsPassed": <boolean>,
    "prCreated": <boolean>
  }
}"""

DEFAULT_TASK_TEMPLATE = """\
# CodeQL Security Vulnerability Remediation

You are tasked with fixing {{ findings | length }} CodeQL security vulnerabilities in the repository: {{ repository }}

## Batch Information
- **Batch ID**: {{ batch_id }}
- **Group**: {{ group_key }}
- **Severity**: {{ severity }}
- **Strategy**: {{ strategy }}

## Alerts to Fix
{% for f in findings %}
### Alert {{ loop.index }}: {{ f.rule_name }}
- **Alert Number**: #{{ f.number }}
- **Severity**: {{ f.severity }}
- **CWE**: {{ f.categories | join(", ") if f.categories else "N/A" }}
- **File**: {{ f.path }}
- **Lines**: {{ f.start_line }}-{{ f.end_line }}
- **Description**: {{ f.description }}
- **Message**: {{ f.message }}
- **URL**: {{ f.html_url }}
{% endfor %}
---

## Step-by-Step Instructions

### Step 1: Repository Setup
1.1. Clone the repository: `{{ repository }}`
1.2. Create a new branch named: `{{ branch }}`
1.3. Update structured output with `checklist.repositoryCloned: true` and `checklist.branchCreated: true`

### Step 2: Analyze Vulnerabilities
For each alert, read the affected code, identify the root cause and plan
a fix that follows secure coding practice. Increment `checklist.alertsAnalyzed`.

### Step 3: Implement Fixes
For each alert, implement the fix without breaking existing behavior. Set
the fix status to "completed", increment `checklist.alertsFixed` and
update `progress`.

### Step 4: Run Tests
Run the project's test suite. If tests fail, fix them without reverting
the security fixes. Update `checklist.testsRun` and `checklist.testsPassed`.

### Step 5: Create Pull Request
5.1. Commit with message: "fix(security): resolve {{ findings | length }} CodeQL alerts for {{ group_key }}"
5.2. Push the branch and open a pull request listing each fixed alert and its CWE.
5.3. Update structured output: `prUrl`, `checklist.prCreated: true`, `progress: 100`

---

## Structured Output Schema
Update this after EVERY significant action:
{{ schema }}

## Confidence Scoring Guidelines
- **0.9-1.0**: Simple, well-understood fix with clear security pattern
- **0.7-0.9**: Standard fix with good understanding, minor uncertainty
- **0.5-0.7**: Fix implemented but some uncertainty about edge cases
- **0.3-0.5**: Significant uncertainty, may need human review
- **0.0-0.3**: Low confidence, complex issue or unclear solution

## Checklist
- [ ] Repository cloned and branch created
{% for f in findings -%}
- [ ] Alert {{ loop.index }} (#{{ f.number }}): {{ f.rule_name }} - analyzed and fixed
{% endfor -%}
- [ ] Tests run and passing
- [ ] PR created with description

Begin with Step 1: Clone the repository and create a new branch.
"""

DEFAULT_REMEDIATION_TEMPLATE = """\
The CI checks on your pull request {{ artifact_ref }} failed for commit {{ commit }}.
{% if summary %}
Failing checks:
{{ summary }}
{% endif %}
Please investigate the failures, push a fix to the same branch and keep the
security fixes intact. This is remediation attempt {{ attempt }} of {{ max_attempts }}.
"""


@dataclass
class BatchContext:
    """Context for rendering a batch task prompt."""

    repository: str
    batch: Batch

    @property
    def branch(self) -> str:
        return f"fix/codeql-{self.batch.group_key}-{self.batch.id[:8]}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for template rendering."""
        return {
            "repository": self.repository,
            "batch_id": self.batch.id,
            "group_key": self.batch.group_key,
            "severity": self.batch.severity.value,
            "strategy": self.batch.strategy.value,
            "branch": self.branch,
            "schema": STRUCTURED_OUTPUT_SCHEMA,
            "findings": [
                {
                    "number": f.number,
                    "rule_name": f.rule_name,
                    "severity": f.severity.value,
                    "categories": list(f.categories),
                    "path": f.location.path,
                    "start_line": f.location.start_line,
                    "end_line": f.location.end_line,
                    "description": f.description,
                    "message": f.message,
                    "html_url": f.html_url,
                }
                for f in self.batch.findings
            ],
        }


class PromptBuilder:
    """Renders task and remediation prompts from Jinja2 templates."""

    def __init__(
        self,
        repository: str,
        template: str | None = None,
        template_file: Path | None = None,
        jinja_env: jinja2.Environment | None = None,
    ) -> None:
        """Initialize prompt builder.

        Args:
            repository: ``owner/name`` of the repository to fix.
            template: Inline task template overriding the default.
            template_file: Task template file, used when ``template`` is unset.
            jinja_env: Optional custom Jinja2 environment.
        """
        self.repository = repository
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        if template is not None:
            self._task_source = template
        elif template_file is not None:
            self._task_source = template_file.read_text()
        else:
            self._task_source = DEFAULT_TASK_TEMPLATE

    def build_task_prompt(self, batch: Batch) -> str:
        """Render the prompt that starts a remote task for ``batch``."""
        context = BatchContext(repository=self.repository, batch=batch)
        return self.env.from_string(self._task_source).render(**context.to_dict())

    def build_remediation_prompt(
        self,
        artifact_ref: str,
        commit: str,
        attempt: int,
        max_attempts: int,
        summary: str = "",
    ) -> str:
        """Render the message asking a task to fix its failing checks."""
        template = self.env.from_string(DEFAULT_REMEDIATION_TEMPLATE)
        return template.render(
            artifact_ref=artifact_ref,
            commit=commit,
            attempt=attempt,
            max_attempts=max_attempts,
            summary=summary,
        )

    @staticmethod
    def task_title(batch: Batch) -> str:
        return f"CodeQL Fix: {batch.group_key}"
