"""Load findings from a code-scanning alert export.

The export is the JSON returned by GitHub's code-scanning alerts REST
endpoint (``GET /repos/{owner}/{repo}/code-scanning/alerts``): either a
list of alert objects or an object with an ``alerts`` list. Alerts that
are not open are skipped.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from patchwork.core.exceptions import FindingsLoadError
from patchwork.core.logging import get_logger
from patchwork.core.models import UNKNOWN_CATEGORY, Finding, Location, Severity

_logger = get_logger("findings")

CWE_TAG_PREFIX = "external/cwe/"


def _normalize_cwe(tag: str) -> str:
    number = tag[len(CWE_TAG_PREFIX) + len("cwe-"):]
    if number.isdigit():
        return f"CWE-{int(number)}"
    return tag[len(CWE_TAG_PREFIX):].upper()


def extract_categories(tags: Iterable[str]) -> tuple[str, ...]:
    """CWE identifiers from rule tags, e.g. ``external/cwe/cwe-079`` -> ``CWE-79``."""
    return tuple(
        _normalize_cwe(tag)
        for tag in tags
        if tag.startswith(CWE_TAG_PREFIX + "cwe-")
    )


def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _member(parent: dict[str, Any], key: str, number: int) -> dict[str, Any]:
    value = parent.get(key) or {}
    if not isinstance(value, dict):
        raise FindingsLoadError(
            f"Alert {number}: '{key}' must be an object, got {type(value).__name__}"
        )
    return value


def parse_alert(alert: dict[str, Any]) -> Finding:
    """Convert one raw alert object into a Finding.

    Raises:
        FindingsLoadError: If the alert has no integer ``number`` or a
            nested field has the wrong shape.
    """
    number = alert.get("number")
    if not isinstance(number, int):
        raise FindingsLoadError(f"Alert without a valid number: {number!r}")

    rule = _member(alert, "rule", number)
    instance = _member(alert, "most_recent_instance", number)
    location = _member(instance, "location", number)
    message = _member(instance, "message", number)
    tags = rule.get("tags") or []
    if not isinstance(tags, list):
        raise FindingsLoadError(f"Alert {number}: 'tags' must be a list")

    categories = extract_categories(t for t in tags if isinstance(t, str))
    try:
        return Finding(
            number=number,
            severity=Severity.parse(rule.get("security_severity_level") or rule.get("severity")),
            category=categories[0] if categories else UNKNOWN_CATEGORY,
            categories=categories,
            location=Location(
                path=location.get("path") or "",
                start_line=location.get("start_line") or 0,
                end_line=location.get("end_line") or 0,
            ),
            rule_id=rule.get("id") or "unknown",
            rule_name=rule.get("name") or "Unknown Rule",
            description=rule.get("description") or "",
            message=message.get("text") or "",
            html_url=alert.get("html_url") or "",
            created_at=_parse_timestamp(alert.get("created_at")),
        )
    except ValidationError as e:
        raise FindingsLoadError(f"Alert {number} is malformed: {e}") from e


def parse_alerts(data: Any) -> list[Finding]:
    """Convert a decoded export into Findings, skipping non-open alerts."""
    if isinstance(data, dict):
        data = data.get("alerts")
    if not isinstance(data, list):
        raise FindingsLoadError("Export must be a list of alerts or an object with an 'alerts' list")

    findings: list[Finding] = []
    skipped = 0
    for alert in data:
        if not isinstance(alert, dict):
            raise FindingsLoadError(f"Alert entries must be objects, got {type(alert).__name__}")
        if alert.get("state", "open") != "open":
            skipped += 1
            continue
        findings.append(parse_alert(alert))

    _logger.debug("findings.parsed", total=len(findings), skipped=skipped)
    return findings


def load_findings(path: Path) -> list[Finding]:
    """Read and parse an alert export file.

    Raises:
        FindingsLoadError: If the file is unreadable or malformed.
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise FindingsLoadError(f"Cannot read findings file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise FindingsLoadError(f"Findings file {path} is not valid JSON: {e}") from e

    findings = parse_alerts(data)
    _logger.info("findings.loaded", path=str(path), count=len(findings))
    return findings


def filter_by_severity(findings: Iterable[Finding], severities: Iterable[Severity | str]) -> list[Finding]:
    """Keep only findings whose severity is in ``severities``."""
    allowed = {Severity(s) for s in severities}
    return [f for f in findings if f.severity in allowed]


def triage(findings: Iterable[Finding]) -> list[Finding]:
    """Order findings by severity rank, oldest first within a rank.

    Findings without a creation time sort after dated ones of the same rank.
    """
    def sort_key(finding: Finding) -> tuple[int, int, float]:
        if finding.created_at is None:
            return (finding.severity.rank, 1, 0.0)
        return (finding.severity.rank, 0, finding.created_at.timestamp())

    return sorted(findings, key=sort_key)


__all__ = [
    "extract_categories",
    "filter_by_severity",
    "load_findings",
    "parse_alert",
    "parse_alerts",
    "triage",
]
