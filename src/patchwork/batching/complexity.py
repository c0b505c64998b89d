"""Fix-complexity estimation for the ``by-complexity`` strategy.

Categories with well-understood, localized fix patterns are ``simple``;
concurrency and memory-safety weaknesses are ``complex``. Anything else is
bucketed by how many lines the finding spans.
"""

from __future__ import annotations

from patchwork.core.models import Complexity, Finding

# Injection, path traversal, command injection
SIMPLE_CATEGORIES: frozenset[str] = frozenset({
    "CWE-79",
    "CWE-89",
    "CWE-22",
    "CWE-78",
})

# Race conditions, use-after-free, buffer bounds, integer overflow
COMPLEX_CATEGORIES: frozenset[str] = frozenset({
    "CWE-362",
    "CWE-416",
    "CWE-119",
    "CWE-190",
})

SIMPLE_MAX_LINE_SPAN = 5
MODERATE_MAX_LINE_SPAN = 20

# Added to a batch's priority by bucket
COMPLEXITY_BONUS: dict[Complexity, int] = {
    Complexity.SIMPLE: 15,
    Complexity.MODERATE: 5,
    Complexity.COMPLEX: -10,
}


def estimate_complexity(finding: Finding) -> Complexity:
    """Classify a finding into a complexity bucket.

    The category tables take precedence over the line-span heuristic.
    """
    category = finding.category.upper()
    if category in SIMPLE_CATEGORIES:
        return Complexity.SIMPLE
    if category in COMPLEX_CATEGORIES:
        return Complexity.COMPLEX

    span = finding.location.line_span
    if span <= SIMPLE_MAX_LINE_SPAN:
        return Complexity.SIMPLE
    if span <= MODERATE_MAX_LINE_SPAN:
        return Complexity.MODERATE
    return Complexity.COMPLEX
