"""Tests for patchwork.batching partitioning and priority scoring."""

from __future__ import annotations

import pytest

from patchwork.batching import (
    BatchSummary,
    Partitioner,
    calculate_priority,
    estimate_complexity,
    highest_severity,
    partition,
    prioritize_batch,
    rebatch,
    skip_batch,
    summarize,
)
from patchwork.core.models import (
    BatchingStrategy,
    BatchStatus,
    Complexity,
    Severity,
    TaskHandle,
)
from tests.helpers import make_finding


class TestPriorityScoring:
    """Tests for calculate_priority and derived batch severity."""

    @pytest.mark.parametrize(
        ("severity", "size", "expected"),
        [
            (Severity.CRITICAL, 1, 102),
            (Severity.HIGH, 3, 86),
            (Severity.ERROR, 3, 86),
            (Severity.MEDIUM, 10, 80),
            (Severity.LOW, 25, 60),
            (Severity.WARNING, 1, 22),
            (Severity.NOTE, 1, 12),
        ],
    )
    def test_base_score_plus_capped_size_bonus(self, severity, size, expected):
        """Priority is the severity score plus min(2 * size, 20)."""
        assert calculate_priority(severity, size) == expected

    def test_complexity_bonus(self):
        """Complexity buckets add +15, +5 or -10."""
        assert calculate_priority(Severity.HIGH, 1, Complexity.SIMPLE) == 97
        assert calculate_priority(Severity.HIGH, 1, Complexity.MODERATE) == 87
        assert calculate_priority(Severity.HIGH, 1, Complexity.COMPLEX) == 72

    def test_highest_severity_uses_fixed_order(self):
        """The first severity in the fixed order wins; error comes last."""
        findings = [make_finding(1, "low"), make_finding(2, "high"), make_finding(3, "medium")]
        assert highest_severity(findings) == Severity.HIGH

        findings = [make_finding(1, "error"), make_finding(2, "note")]
        assert highest_severity(findings) == Severity.NOTE

    def test_highest_severity_of_nothing_is_medium(self):
        assert highest_severity([]) == Severity.MEDIUM


class TestComplexityEstimate:
    """Tests for the by-complexity bucketing heuristic."""

    @pytest.mark.parametrize("category", ["CWE-79", "CWE-89", "CWE-22", "cwe-78"])
    def test_simple_categories(self, category):
        finding = make_finding(1, category=category, start_line=1, end_line=200)
        assert estimate_complexity(finding) == Complexity.SIMPLE

    @pytest.mark.parametrize("category", ["CWE-362", "CWE-416", "CWE-119", "CWE-190"])
    def test_complex_categories(self, category):
        finding = make_finding(1, category=category, start_line=1, end_line=1)
        assert estimate_complexity(finding) == Complexity.COMPLEX

    @pytest.mark.parametrize(
        ("start", "end", "expected"),
        [
            (10, 10, Complexity.SIMPLE),
            (10, 15, Complexity.SIMPLE),
            (10, 16, Complexity.MODERATE),
            (10, 30, Complexity.MODERATE),
            (10, 31, Complexity.COMPLEX),
        ],
    )
    def test_line_span_fallback(self, start, end, expected):
        """Unlisted categories are bucketed by line span."""
        finding = make_finding(1, category="CWE-601", start_line=start, end_line=end)
        assert estimate_complexity(finding) == expected

    def test_category_match_is_exact(self):
        """CWE-790 is not mistaken for CWE-79."""
        finding = make_finding(1, category="CWE-790", start_line=1, end_line=100)
        assert estimate_complexity(finding) == Complexity.COMPLEX


class TestPartitionStrategies:
    """Tests for each batching strategy."""

    def test_severity_then_category_example(self):
        """Two critical/A, one high/B, two medium/A with size 5."""
        findings = [
            make_finding(1, "critical", "CWE-89"),
            make_finding(2, "critical", "CWE-89"),
            make_finding(3, "high", "CWE-79"),
            make_finding(4, "medium", "CWE-89"),
            make_finding(5, "medium", "CWE-89"),
        ]
        batches = partition(findings, BatchingStrategy.SEVERITY_THEN_CATEGORY, 5)

        assert [b.group_key for b in batches] == [
            "critical-CWE-89",
            "high-CWE-79",
            "medium-CWE-89",
        ]
        assert [b.size for b in batches] == [2, 1, 2]
        assert [b.priority for b in batches] == [104, 82, 64]
        assert all(b.status == BatchStatus.PENDING for b in batches)

    def test_severity_only_chunks_with_part_suffix(self):
        """Five critical findings with size 2 give batches of 2, 2 and 1."""
        findings = [make_finding(n, "critical") for n in range(1, 6)]
        batches = partition(findings, "severity-only", 2)

        assert [b.size for b in batches] == [2, 2, 1]
        assert [b.group_key for b in batches] == [
            "critical-part1",
            "critical-part2",
            "critical-part3",
        ]
        assert [f.number for b in batches for f in b.findings] == [1, 2, 3, 4, 5]

    def test_single_chunk_has_no_part_suffix(self):
        batches = partition([make_finding(1, "low")], BatchingStrategy.SEVERITY_ONLY, 5)
        assert batches[0].group_key == "low"

    def test_by_location_groups_by_directory(self):
        """Findings group by containing directory, root files under '/'."""
        findings = [
            make_finding(1, "low", path="src/web/views.py"),
            make_finding(2, "critical", path="src/web/forms.py"),
            make_finding(3, "medium", path="setup.py"),
            make_finding(4, "medium", path=""),
        ]
        batches = partition(findings, BatchingStrategy.BY_LOCATION, 5)

        by_key = {b.group_key: b for b in batches}
        assert set(by_key) == {"src/web", "/"}
        # Sorted by severity rank within the group
        assert [f.number for f in by_key["src/web"].findings] == [2, 1]
        assert by_key["src/web"].severity == Severity.CRITICAL
        assert by_key["/"].size == 2

    def test_by_category_groups_across_severities(self):
        findings = [
            make_finding(1, "medium", "CWE-22"),
            make_finding(2, "high", "CWE-79"),
            make_finding(3, "critical", "CWE-22"),
        ]
        batches = partition(findings, BatchingStrategy.BY_CATEGORY, 5)

        assert [b.group_key for b in batches] == ["CWE-22", "CWE-79"]
        assert [f.number for f in batches[0].findings] == [3, 1]
        assert batches[0].priority == 104
        assert batches[1].priority == 82

    def test_by_complexity_buckets_and_bonus(self):
        """Simple buckets outrank complex ones of the same severity and size."""
        findings = [
            make_finding(1, "high", "CWE-362"),
            make_finding(2, "high", "CWE-79"),
            make_finding(3, "high", "CWE-601", start_line=1, end_line=10),
        ]
        batches = partition(findings, BatchingStrategy.BY_COMPLEXITY, 5)

        assert [b.group_key for b in batches] == ["simple", "moderate", "complex"]
        assert [b.priority for b in batches] == [97, 87, 72]

    def test_unknown_category_findings_group_together(self):
        findings = [make_finding(1, "high", "UNKNOWN"), make_finding(2, "high", "UNKNOWN")]
        batches = partition(findings, BatchingStrategy.SEVERITY_THEN_CATEGORY, 5)
        assert [b.group_key for b in batches] == ["high-UNKNOWN"]

    def test_strategy_aliases(self):
        """CodeQL-style strategy names map onto the built-in strategies."""
        findings = [make_finding(1, "high", "CWE-79", path="a/b.py")]
        assert partition(findings, "severity-then-cwe", 5)[0].group_key == "high-CWE-79"
        assert partition(findings, "by-file", 5)[0].group_key == "a"
        assert partition(findings, "by-cwe", 5)[0].group_key == "CWE-79"

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError):
            partition([make_finding(1)], "by-mood", 5)


class TestPartitionInvariants:
    """Tests for properties every partition must satisfy."""

    @pytest.mark.parametrize("strategy", list(BatchingStrategy))
    def test_every_finding_appears_exactly_once(self, strategy, sample_findings):
        batches = partition(sample_findings, strategy, 2)
        numbers = sorted(f.number for b in batches for f in b.findings)
        assert numbers == [1, 2, 3, 4, 5]
        assert all(1 <= b.size <= 2 for b in batches)

    @pytest.mark.parametrize("strategy", list(BatchingStrategy))
    def test_priority_is_non_increasing(self, strategy, sample_findings):
        batches = partition(sample_findings, strategy, 2)
        priorities = [b.priority for b in batches]
        assert priorities == sorted(priorities, reverse=True)

    def test_deterministic_apart_from_ids(self, sample_findings):
        first = partition(sample_findings, BatchingStrategy.BY_COMPLEXITY, 2)
        second = partition(sample_findings, BatchingStrategy.BY_COMPLEXITY, 2)

        def shape(batches):
            return [(b.group_key, b.priority, [f.number for f in b.findings]) for b in batches]

        assert shape(first) == shape(second)
        assert {b.id for b in first}.isdisjoint({b.id for b in second})

    def test_ties_keep_emission_order(self):
        """Equal priorities stay in the order the groups were emitted."""
        findings = [
            make_finding(1, "high", "CWE-22"),
            make_finding(2, "high", "CWE-79"),
            make_finding(3, "high", "CWE-89"),
        ]
        batches = partition(findings, BatchingStrategy.SEVERITY_THEN_CATEGORY, 5)
        assert [b.group_key for b in batches] == ["high-CWE-22", "high-CWE-79", "high-CWE-89"]

    def test_empty_input_gives_no_batches(self):
        assert partition([], BatchingStrategy.SEVERITY_ONLY, 5) == []

    @pytest.mark.parametrize("size", [0, -1, 2.5, True])
    def test_invalid_max_batch_size(self, size):
        with pytest.raises(ValueError, match="max_batch_size"):
            partition([make_finding(1)], BatchingStrategy.SEVERITY_ONLY, size)


class TestPlanEditing:
    """Tests for rebatch, prioritize_batch, skip_batch and summarize."""

    def test_rebatch_with_other_strategy(self, sample_findings):
        batches = partition(sample_findings, BatchingStrategy.SEVERITY_ONLY, 5)
        replanned = rebatch(batches, BatchingStrategy.BY_CATEGORY, 5)

        assert sorted(b.group_key for b in replanned) == ["CWE-22", "CWE-362", "CWE-79", "CWE-89"]
        assert all(b.strategy == BatchingStrategy.BY_CATEGORY for b in replanned)

    def test_partitioner_rebatch_ignores_started_batches(self, sample_findings):
        partitioner = Partitioner(BatchingStrategy.SEVERITY_ONLY, 5)
        batches = partitioner.partition(sample_findings)
        batches[0].mark_in_progress(TaskHandle(task_id="t-1", url="https://x/t-1"))

        replanned = partitioner.rebatch(batches, BatchingStrategy.BY_CATEGORY)
        numbers = sorted(f.number for b in replanned for f in b.findings)
        assert numbers == sorted(f.number for b in batches[1:] for f in b.findings)

    def test_prioritize_batch_resorts(self, sample_findings):
        batches = partition(sample_findings, BatchingStrategy.SEVERITY_THEN_CATEGORY, 5)
        last = batches[-1]

        updated = prioritize_batch(batches, last.id, 500)
        assert updated[0].id == last.id
        assert updated[0].priority == 500
        # The original plan is untouched
        assert last.priority != 500

    def test_skip_batch(self, sample_findings):
        batches = partition(sample_findings, BatchingStrategy.SEVERITY_THEN_CATEGORY, 5)
        remaining = skip_batch(batches, batches[0].id)
        assert len(remaining) == len(batches) - 1
        assert batches[0].id not in {b.id for b in remaining}

    def test_summarize(self, sample_findings):
        batches = partition(sample_findings, BatchingStrategy.SEVERITY_ONLY, 5)
        batches[0].mark_in_progress(TaskHandle(task_id="t-1", url="https://x/t-1"))

        summary = summarize(batches)
        assert isinstance(summary, BatchSummary)
        assert summary.total_batches == 3
        assert summary.total_findings == 5
        assert summary.by_severity == {"critical": 1, "high": 2, "medium": 2}
        assert summary.by_status == {"in_progress": 1, "pending": 2}
        assert summary.to_dict()["total_findings"] == 5
