"""
tests/test_scoring.py -- Unit tests for core/scoring.py.

Properties are checked exhaustively over small severity-count vectors
(0..4 of each severity) rather than by sampling.
"""

from __future__ import annotations

import itertools

import pytest

from core.models import SEVERITIES, Issue
from core.scoring import GRADE_BANDS, SEVERITY_DEDUCTIONS, grade, score, summarize

_COUNTS = range(5)


def _issues(critical=0, high=0, medium=0, low=0, info=0) -> list[Issue]:
    counts = {"critical": critical, "high": high, "medium": medium, "low": low, "info": info}
    return [
        Issue(
            id=f"{sev}-{n}",
            type="t",
            severity=sev,
            title="",
            description="",
            recommendation="",
            detected_at="",
        )
        for sev, count in counts.items()
        for n in range(count)
    ]


ALL_VECTORS = list(itertools.product(_COUNTS, repeat=len(SEVERITIES)))


def test_no_issues_scores_100_grade_a():
    assert score([]) == 100
    assert grade(100) == "A"


def test_worked_example():
    issues = _issues(critical=1, medium=1)
    assert score(issues) == 67
    assert grade(67) == "C"
    summary = summarize(issues)
    assert (summary.critical, summary.medium, summary.total) == (1, 1, 2)


def test_score_bounded_and_matches_formula():
    for vector in ALL_VECTORS:
        issues = _issues(*vector)
        expected = 100 - sum(SEVERITY_DEDUCTIONS[s] * n for s, n in zip(SEVERITIES, vector))
        value = score(issues)
        assert 0 <= value <= 100
        assert value == max(0, min(100, expected))


@pytest.mark.parametrize("severity", SEVERITIES)
def test_adding_an_issue_never_raises_the_score(severity):
    for vector in ALL_VECTORS:
        issues = _issues(*vector)
        extra = _issues(**{severity: 1})
        assert score(issues + extra) <= score(issues)


def test_score_is_order_independent():
    issues = _issues(2, 1, 3, 1, 2)
    assert score(issues) == score(list(reversed(issues)))
    assert score(issues) == score(sorted(issues, key=lambda i: i.id))


def test_info_issues_do_not_deduct():
    assert score(_issues(info=50)) == 100


def test_score_clamps_at_zero():
    assert score(_issues(critical=5)) == 0


@pytest.mark.parametrize(
    "value,expected",
    [
        (100, "A"),
        (91, "A"),
        (90, "A"),
        (89, "B"),
        (76, "B"),
        (75, "B"),
        (74, "C"),
        (61, "C"),
        (60, "C"),
        (59, "D"),
        (41, "D"),
        (40, "D"),
        (39, "F"),
        (0, "F"),
    ],
)
def test_grade_boundaries(value, expected):
    assert grade(value) == expected


def test_grade_is_monotone():
    order = "FDCBA"
    previous = grade(0)
    for value in range(1, 101):
        current = grade(value)
        assert order.index(current) >= order.index(previous)
        previous = current


def test_grade_bands_descending():
    bounds = [b for b, _ in GRADE_BANDS]
    assert bounds == sorted(bounds, reverse=True)


def test_summary_total_equals_count():
    for vector in ALL_VECTORS:
        issues = _issues(*vector)
        summary = summarize(issues)
        assert summary.total == len(issues)
        assert [getattr(summary, s) for s in SEVERITIES] == list(vector)
