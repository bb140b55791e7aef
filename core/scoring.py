"""
scoring.py — Severity deductions, letter grades, and issue tallies.

Pure functions. Score is 100 minus a fixed deduction per issue, clamped to
[0, 100]; the sum of independent deductions makes it order-independent.
"""

from .models import IssuesSummary

SEVERITY_DEDUCTIONS: dict[str, int] = {
    "critical": 25,
    "high": 15,
    "medium": 8,
    "low": 3,
    "info": 0,
}

# Inclusive lower bounds, checked top-down. Anything below the last band is F.
GRADE_BANDS: list[tuple[int, str]] = [
    (90, "A"),
    (75, "B"),
    (60, "C"),
    (40, "D"),
]

MAX_SCORE = 100
MIN_SCORE = 0


def score(issues) -> int:
    """Return the 0-100 posture score for an iterable of issues with a `severity` attribute."""
    deduction = sum(SEVERITY_DEDUCTIONS[issue.severity] for issue in issues)
    return max(MIN_SCORE, min(MAX_SCORE, MAX_SCORE - deduction))


def grade(value: int) -> str:
    for lower_bound, letter in GRADE_BANDS:
        if value >= lower_bound:
            return letter
    return "F"


def summarize(issues) -> IssuesSummary:
    """Tally issues per severity. total always equals the number of issues."""
    summary = IssuesSummary()
    for issue in issues:
        setattr(summary, issue.severity, getattr(summary, issue.severity) + 1)
        summary.total += 1
    return summary
