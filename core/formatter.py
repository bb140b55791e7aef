"""
formatter.py — Renders a scored scan to terminal output or JSON.
"""

import json
import os
import re
import sys
from dataclasses import asdict
from typing import Optional

from .catalog import GRADE_DESCRIPTIONS, get_entry
from .models import SEVERITIES, Issue, IssuesSummary

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and FORCE_COLOR.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def enable_color() -> None:
    global _color_enabled
    _color_enabled = True


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers: return empty string when color is off
# ---------------------------------------------------------------------------

SEVERITY_COLORS = {
    "critical": "\033[91m",  # red
    "high": "\033[93m",  # yellow
    "medium": "\033[94m",  # blue
    "low": "\033[96m",  # cyan
    "info": "\033[2m",  # dim
}

GRADE_COLORS = {
    "A": "\033[92m",
    "B": "\033[92m",
    "C": "\033[93m",
    "D": "\033[91m",
    "F": "\033[91m",
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _s_color(severity: str) -> str:
    return SEVERITY_COLORS.get(severity, "") if _color_active() else ""


def _g_color(grade: str) -> str:
    return GRADE_COLORS.get(grade, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    return f"\n  {_bold()}{title}{_reset()}\n  {'─' * (W - 2)}"


def _wrap(text: str, indent: int = 4, width: int = W) -> str:
    """Simple word-wrap at `width` chars with leading indent."""
    words = text.split()
    lines = []
    line = " " * indent
    for word in words:
        if len(line) + len(word) + 1 > width:
            lines.append(line)
            line = " " * indent + word
        else:
            line += ("" if line.strip() == "" else " ") + word
    if line.strip():
        lines.append(line)
    return "\n".join(lines)


def _ordered(issues: list[Issue]) -> list[Issue]:
    """Most severe first; stable within a severity."""
    rank = {s: i for i, s in enumerate(SEVERITIES)}
    return sorted(issues, key=lambda i: rank.get(i.severity, len(SEVERITIES)))


# ---------------------------------------------------------------------------
# Terminal renderer
# ---------------------------------------------------------------------------


def print_terminal(url: str, score: int, grade: str, summary: IssuesSummary, issues: list[Issue]) -> None:
    bold = _bold()
    reset = _reset()
    g_color = _g_color(grade)
    info = GRADE_DESCRIPTIONS.get(grade, {})

    # -- Header ---------------------------------------------------------------
    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{url}{reset}")
    print(f"{bold}{_bar()}{reset}")

    # -- Posture --------------------------------------------------------------
    print(_section("SECURITY POSTURE"))
    print(f"    {g_color}{bold}Grade {grade} — {score}/100  {info.get('label', '')}{reset}")
    if info:
        print(_wrap(info["description"]))

    counts = "  ".join(f"{s} {getattr(summary, s)}" for s in SEVERITIES)
    print(f"\n    {counts}  │  total {summary.total}")

    # -- Findings -------------------------------------------------------------
    if not issues:
        print(_section("FINDINGS"))
        print("    No issues detected.")
        print(f"\n{_bar()}\n")
        return

    print(_section("FINDINGS"))
    for issue in _ordered(issues):
        s_color = _s_color(issue.severity)
        print(f"\n    {s_color}{bold}[{issue.severity.upper():<8}]{reset} {bold}{issue.title}{reset}")
        if issue.description:
            print(_wrap(issue.description, indent=8))
        if issue.details:
            print(f"        {_dim()}{issue.details}{reset}")
        if issue.recommendation:
            print(f"\n        {bold}Fix:{reset}")
            print(_wrap(issue.recommendation, indent=8))
        entry = get_entry(issue.type)
        if entry and entry["references"]:
            print(f"        {_dim()}{entry['references'][0]}{reset}")

    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON renderer
# ---------------------------------------------------------------------------


def to_json(
    url: str,
    score: int,
    grade: str,
    summary: IssuesSummary,
    issues: list[Issue],
    scanned_at: str,
) -> str:
    """Serialize a scored scan with the same camelCase keys the API uses."""
    payload = {
        "url": url,
        "score": score,
        "grade": grade,
        "issuesSummary": asdict(summary),
        "issues": [
            {
                "id": i.id,
                "type": i.type,
                "severity": i.severity,
                "title": i.title,
                "description": i.description,
                "recommendation": i.recommendation,
                "details": i.details,
                "detectedAt": i.detected_at,
            }
            for i in issues
        ],
        "scannedAt": scanned_at,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)
