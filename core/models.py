"""
core/models.py -- Domain dataclasses for the posture engine.

Pure data containers. Normalization lives in core/catalog.py, scoring in
core/scoring.py, merge logic in core/aggregator.py. The HTTP contract lives
in api/models.py; route handlers map between the two.
"""

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

SEVERITIES: tuple[str, ...] = ("critical", "high", "medium", "low", "info")
GRADES: tuple[str, ...] = ("A", "B", "C", "D", "F")

# Hard cap on score history length. Not a time window: sparse ingestion
# means 30 entries can span far more than 30 days.
HISTORY_MAX_ENTRIES = 30

SOURCE_PASSIVE = "passive"
SOURCE_ACTIVE = "active"


@dataclass
class RawIssue:
    """Detector evidence as submitted by a collector.

    Only `type` and `details` are trusted when the type is in the catalog.
    Every other field is a fallback for unknown types.
    """

    type: str = ""
    id: Optional[str] = None
    severity: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    recommendation: Optional[str] = None
    details: Optional[str] = None


@dataclass
class Issue:
    id: str
    type: str
    severity: str  # critical | high | medium | low | info
    title: str
    description: str
    recommendation: str
    detected_at: str  # ISO 8601, assigned at ingestion
    details: Optional[str] = None


@dataclass
class IssuesSummary:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    total: int = 0


@dataclass
class ScoreHistoryEntry:
    date: str  # YYYY-MM-DD, UTC
    score: int
    grade: str


@dataclass
class ScanMeta:
    """Page facts reported alongside the issue list by a collector."""

    protocol: str = "unknown"
    has_http_forms: bool = False
    has_mixed_content: bool = False
    external_scripts: list[str] = field(default_factory=list)
    jquery_version: Optional[str] = None
    cookie_total: int = 0
    cookie_http_only: int = 0
    cookie_secure: int = 0
    title: Optional[str] = None


@dataclass
class ScanContext:
    """Per-submission facts the Aggregator records alongside the Report update.

    session_id is None for active (server-driven) scans; only passive
    submissions are deduplicated by session.
    """

    page_url: str
    source: str = SOURCE_PASSIVE
    session_id: Optional[str] = None
    meta: ScanMeta = field(default_factory=ScanMeta)
    user_agent: str = "unknown"


@dataclass
class ScanRecord:
    """One accepted ingestion. Immutable once written.

    score and grade are copied from the ingestion so the audit trail can be
    read without recomputation and so duplicate passive submissions can echo
    the original result.
    """

    scan_id: str
    company_id: str
    agent_id: str
    page_url: str
    issues: list[Issue]
    created_at: str
    source: str = SOURCE_PASSIVE
    session_id: Optional[str] = None
    meta: ScanMeta = field(default_factory=ScanMeta)
    user_agent: str = "unknown"
    score: Optional[int] = None
    grade: Optional[str] = None


@dataclass
class Report:
    """The single living posture aggregate for one (company_id, agent_id).

    issues_summary and latest_issues describe only the most recent ingestion.
    score_history is the only field that accumulates. version is the
    optimistic concurrency token: 0 before first write.
    """

    report_id: str
    company_id: str
    agent_id: str
    score: int
    grade: str
    issues_summary: IssuesSummary
    latest_issues: list[Issue]
    scan_count: int
    last_scan_at: str
    score_history: list[ScoreHistoryEntry]
    created_at: str
    updated_at: str
    version: int = 0


@dataclass
class IngestResult:
    scan_id: str
    score: int
    grade: str
    issue_count: int
    issues_summary: IssuesSummary
    issues: list[Issue]
    scanned_at: str


@dataclass
class DetectionResult:
    """Output of one headless-browser run before ingestion."""

    url: str
    issues: list[RawIssue]
    meta: ScanMeta = field(default_factory=ScanMeta)
