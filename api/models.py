"""
API request and response models for SitePosture REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (the in-page collector and the dashboard are
JavaScript). Python attribute names stay snake_case via alias_generator;
populate_by_name lets tests and handlers build models with either spelling.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from core.access import ScanSummary
from core.models import Issue, IssuesSummary, RawIssue, Report, ScanMeta

_MAX_ISSUES_PER_SUBMISSION = 500
_MAX_EXTERNAL_SCRIPTS = 100

_WIRE_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _clip(value: Any, limit: int) -> Optional[str]:
    """Coerce a collector-supplied scalar to str and cut it to limit characters."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
    return value[:limit]


def _count(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


class RawIssueIn(BaseModel):
    """One detection as reported by a collector. Every field is optional.

    Collector payloads are untrusted but never fatal: values of the wrong
    type are stringified and over-long text is cut rather than refused.
    Severity is accepted as any string: for catalogued types it is ignored,
    for unknown types an invalid value becomes "info" during normalization.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    type: str = ""
    id: Optional[str] = None
    severity: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    recommendation: Optional[str] = None
    details: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type_text(cls, value: Any) -> str:
        return _clip(value, 100) or ""

    @field_validator("id", "severity", "title", mode="before")
    @classmethod
    def coerce_short_text(cls, value: Any) -> Optional[str]:
        return _clip(value, 500)

    @field_validator("description", "recommendation", "details", mode="before")
    @classmethod
    def coerce_long_text(cls, value: Any) -> Optional[str]:
        return _clip(value, 5000)

    def to_domain(self) -> RawIssue:
        return RawIssue(
            type=self.type,
            id=self.id,
            severity=self.severity,
            title=self.title,
            description=self.description,
            recommendation=self.recommendation,
            details=self.details,
        )


class CookieFlagsIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    total: int = 0
    http_only: int = 0
    secure: int = 0

    @field_validator("total", "http_only", "secure", mode="before")
    @classmethod
    def coerce_non_negative(cls, value: Any) -> int:
        return _count(value)


class ScanMetaIn(BaseModel):
    """Page facts reported by the in-page collector.

    The collector lists one host per <script> tag, so externalScripts may
    repeat and run long; it is cut to _MAX_EXTERNAL_SCRIPTS entries.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    protocol: str = "unknown"
    has_http_forms: bool = False
    has_mixed_content: bool = False
    external_scripts: list[str] = Field(default_factory=list)
    jquery_version: Optional[str] = None
    cookie_flags: CookieFlagsIn = Field(default_factory=CookieFlagsIn)
    title: Optional[str] = None

    @field_validator("protocol", mode="before")
    @classmethod
    def coerce_protocol_text(cls, value: Any) -> str:
        return _clip(value, 20) or "unknown"

    @field_validator("jquery_version", "title", mode="before")
    @classmethod
    def coerce_optional_text(cls, value: Any) -> Optional[str]:
        return _clip(value, 500)

    @field_validator("has_http_forms", "has_mixed_content", mode="before")
    @classmethod
    def coerce_bool_flag(cls, value: Any) -> bool:
        return _flag(value)

    @field_validator("external_scripts", mode="before")
    @classmethod
    def coerce_script_hosts(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [_clip(host, 255) for host in value[:_MAX_EXTERNAL_SCRIPTS] if host is not None]

    @field_validator("cookie_flags", mode="before")
    @classmethod
    def coerce_cookie_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    def to_domain(self) -> ScanMeta:
        return ScanMeta(
            protocol=self.protocol,
            has_http_forms=self.has_http_forms,
            has_mixed_content=self.has_mixed_content,
            external_scripts=list(self.external_scripts),
            jquery_version=self.jquery_version,
            cookie_total=self.cookie_flags.total,
            cookie_http_only=self.cookie_flags.http_only,
            cookie_secure=self.cookie_flags.secure,
            title=self.title,
        )


class PassiveScanRequest(BaseModel):
    """Request body for POST /api/v1/security/ingest.

    companyId, sessionId and pageUrl are required by the gateway; they are
    optional here so a missing one produces the gateway's 400 message instead
    of a generic schema error.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    company_id: Optional[str] = Field(default=None, max_length=64)
    session_id: Optional[str] = Field(default=None, max_length=128)
    page_url: Optional[str] = Field(default=None, max_length=2048)
    agent_id: Optional[str] = Field(default=None, max_length=64)
    issues: list[RawIssueIn] = Field(default_factory=list)
    meta: Optional[ScanMetaIn] = None
    user_agent: Optional[str] = None

    @field_validator("issues", mode="before")
    @classmethod
    def coerce_issue_objects(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)][:_MAX_ISSUES_PER_SUBMISSION]

    @field_validator("meta", mode="before")
    @classmethod
    def coerce_meta_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("user_agent", mode="before")
    @classmethod
    def coerce_user_agent_text(cls, value: Any) -> Optional[str]:
        return _clip(value, 1000)


class ActiveScanRequest(BaseModel):
    """Request body for POST /api/v1/security/scan."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    agent_id: str = Field(default="", max_length=64)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IssueOut(BaseModel):
    model_config = _WIRE_FROZEN

    id: str
    type: str
    severity: str
    title: str
    description: str
    recommendation: str
    details: Optional[str] = None
    detected_at: str

    @classmethod
    def from_domain(cls, issue: Issue) -> "IssueOut":
        return cls(
            id=issue.id,
            type=issue.type,
            severity=issue.severity,
            title=issue.title,
            description=issue.description,
            recommendation=issue.recommendation,
            details=issue.details,
            detected_at=issue.detected_at,
        )


class IssuesSummaryOut(BaseModel):
    model_config = _WIRE_FROZEN

    critical: int
    high: int
    medium: int
    low: int
    info: int
    total: int

    @classmethod
    def from_domain(cls, summary: IssuesSummary) -> "IssuesSummaryOut":
        return cls(
            critical=summary.critical,
            high=summary.high,
            medium=summary.medium,
            low=summary.low,
            info=summary.info,
            total=summary.total,
        )


class ScoreHistoryOut(BaseModel):
    model_config = _WIRE_FROZEN

    date: str
    score: int
    grade: str


class ReportOut(BaseModel):
    """Public read shape of a Report. The version token is internal and not exposed."""

    model_config = _WIRE_FROZEN

    report_id: str
    company_id: str
    agent_id: str
    score: int
    grade: str
    issues_summary: IssuesSummaryOut
    latest_issues: list[IssueOut]
    scan_count: int
    last_scan_at: str
    score_history: list[ScoreHistoryOut]
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, report: Report) -> "ReportOut":
        return cls(
            report_id=report.report_id,
            company_id=report.company_id,
            agent_id=report.agent_id,
            score=report.score,
            grade=report.grade,
            issues_summary=IssuesSummaryOut.from_domain(report.issues_summary),
            latest_issues=[IssueOut.from_domain(i) for i in report.latest_issues],
            scan_count=report.scan_count,
            last_scan_at=report.last_scan_at,
            score_history=[ScoreHistoryOut(date=e.date, score=e.score, grade=e.grade) for e in report.score_history],
            created_at=report.created_at,
            updated_at=report.updated_at,
        )


class ScanSummaryOut(BaseModel):
    model_config = _WIRE_FROZEN

    scan_id: str
    page_url: str
    issue_count: int
    created_at: str

    @classmethod
    def from_domain(cls, summary: ScanSummary) -> "ScanSummaryOut":
        return cls(
            scan_id=summary.scan_id,
            page_url=summary.page_url,
            issue_count=summary.issue_count,
            created_at=summary.created_at,
        )


class ReportResponse(BaseModel):
    """Response for GET /api/v1/security/report. report is null until the first scan."""

    model_config = _WIRE_FROZEN

    report: Optional[ReportOut] = None
    recent_scans: list[ScanSummaryOut] = Field(default_factory=list)
    message: Optional[str] = None


class PassiveScanResponse(BaseModel):
    """Response for POST /api/v1/security/ingest.

    Fresh ingestion: success, scanId, score, grade, issueCount.
    Duplicate session: success, scanId, duplicate, message.
    The route drops unset fields so each variant carries only its own keys.
    """

    model_config = _WIRE_FROZEN

    success: bool = True
    scan_id: str
    score: Optional[int] = None
    grade: Optional[str] = None
    issue_count: Optional[int] = None
    duplicate: Optional[bool] = None
    message: Optional[str] = None


class ActiveScanResult(BaseModel):
    model_config = _WIRE_FROZEN

    scan_id: str
    url: str
    score: int
    grade: str
    issues_summary: IssuesSummaryOut
    issues: list[IssueOut]
    scanned_at: str


class ActiveScanResponse(BaseModel):
    """Response for POST /api/v1/security/scan."""

    model_config = _WIRE_FROZEN

    success: bool = True
    result: ActiveScanResult


class ResetResponse(BaseModel):
    """Response for DELETE /api/v1/security/report."""

    model_config = _WIRE_FROZEN

    success: bool = True
    reports_deleted: int
    scans_deleted: int


class CatalogEntryOut(BaseModel):
    model_config = _WIRE_FROZEN

    type: str
    severity: str
    title: str
    description: str
    technical_detail: str
    potential_damage: list[str]
    recommendation: str
    references: list[str]


class GradeDescriptionOut(BaseModel):
    model_config = _WIRE_FROZEN

    grade: str
    label: str
    description: str


class CatalogResponse(BaseModel):
    """Response for GET /api/v1/security/catalog."""

    model_config = _WIRE_FROZEN

    issues: list[CatalogEntryOut]
    grades: list[GradeDescriptionOut]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
