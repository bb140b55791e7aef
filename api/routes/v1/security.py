"""
api/routes/v1/security.py -- Security posture routes for the SitePosture REST API.

Routes:
  POST   /security/ingest   -- public; the in-page collector submits what it saw
  POST   /security/scan     -- operator; run a headless-browser scan now
  GET    /security/report   -- viewer; current Report + recent scans
  DELETE /security/report   -- owner; irreversible reset
  GET    /security/catalog  -- authenticated; issue catalog and grade guidance

Handlers are plain `def` so FastAPI runs them on its worker thread pool. The
engine objects on app.state are thread-safe (see core/aggregator.py).
Engine errors (ScanError subclasses) propagate to the handler in api/main.py,
which maps them onto the ErrorResponse envelope.

CORS for /security/ingest is handled in api/main.py: it must accept any
origin because the collector runs on tenants' own sites.
"""

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import limiter
from api.models import (
    ActiveScanRequest,
    ActiveScanResponse,
    ActiveScanResult,
    CatalogEntryOut,
    CatalogResponse,
    GradeDescriptionOut,
    IssueOut,
    IssuesSummaryOut,
    PassiveScanRequest,
    PassiveScanResponse,
    ReportOut,
    ReportResponse,
    ResetResponse,
    ScanSummaryOut,
)
from auth.dependencies import get_current_user, require_privileged
from auth.models import User
from core.access import ReportAccess
from core.catalog import GRADE_DESCRIPTIONS, ISSUE_CATALOG
from core.config import get_settings
from core.gateways import DUPLICATE_MESSAGE, ActiveGateway, PassiveGateway, PassiveSubmission

router = APIRouter(prefix="/security")

_NO_REPORT_MESSAGE = "No security report yet. Run a scan to create one."


# ---------------------------------------------------------------------------
# POST /security/ingest -- passive submission from the in-page collector
# ---------------------------------------------------------------------------


@router.post("/ingest", response_model=PassiveScanResponse, response_model_exclude_none=True)
@limiter.limit("120/minute")
def ingest_passive_scan(request: Request, body: PassiveScanRequest) -> PassiveScanResponse:
    """Record one visitor-side scan. Idempotent per (companyId, sessionId).

    Unauthenticated by design: the tenant is identified by companyId and
    authorized by the access policy, not by the caller.
    """
    gateway: PassiveGateway = request.app.state.passive_gateway
    outcome = gateway.submit(
        PassiveSubmission(
            company_id=body.company_id or "",
            session_id=body.session_id or "",
            page_url=body.page_url or "",
            agent_id=body.agent_id,
            issues=[i.to_domain() for i in body.issues],
            meta=body.meta.to_domain() if body.meta is not None else None,
            user_agent=body.user_agent,
        )
    )
    if outcome.duplicate:
        return PassiveScanResponse(scan_id=outcome.scan_id, duplicate=True, message=DUPLICATE_MESSAGE)
    return PassiveScanResponse(
        scan_id=outcome.scan_id,
        score=outcome.score,
        grade=outcome.grade,
        issue_count=outcome.issue_count,
    )


# ---------------------------------------------------------------------------
# POST /security/scan -- active headless-browser scan
# ---------------------------------------------------------------------------


@router.post("/scan", response_model=ActiveScanResponse)
@limiter.limit("10/minute")
def run_active_scan(
    request: Request,
    body: ActiveScanRequest,
    user: User = Depends(require_privileged),
) -> ActiveScanResponse:
    """Load the agent's site in a headless browser and ingest the findings.

    Blocks for up to scan_timeout_seconds per attempt. Nothing is persisted
    if the browser run fails.
    """
    gateway: ActiveGateway = request.app.state.active_gateway
    outcome = gateway.scan(user, body.agent_id)
    result = outcome.result
    return ActiveScanResponse(
        result=ActiveScanResult(
            scan_id=result.scan_id,
            url=outcome.url,
            score=result.score,
            grade=result.grade,
            issues_summary=IssuesSummaryOut.from_domain(result.issues_summary),
            issues=[IssueOut.from_domain(i) for i in result.issues],
            scanned_at=result.scanned_at,
        )
    )


# ---------------------------------------------------------------------------
# GET /security/report -- current posture
# ---------------------------------------------------------------------------


@router.get("/report", response_model=ReportResponse)
@limiter.limit("60/minute")
def get_report(
    request: Request,
    agent_id: str = Query(default="", alias="agentId", max_length=64),
    user: User = Depends(get_current_user),
) -> ReportResponse:
    """Return the agent's Report and its most recent scans.

    A missing Report is not an error: report is null with an explanatory
    message, so the dashboard can prompt for a first scan.
    """
    access: ReportAccess = request.app.state.report_access
    company, agent = access.resolve_for_view(user, agent_id)
    report = access.get_report(company.company_id, agent.agent_id)
    if report is None:
        return ReportResponse(report=None, recent_scans=[], message=_NO_REPORT_MESSAGE)
    scans = access.list_recent_scans(company.company_id, agent.agent_id, get_settings().recent_scans_limit)
    return ReportResponse(
        report=ReportOut.from_domain(report),
        recent_scans=[ScanSummaryOut.from_domain(s) for s in scans],
    )


# ---------------------------------------------------------------------------
# DELETE /security/report -- owner reset
# ---------------------------------------------------------------------------


@router.delete("/report", response_model=ResetResponse)
@limiter.limit("10/minute")
def reset_report(
    request: Request,
    agent_id: str = Query(default="", alias="agentId", max_length=64),
    user: User = Depends(get_current_user),
) -> ResetResponse:
    """Delete the agent's Report and every ScanRecord. Irreversible. Idempotent."""
    access: ReportAccess = request.app.state.report_access
    company, agent = access.resolve_for_reset(user, agent_id)
    reports_deleted, scans_deleted = access.reset_report(company.company_id, agent.agent_id)
    return ResetResponse(reports_deleted=reports_deleted, scans_deleted=scans_deleted)


# ---------------------------------------------------------------------------
# GET /security/catalog -- static reference data for renderers
# ---------------------------------------------------------------------------


@router.get("/catalog", response_model=CatalogResponse)
@limiter.limit("60/minute")
def get_catalog(request: Request, user: User = Depends(get_current_user)) -> CatalogResponse:
    """Return every catalogued issue type and the meaning of each grade."""
    return CatalogResponse(
        issues=[
            CatalogEntryOut(
                type=issue_type,
                severity=entry["severity"],
                title=entry["title"],
                description=entry["description"],
                technical_detail=entry["technical_detail"],
                potential_damage=list(entry["potential_damage"]),
                recommendation=entry["recommendation"],
                references=list(entry["references"]),
            )
            for issue_type, entry in ISSUE_CATALOG.items()
        ],
        grades=[
            GradeDescriptionOut(grade=grade, label=info["label"], description=info["description"])
            for grade, info in GRADE_DESCRIPTIONS.items()
        ],
    )
