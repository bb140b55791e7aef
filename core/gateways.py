"""
gateways.py — The two entry points that turn collector output into ingestions.

PassiveGateway: the in-page collector POSTs what it saw in a visitor's
    browser. Submissions are idempotent per (company_id, session_id): a
    repeat returns the original scan and never reaches the Aggregator.

ActiveGateway: an operator asks the server to load the tenant's site in a
    headless browser. Browser failures are retried; nothing is persisted
    unless detection completes.

Both paths converge on ReportAggregator.ingest(), so normalization, scoring
and merge behave identically regardless of where the issues came from.
Authorization is delegated to an AccessPolicy (tenants/policy.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import AuthorizationError, DuplicateSessionError, NotFoundError, UpstreamAutomationError, ValidationError
from .locks import KeyedLock
from .models import SOURCE_ACTIVE, SOURCE_PASSIVE, DetectionResult, IngestResult, RawIssue, ScanContext, ScanMeta

if TYPE_CHECKING:
    from auth.models import User
    from tenants.models import Agent, Company

logger = logging.getLogger("siteposture.gateways")

DUPLICATE_MESSAGE = "Scan already recorded for this session"


@dataclass
class PassiveSubmission:
    company_id: str
    session_id: str
    page_url: str
    issues: list[RawIssue]
    meta: Optional[ScanMeta] = None
    user_agent: Optional[str] = None
    agent_id: Optional[str] = None


@dataclass
class PassiveOutcome:
    """Result of one passive submission.

    duplicate=True means the session was already recorded; scan_id, score
    and grade are the original's and result is None.
    """

    scan_id: str
    score: Optional[int]
    grade: Optional[str]
    issue_count: int
    duplicate: bool = False
    result: Optional[IngestResult] = None


@dataclass
class ActiveOutcome:
    url: str
    result: IngestResult


class PassiveGateway:
    def __init__(self, aggregator, reports, tenants, users, policy) -> None:
        self._aggregator = aggregator
        self._reports = reports
        self._tenants = tenants
        self._users = users
        self._policy = policy
        self._sessions = KeyedLock()

    def submit(self, submission: PassiveSubmission) -> PassiveOutcome:
        """Validate, authorize and ingest one passive submission exactly once.

        Raises:
            ValidationError: company_id, session_id or page_url is empty.
            NotFoundError: unknown company, or no agent to credit.
            AuthorizationError: the tenant is not entitled to passive ingestion.
        """
        missing = [
            name
            for name, value in (
                ("companyId", submission.company_id),
                ("sessionId", submission.session_id),
                ("pageUrl", submission.page_url),
            )
            if not value
        ]
        if missing:
            raise ValidationError("Missing required fields.", detail=", ".join(missing))

        company = self._tenants.get_company(submission.company_id)
        if company is None:
            raise NotFoundError("Company not found.", detail=submission.company_id)

        owner = self._users.get_by_id(company.owner_user_id) if company.owner_user_id is not None else None
        if not self._policy.can_ingest(company, owner):
            logger.warning("Passive ingestion refused for company %s", company.company_id)
            raise AuthorizationError("Security scanning is not enabled for this company.")

        agent = self._resolve_agent(company, submission.agent_id)

        with self._sessions.hold((company.company_id, submission.session_id)):
            prior = self._reports.find_scan_by_session(company.company_id, submission.session_id)
            if prior is not None:
                logger.info("Duplicate session %s for company %s", submission.session_id, company.company_id)
                return _duplicate(prior)

            context = ScanContext(
                page_url=submission.page_url,
                source=SOURCE_PASSIVE,
                session_id=submission.session_id,
                meta=submission.meta or ScanMeta(),
                user_agent=submission.user_agent or "unknown",
            )
            try:
                result = self._aggregator.ingest(company.company_id, agent.agent_id, submission.issues, context)
            except DuplicateSessionError:
                # Another process recorded the session between our lookup and insert.
                prior = self._reports.find_scan_by_session(company.company_id, submission.session_id)
                if prior is None:
                    raise
                logger.info("Session %s recorded concurrently for company %s", submission.session_id, company.company_id)
                return _duplicate(prior)

        return PassiveOutcome(
            scan_id=result.scan_id,
            score=result.score,
            grade=result.grade,
            issue_count=result.issue_count,
            result=result,
        )

    def _resolve_agent(self, company: Company, agent_id: Optional[str]) -> Agent:
        if agent_id:
            agent = self._tenants.resolve_agent(company.company_id, agent_id)
        else:
            agent = self._tenants.get_agent_for_company(company.company_id)
        if agent is None:
            raise NotFoundError("Agent not found for company.", detail=agent_id or company.company_id)
        return agent


def _duplicate(prior) -> PassiveOutcome:
    return PassiveOutcome(
        scan_id=prior.scan_id,
        score=prior.score,
        grade=prior.grade,
        issue_count=len(prior.issues),
        duplicate=True,
    )


class ActiveGateway:
    def __init__(self, aggregator, tenants, scanner, policy, retry_attempts: int = 2) -> None:
        self._aggregator = aggregator
        self._tenants = tenants
        self._scanner = scanner
        self._policy = policy
        self._retry_attempts = retry_attempts

    def scan(self, user: User, agent_id: str) -> ActiveOutcome:
        """Run a headless-browser scan of the agent's site and ingest the findings.

        Raises:
            ValidationError: agent_id empty, or no root URL configured.
            NotFoundError: unknown agent or its company.
            AuthorizationError: caller may not trigger scans.
            UpstreamAutomationError: every browser attempt failed; nothing persisted.
        """
        if not agent_id:
            raise ValidationError("agentId is required.")
        agent = self._tenants.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found.", detail=agent_id)
        company = self._tenants.get_company(agent.company_id)
        if company is None:
            raise NotFoundError("Company not found.", detail=agent.company_id)
        if not self._policy.can_scan(user, company, agent):
            raise AuthorizationError("Active scans require an operator role.")

        url = company.root_url or agent.root_url
        if not url:
            raise ValidationError("No website URL configured for this agent.", detail=agent_id)

        detection = self._detect(url)
        context = ScanContext(
            page_url=detection.url,
            source=SOURCE_ACTIVE,
            meta=detection.meta,
            user_agent="active-scanner",
        )
        result = self._aggregator.ingest(company.company_id, agent.agent_id, detection.issues, context)
        return ActiveOutcome(url=detection.url, result=result)

    def _detect(self, url: str) -> DetectionResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._scanner.run(url)
            except UpstreamAutomationError as exc:
                if attempt >= self._retry_attempts:
                    logger.error("Active scan of %s failed after %d attempt(s): %s", url, attempt, exc.message)
                    raise
                logger.warning("Active scan of %s failed (%s); retrying", url, exc.message)
