"""
access.py -- Read and reset operations on Reports, behind the access policy.

The read contract is what renderers (dashboard, PDF export, CLI) consume.
They never write; reset is the only mutation and it is owner-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import Report

if TYPE_CHECKING:
    from auth.models import User
    from tenants.models import Agent, Company

logger = logging.getLogger("siteposture.access")


@dataclass
class ScanSummary:
    scan_id: str
    page_url: str
    issue_count: int
    created_at: str


class ReportAccess:
    def __init__(self, reports, tenants, policy) -> None:
        self._reports = reports
        self._tenants = tenants
        self._policy = policy

    def get_report(self, company_id: str, agent_id: str) -> Optional[Report]:
        return self._reports.get_report(company_id, agent_id)

    def list_recent_scans(self, company_id: str, agent_id: str, limit: int = 5) -> list[ScanSummary]:
        return [
            ScanSummary(
                scan_id=s.scan_id,
                page_url=s.page_url,
                issue_count=len(s.issues),
                created_at=s.created_at,
            )
            for s in self._reports.list_recent_scans(company_id, agent_id, limit)
        ]

    def reset_report(self, company_id: str, agent_id: str) -> tuple[int, int]:
        """Irreversibly delete the Report and all ScanRecords. Returns (reports, scans) deleted."""
        deleted = self._reports.delete_report(company_id, agent_id)
        logger.info(
            "Reset posture for %s/%s: %d report(s), %d scan(s) deleted", company_id, agent_id, deleted[0], deleted[1]
        )
        return deleted

    def resolve_for_view(self, user: User, agent_id: str) -> tuple[Company, Agent]:
        company, agent = self._resolve(agent_id)
        if not self._policy.can_view(user, company, agent):
            raise AuthorizationError("You do not have access to this agent.")
        return company, agent

    def resolve_for_reset(self, user: User, agent_id: str) -> tuple[Company, Agent]:
        company, agent = self._resolve(agent_id)
        if not self._policy.can_reset(user, company, agent):
            raise AuthorizationError("Only the owner can reset security reports.")
        return company, agent

    def _resolve(self, agent_id: str) -> tuple[Company, Agent]:
        if not agent_id:
            raise ValidationError("agentId is required.")
        agent = self._tenants.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found.", detail=agent_id)
        company = self._tenants.get_company(agent.company_id)
        if company is None:
            raise NotFoundError("Company not found.", detail=agent.company_id)
        return company, agent
