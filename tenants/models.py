"""
tenants/models.py -- Domain dataclasses for the tenant directory.

Companies and agents are owned by the host product; this service only reads
them to resolve ingestion targets and to decide who may see or reset a
Report. Pure data containers with zero logic.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Company:
    """A tenant. owner_user_id links to auth.models.User.id.

    root_url is the preferred target for active scans; an agent's own
    root_url is the fallback.
    """

    company_id: str
    name: str
    owner_user_id: Optional[int] = None
    root_url: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Agent:
    """A chat-agent instance belonging to a company. All posture state is keyed by (company_id, agent_id).

    shared_with holds user IDs granted read access to this agent's data.
    """

    agent_id: str
    company_id: str
    name: str = ""
    root_url: Optional[str] = None
    shared_with: list[int] = field(default_factory=list)
    created_at: str = ""
