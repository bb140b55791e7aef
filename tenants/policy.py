"""
tenants/policy.py -- Authorization predicates for posture operations.

Gateways and the report access layer never hard-code who may do what; they
receive an AccessPolicy and ask it. RoleAccessPolicy is the product default:

  passive ingest -- the tenant's owner is an active user with a privileged role
  active scan    -- the caller has a privileged role
  view report    -- admin, the company owner, or a user the agent is shared with
  reset report   -- the company owner only

A deployment with different rules passes its own object with the same four
methods into app.state.policy.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Optional, Protocol

from tenants.models import Agent, Company

if TYPE_CHECKING:
    from auth.models import User


class AccessPolicy(Protocol):
    def can_ingest(self, company: Company, owner: Optional[User]) -> bool: ...

    def can_scan(self, user: User, company: Company, agent: Agent) -> bool: ...

    def can_view(self, user: User, company: Company, agent: Agent) -> bool: ...

    def can_reset(self, user: User, company: Company, agent: Agent) -> bool: ...


class RoleAccessPolicy:
    def __init__(self, privileged_roles: Iterable[str] = ("admin", "operator")) -> None:
        self.privileged_roles = frozenset(privileged_roles)

    def _is_privileged(self, user: Optional[User]) -> bool:
        return user is not None and user.is_active and user.role in self.privileged_roles

    def can_ingest(self, company: Company, owner: Optional[User]) -> bool:
        return self._is_privileged(owner)

    def can_scan(self, user: User, company: Company, agent: Agent) -> bool:
        return self._is_privileged(user)

    def can_view(self, user: User, company: Company, agent: Agent) -> bool:
        if not user.is_active:
            return False
        if user.role == "admin":
            return True
        return user.id == company.owner_user_id or user.id in agent.shared_with

    def can_reset(self, user: User, company: Company, agent: Agent) -> bool:
        return user.is_active and user.id is not None and user.id == company.owner_user_id
