"""
auth/models.py -- Domain dataclasses for caller identities.

Pattern: Data class (pure data container, zero logic). Mirrors core/models.py
and tenants/models.py -- dataclasses own domain shape; stores and
dependencies do the work.

Layer rule: no imports from api/, reports/, tenants/, or scanner/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An identity that can call the posture API.

    role decides what the user may do (see tenants/policy.py): "admin" and
    "operator" are privileged by default, "member" can only view reports it
    owns or has been shared.

    Passwords and login flows belong to the host product; this service only
    verifies the tokens and keys it issues.
    """

    username: str
    role: str  # "admin", "operator", "member"
    id: int | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass
class ApiKey:
    """A long-lived credential for automation clients (CI jobs, cron scans).

    Security design:
    - key_hash is HMAC-SHA256(SECRET_KEY, raw_key), so the store does an O(1)
      lookup. 256-bit random keys make brute force infeasible.
    - key_prefix (first 12 chars of the raw key) is kept for display only.
    - The raw key is never persisted. It is returned ONCE at creation.
    """

    user_id: int
    name: str
    key_hash: str  # HMAC-SHA256 of the raw key
    key_prefix: str  # first 12 chars of raw key, display only
    id: int | None = None
    created_at: str | None = None
    last_used: str | None = None
    is_active: bool = True
