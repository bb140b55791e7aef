"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two auth methods are checked in priority order:
  1. Authorization: Bearer <token> header -- dashboard and API clients.
  2. X-API-Key header -- automation using long-lived API keys.

Both converge on a User object after successful verification.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_privileged() also raises HTTP 403 unless the role is privileged.

The passive ingest route uses none of these: it is public and authorizes
by tenant (see core/gateways.py).
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token, hash_api_key
from core.config import get_settings


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via Bearer token or API key. Never raises."""
    user_store = request.app.state.user_store

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        payload = decode_access_token(auth_header[7:])
        if payload:
            user = user_store.get_by_id(payload["user_id"])
            if user and user.is_active:
                return user

    raw_key = request.headers.get("X-API-Key", "")
    if raw_key:
        key = user_store.get_api_key_by_hash(hash_api_key(raw_key))
        if key and key.is_active:
            user = user_store.get_by_id(key.user_id)
            if user and user.is_active:
                user_store.update_api_key_last_used(key.id)
                return user

    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_privileged(request: Request) -> User:
    """Require a privileged role (Settings.privileged_roles). 401 if unauthenticated, 403 otherwise."""
    user = get_current_user(request)
    if user.role not in get_settings().privileged_roles:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Operator access required."},
        )
    return user
