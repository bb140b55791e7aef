"""
auth/tokens.py -- JWT and API key utilities.

  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, username, role, and expiry. Verification returns None on any
       failure -- the dependency layer turns that into a 401.

  API keys: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_key) so lookup is O(1).

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (dev mode auto-generates, production refuses to start without
       one, short keys are rejected).

Layer rule: no imports from api/, reports/, tenants/, or scanner/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("siteposture.auth")

_ALGORITHM = "HS256"
API_KEY_PREFIX = "sp_"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and expiry.

    Args:
        user_id:        Numeric user ID stored in the DB.
        username:       Stored as the JWT subject claim.
        role:           User role at issuance. Authorization re-reads the
                        stored user, so a demoted user loses access at once.
        expire_seconds: Lifetime in seconds. 0 uses Settings.token_expire_seconds.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        logger.debug("Rejected bearer token")
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key in the format: sp_<64 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_key) as a hex string.

    An attacker who obtains the DB cannot recover keys without also knowing
    SECRET_KEY.
    """
    return hmac.new(
        get_settings().secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()
