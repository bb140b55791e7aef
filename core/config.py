"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SitePosture happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.
      List fields (ALLOWED_HOSTS, PRIVILEGED_ROLES) are read as JSON arrays.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HMAC-SHA256 API key
  hashing and JWT verification both rely on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, reports/, tenants/, or scanner/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("siteposture.config")


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # Empty string means each store uses its own SQLite file next to its module.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    # Roles allowed to trigger active scans and to own a tenant whose
    # in-page collector may push passive scans.
    privileged_roles: list[str] = Field(default_factory=lambda: ["admin", "operator"])

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    # Origins for the authenticated dashboard routes. The passive ingest
    # endpoint is always open to any origin (see api/main.py).
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    )

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    scan_timeout_seconds: int = 30
    scan_retry_attempts: int = 2
    storage_retry_attempts: int = 3
    recent_scans_limit: int = 5
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> "Settings":
        """Retry and timeout knobs must be positive; zero would disable the operation entirely."""
        for name in ("scan_timeout_seconds", "scan_retry_attempts", "storage_retry_attempts", "recent_scans_limit"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
