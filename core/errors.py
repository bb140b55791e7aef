"""
core/errors.py -- Error taxonomy for ingestion, scanning and report access.

Every runtime failure the engine can report is a ScanError subclass carrying a
machine-readable code and the HTTP status the API layer should answer with.
api/main.py maps them onto the shared ErrorResponse envelope; nothing below
the API imports FastAPI.

Catalog and scoring functions raise none of these. An exception from those
modules is a bug and is left to propagate.
"""

from typing import Optional


class ScanError(Exception):
    """Base class. Subclasses set code and status_code."""

    code = "scan_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(ScanError):
    """Missing or malformed required input. Not retried."""

    code = "validation_error"
    status_code = 400


class AuthorizationError(ScanError):
    """Tenant mismatch or insufficient role. Not retried."""

    code = "forbidden"
    status_code = 403


class NotFoundError(ScanError):
    """Company or agent does not resolve in the tenant directory."""

    code = "not_found"
    status_code = 404


class UpstreamAutomationError(ScanError):
    """Headless browser launch, navigation, timeout, or in-page script failure."""

    code = "automation_failed"
    status_code = 500
    retryable = True


class StorageError(ScanError):
    """Persistence failure during a read or the read-modify-write of a Report."""

    code = "storage_error"
    status_code = 500
    retryable = True


class ConcurrentUpdateError(StorageError):
    """Another writer changed the Report between our read and our write."""

    code = "concurrent_update"


class DuplicateSessionError(StorageError):
    """A ScanRecord already exists for (company_id, session_id).

    Raised from inside the ingestion transaction, so the Report update that
    preceded the insert has been rolled back with it.
    """

    code = "duplicate_session"
    retryable = False

    def __init__(self, company_id: str, session_id: str) -> None:
        super().__init__(f"Scan already recorded for session {session_id}")
        self.company_id = company_id
        self.session_id = session_id
