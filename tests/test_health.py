"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the report store answers
  - degraded status when the report store raises StorageError
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch

from api.main import API_VERSION
from core.errors import StorageError


def test_health_returns_200_with_components(api_env):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_env):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_env.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_degraded_when_database_fails(api_env):
    """A failing report store downgrades status but still answers 200."""
    with patch.object(api_env.reports, "count_scans", side_effect=StorageError("Storage failure.")):
        resp = api_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"
