"""
tests/test_tenant_store.py -- Tests for tenants/store.py.

Covers:
  - company and agent round trips, shared_with decoding
  - resolve_agent ownership check, first-agent selection
  - driver failures surfacing as StorageError, and as a retryable 500 at the API
"""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import StorageError
from tenants.models import Agent, Company
from tenants.store import TenantStore

INGEST = "/api/v1/security/ingest"


@pytest.fixture
def tenant_store():
    store = TenantStore(db_url=f"sqlite:///file:tenants_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    store.create_company(Company(company_id="acme", name="Acme", owner_user_id=1, root_url="https://acme.test"))
    store.create_agent(Agent(agent_id="late", company_id="acme", created_at="2024-02-01T00:00:00+00:00"))
    store.create_agent(
        Agent(agent_id="early", company_id="acme", shared_with=[4, 5], created_at="2024-01-01T00:00:00+00:00")
    )
    store.create_company(Company(company_id="other", name="Other", owner_user_id=2))
    store.create_agent(Agent(agent_id="theirs", company_id="other"))
    yield store
    store.close()


def _disk_error() -> OperationalError:
    return OperationalError("SELECT", {}, Exception("disk I/O error"))


def test_company_round_trip(tenant_store):
    company = tenant_store.get_company("acme")
    assert (company.name, company.owner_user_id, company.root_url) == ("Acme", 1, "https://acme.test")
    assert company.created_at
    assert tenant_store.get_company("ghost") is None


def test_agent_round_trip(tenant_store):
    agent = tenant_store.get_agent("early")
    assert agent.company_id == "acme"
    assert agent.shared_with == [4, 5]
    assert tenant_store.get_agent("late").shared_with == []


def test_resolve_agent_checks_owner(tenant_store):
    assert tenant_store.resolve_agent("acme", "early").agent_id == "early"
    assert tenant_store.resolve_agent("acme", "theirs") is None
    assert tenant_store.resolve_agent("acme", "ghost") is None


def test_first_agent_is_oldest(tenant_store):
    assert tenant_store.get_agent_for_company("acme").agent_id == "early"
    assert tenant_store.get_agent_for_company("nobody") is None


def test_duplicate_company_is_storage_error(tenant_store):
    with pytest.raises(StorageError):
        tenant_store.create_company(Company(company_id="acme", name="Again", owner_user_id=3))


@pytest.mark.parametrize(
    "lookup",
    [
        lambda s: s.get_company("acme"),
        lambda s: s.get_agent("early"),
        lambda s: s.get_agent_for_company("acme"),
        lambda s: s.resolve_agent("acme", "early"),
    ],
)
def test_driver_failure_is_storage_error(tenant_store, lookup):
    with patch.object(tenant_store.engine, "connect", side_effect=_disk_error()):
        with pytest.raises(StorageError) as info:
            lookup(tenant_store)
    assert info.value.retryable
    assert info.value.detail == "OperationalError"


def test_tenant_lookup_failure_is_retryable_500(api_env):
    body = {"companyId": "acme", "sessionId": f"sess-{uuid.uuid4().hex}", "pageUrl": "http://acme.test/"}
    with patch.object(api_env.tenants.engine, "connect", side_effect=_disk_error()):
        resp = api_env.client.post(INGEST, json=body)
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "storage_error"
    assert resp.headers["retry-after"] == "5"
