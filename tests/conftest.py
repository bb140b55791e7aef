"""
tests/conftest.py -- Shared test fixtures for SitePosture tests.

This module provides:
  - memory_url(): named shared-memory SQLite URIs for isolated stores
  - FakeScanner: stand-in for BrowserScanner (no Chromium in unit tests)
  - seed_tenants(): users, companies and agents used across API tests
  - api_env: TestClient with a patched lifespan and seeded tenants
  - stores / aggregator: direct engine objects for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any api/auth/core import:
get_settings() auto-generates SECRET_KEY in dev mode, and the TestClient's
"testserver" Host header has to pass TrustedHostMiddleware.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_engine
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token
from core.aggregator import ReportAggregator
from core.errors import UpstreamAutomationError
from core.models import DetectionResult, RawIssue, ScanMeta
from reports.store import ReportStore
from tenants.models import Agent, Company
from tenants.store import TenantStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    """Unique named shared-memory SQLite URL."""
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


class FixedClock:
    """Injectable clock; tests move it with set()."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


class FakeScanner:
    """BrowserScanner stand-in. Fails `failures` times, then returns `issues`."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failures = 0
        self.issues: list[RawIssue] = [
            RawIssue(type="https_missing", details="Protocol: http:"),
            RawIssue(type="old_jquery", details="jQuery 1.12.4"),
        ]

    def run(self, url: str) -> DetectionResult:
        self.calls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise UpstreamAutomationError(f"Timed out scanning {url}.")
        return DetectionResult(url=url, issues=list(self.issues), meta=ScanMeta(protocol="http:"))


@dataclass
class Seed:
    """IDs and tokens of the seeded tenant directory."""

    ids: dict[str, int] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)

    def headers(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}


def seed_tenants(users: UserStore, tenants: TenantStore) -> Seed:
    """Create the standard cast.

    operator -- owns company "acme" (agents "acme-web", "acme-shop", "acme-empty")
    member   -- non-privileged, "acme-web" is shared with them
    outsider -- non-privileged, no access to anything
    admin    -- sees everything
    hobbyist -- non-privileged owner of "hobby" (passive ingestion refused)
    """
    seed = Seed()
    for username, role in (
        ("operator", "operator"),
        ("member", "member"),
        ("outsider", "member"),
        ("admin", "admin"),
        ("hobbyist", "member"),
    ):
        uid = users.create_user(User(username=username, role=role))
        seed.ids[username] = uid
        seed.tokens[username] = create_access_token(user_id=uid, username=username, role=role, expire_seconds=3600)

    tenants.create_company(
        Company(company_id="acme", name="Acme", owner_user_id=seed.ids["operator"], root_url="http://acme.test")
    )
    tenants.create_agent(
        Agent(
            agent_id="acme-web",
            company_id="acme",
            name="Website",
            shared_with=[seed.ids["member"]],
            created_at="2024-01-01T00:00:00+00:00",
        )
    )
    tenants.create_agent(
        Agent(agent_id="acme-shop", company_id="acme", name="Shop", created_at="2024-01-02T00:00:00+00:00")
    )
    tenants.create_agent(
        Agent(agent_id="acme-empty", company_id="acme", name="Empty", created_at="2024-01-03T00:00:00+00:00")
    )

    tenants.create_company(Company(company_id="hobby", name="Hobby", owner_user_id=seed.ids["hobbyist"]))
    tenants.create_agent(Agent(agent_id="hobby-web", company_id="hobby"))

    # No root URL anywhere: active scans cannot target it.
    tenants.create_company(Company(company_id="nourl", name="No URL", owner_user_id=seed.ids["operator"]))
    tenants.create_agent(Agent(agent_id="nourl-web", company_id="nourl"))
    return seed


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[ReportStore, TenantStore], None, None]:
    reports = ReportStore(db_url=memory_url("reports"))
    tenants = TenantStore(db_url=memory_url("tenants"))
    tenants.create_company(Company(company_id="c1", name="Acme", owner_user_id=1, root_url="https://acme.test"))
    tenants.create_agent(Agent(agent_id="a1", company_id="c1"))
    tenants.create_company(Company(company_id="c2", name="Other", owner_user_id=2))
    tenants.create_agent(Agent(agent_id="b1", company_id="c2"))
    yield reports, tenants
    reports.close()
    tenants.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def aggregator(stores, clock) -> ReportAggregator:
    reports, tenants = stores
    return ReportAggregator(reports, tenants, clock=clock, backoff_seconds=0)


@dataclass
class Directory:
    users: UserStore
    tenants: TenantStore
    reports: ReportStore
    seed: Seed


@pytest.fixture
def directory() -> Generator[Directory, None, None]:
    """Fresh stores holding the seed_tenants() cast, without an app."""
    users = UserStore(db_url=memory_url("dir_auth"))
    tenants = TenantStore(db_url=memory_url("dir_tenants"))
    reports = ReportStore(db_url=memory_url("dir_reports"))
    seed = seed_tenants(users, tenants)
    yield Directory(users=users, tenants=tenants, reports=reports, seed=seed)
    reports.close()
    tenants.close()
    users.close()


@pytest.fixture
def fake_scanner() -> FakeScanner:
    return FakeScanner()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    seed: Seed
    scanner: FakeScanner
    reports: ReportStore
    tenants: TenantStore
    users: UserStore


def _patch_lifespan(users: UserStore, tenants: TenantStore, reports: ReportStore, scanner: FakeScanner):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores and the fake scanner through the same build_engine()
    the real lifespan uses, so routes run the production object graph.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_engine(app, users, tenants, reports, scanner)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_env(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv with seeded tenants for API integration tests.

    Module-scoped: one TestClient per test module. Tests that count scans
    use their own agent or session IDs so they do not depend on order.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    users = UserStore(db_url=memory_url(f"auth_{suffix}"))
    tenants = TenantStore(db_url=memory_url(f"tenants_{suffix}"))
    reports = ReportStore(db_url=memory_url(f"reports_{suffix}"))
    scanner = FakeScanner()
    seed = seed_tenants(users, tenants)

    app.router.lifespan_context = _patch_lifespan(users, tenants, reports, scanner)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client=client, seed=seed, scanner=scanner, reports=reports, tenants=tenants, users=users)

    reports.close()
    tenants.close()
    users.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Rate-limit counters are process-global; start every test from zero."""
    limiter.reset()
