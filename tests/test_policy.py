"""
tests/test_policy.py -- Unit tests for tenants/policy.py and core/locks.py.
"""

from __future__ import annotations

import threading
import time

import pytest

from auth.models import User
from core.locks import KeyedLock
from tenants.models import Agent, Company
from tenants.policy import RoleAccessPolicy

COMPANY = Company(company_id="acme", name="Acme", owner_user_id=1)
AGENT = Agent(agent_id="acme-web", company_id="acme", shared_with=[3])

OWNER = User(username="owner", role="operator", id=1)
ADMIN = User(username="admin", role="admin", id=2)
SHARED = User(username="shared", role="member", id=3)
STRANGER = User(username="stranger", role="member", id=4)


@pytest.fixture
def policy():
    return RoleAccessPolicy()


class TestRoleAccessPolicy:
    def test_ingest_needs_privileged_active_owner(self, policy):
        assert policy.can_ingest(COMPANY, OWNER)
        assert not policy.can_ingest(COMPANY, STRANGER)
        assert not policy.can_ingest(COMPANY, None)
        assert not policy.can_ingest(COMPANY, User(username="o", role="operator", id=1, is_active=False))

    def test_scan_needs_privileged_role(self, policy):
        assert policy.can_scan(OWNER, COMPANY, AGENT)
        assert policy.can_scan(ADMIN, COMPANY, AGENT)
        assert not policy.can_scan(SHARED, COMPANY, AGENT)

    @pytest.mark.parametrize("user,allowed", [(OWNER, True), (ADMIN, True), (SHARED, True), (STRANGER, False)])
    def test_view(self, policy, user, allowed):
        assert policy.can_view(user, COMPANY, AGENT) is allowed

    def test_inactive_user_cannot_view(self, policy):
        assert not policy.can_view(User(username="a", role="admin", id=9, is_active=False), COMPANY, AGENT)

    @pytest.mark.parametrize("user,allowed", [(OWNER, True), (ADMIN, False), (SHARED, False), (STRANGER, False)])
    def test_reset_owner_only(self, policy, user, allowed):
        assert policy.can_reset(user, COMPANY, AGENT) is allowed

    def test_custom_privileged_roles(self):
        policy = RoleAccessPolicy(["auditor"])
        assert policy.can_scan(User(username="x", role="auditor", id=5), COMPANY, AGENT)
        assert not policy.can_scan(ADMIN, COMPANY, AGENT)


class TestKeyedLock:
    def test_same_key_serializes(self):
        locks = KeyedLock()
        active = []
        overlaps = []

        def worker():
            with locks.hold(("acme", "web")):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered = threading.Event()

        def other():
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=2)
            t.join()

    def test_entries_released(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_released_on_exception(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        assert len(locks) == 0
        with locks.hold("a"):
            pass
