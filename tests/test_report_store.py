"""
tests/test_report_store.py -- Unit tests for reports/store.py.

Covers:
  - ScanRecord round trip, recent-scan ordering and limit
  - (company_id, session_id) uniqueness; NULL sessions never collide
  - commit_ingestion: insert, version-checked update, conflicts
  - atomicity: a duplicate session rolls back the Report update
  - delete_report counts and scoping
  - driver errors surface as StorageError
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import ConcurrentUpdateError, DuplicateSessionError, StorageError
from core.models import Issue, IssuesSummary, Report, ScanMeta, ScanRecord, ScoreHistoryEntry
from reports.store import ReportStore


@pytest.fixture
def store():
    s = ReportStore(db_url=f"sqlite:///file:report_store_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


def _issue(n: int = 0) -> Issue:
    return Issue(
        id=f"i{n}",
        type="old_jquery",
        severity="medium",
        title="Vulnerable jQuery version",
        description="d",
        recommendation="r",
        detected_at="2024-03-01T12:00:00+00:00",
        details="jQuery 1.12.4",
    )


def _scan(scan_id: str, created_at: str = "2024-03-01T12:00:00+00:00", session_id=None, agent_id="a1") -> ScanRecord:
    return ScanRecord(
        scan_id=scan_id,
        company_id="c1",
        agent_id=agent_id,
        session_id=session_id,
        page_url=f"https://acme.test/{scan_id}",
        issues=[_issue()],
        meta=ScanMeta(protocol="https:", external_scripts=["ads.example"], cookie_total=4),
        created_at=created_at,
        score=92,
        grade="A",
    )


def _report(version: int = 0, score: int = 92) -> Report:
    return Report(
        report_id="r1",
        company_id="c1",
        agent_id="a1",
        score=score,
        grade="A",
        issues_summary=IssuesSummary(medium=1, total=1),
        latest_issues=[_issue()],
        scan_count=1,
        last_scan_at="2024-03-01T12:00:00+00:00",
        score_history=[ScoreHistoryEntry("2024-03-01", score, "A")],
        created_at="2024-03-01T12:00:00+00:00",
        updated_at="2024-03-01T12:00:00+00:00",
        version=version,
    )


class TestScanRecords:
    def test_put_and_find_by_session(self, store):
        store.put_scan(_scan("s-1", session_id="sess"))
        found = store.find_scan_by_session("c1", "sess")
        assert found.scan_id == "s-1"
        assert found.issues == [_issue()]
        assert found.meta.external_scripts == ["ads.example"]
        assert found.meta.cookie_total == 4
        assert (found.score, found.grade) == (92, "A")

    def test_find_unknown_session(self, store):
        assert store.find_scan_by_session("c1", "nope") is None

    def test_duplicate_session_rejected(self, store):
        store.put_scan(_scan("s-1", session_id="sess"))
        with pytest.raises(DuplicateSessionError) as info:
            store.put_scan(_scan("s-2", session_id="sess"))
        assert info.value.session_id == "sess"

    def test_null_sessions_never_collide(self, store):
        store.put_scan(_scan("s-1"))
        store.put_scan(_scan("s-2"))
        assert store.count_scans("c1", "a1") == 2

    def test_recent_scans_newest_first_and_limited(self, store):
        for n in range(7):
            store.put_scan(_scan(f"s-{n}", created_at=f"2024-03-0{n + 1}T00:00:00+00:00"))
        recent = store.list_recent_scans("c1", "a1", limit=5)
        assert [s.scan_id for s in recent] == ["s-6", "s-5", "s-4", "s-3", "s-2"]

    def test_recent_scans_scoped_to_agent(self, store):
        store.put_scan(_scan("s-1", agent_id="a1"))
        store.put_scan(_scan("s-2", agent_id="a2"))
        assert [s.scan_id for s in store.list_recent_scans("c1", "a2")] == ["s-2"]


class TestCommitIngestion:
    def test_insert_then_update(self, store):
        created = store.commit_ingestion(_report(), expected_version=0, scan=_scan("s-1"))
        assert created.version == 1
        stored = store.get_report("c1", "a1")
        assert stored.version == 1
        assert stored.score_history == [ScoreHistoryEntry("2024-03-01", 92, "A")]

        updated = store.commit_ingestion(replace(stored, score=50, scan_count=2), expected_version=1)
        assert updated.version == 2
        assert store.get_report("c1", "a1").score == 50

    def test_stale_version_conflicts(self, store):
        store.commit_ingestion(_report(), expected_version=0)
        store.commit_ingestion(replace(_report(), scan_count=2), expected_version=1)
        with pytest.raises(ConcurrentUpdateError):
            store.commit_ingestion(replace(_report(), scan_count=2), expected_version=1)

    def test_second_create_conflicts(self, store):
        store.commit_ingestion(_report(), expected_version=0)
        with pytest.raises(ConcurrentUpdateError):
            store.commit_ingestion(_report(), expected_version=0)

    def test_duplicate_session_rolls_back_report_update(self, store):
        store.commit_ingestion(_report(), expected_version=0, scan=_scan("s-1", session_id="sess"))
        with pytest.raises(DuplicateSessionError):
            store.commit_ingestion(
                replace(_report(), score=10, scan_count=2),
                expected_version=1,
                scan=_scan("s-2", session_id="sess"),
            )
        stored = store.get_report("c1", "a1")
        assert stored.score == 92
        assert stored.version == 1
        assert store.count_scans("c1", "a1") == 1


class TestDeleteReport:
    def test_deletes_report_and_scans(self, store):
        store.commit_ingestion(_report(), expected_version=0, scan=_scan("s-1"))
        store.put_scan(_scan("s-2"))
        assert store.delete_report("c1", "a1") == (1, 2)
        assert store.get_report("c1", "a1") is None
        assert store.list_recent_scans("c1", "a1") == []

    def test_idempotent(self, store):
        assert store.delete_report("c1", "a1") == (0, 0)

    def test_leaves_other_agents_alone(self, store):
        store.put_scan(_scan("s-1", agent_id="a2"))
        store.delete_report("c1", "a1")
        assert store.count_scans("c1", "a2") == 1


def test_driver_errors_become_storage_error(store):
    with patch.object(store, "engine") as engine:
        engine.connect.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        with pytest.raises(StorageError) as info:
            store.get_report("c1", "a1")
    assert info.value.retryable
