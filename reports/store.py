"""
reports/store.py -- SQLAlchemy-backed persistence for Reports and ScanRecords.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py remain the
authoritative domain representation. Nested values (issue lists, score
history, page meta) are stored as JSON text, like tags in the tenant store.

Pattern: Repository + Data Mapper. ReportStore is the repository; the
_row_to_* functions are the mappers. Callers never touch SQL directly.

Write model:
  ScanRecords are append-only. The only uniqueness rule is at most one record
  per (company_id, session_id); active scans carry a NULL session and never
  collide.

  Reports are updated with an optimistic version check. commit_ingestion()
  writes the Report and the ScanRecord in ONE transaction: a version conflict
  or a duplicate session rolls back both, so a ScanRecord never exists
  without its Report update.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ReportStore()                               # SQLite default
    store = ReportStore("postgresql://user:pw@host/db") # PostgreSQL
    report = store.get_report("c1", "a1")
    store.commit_ingestion(updated, expected_version=report.version, scan=record)
    store.list_recent_scans("c1", "a1", limit=5)
    store.close()
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, replace
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import ConcurrentUpdateError, DuplicateSessionError, StorageError
from core.models import Issue, IssuesSummary, Report, ScanMeta, ScanRecord, ScoreHistoryEntry

logger = logging.getLogger("siteposture.reports")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'siteposture_reports.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_reports = Table(
    "security_reports",
    metadata,
    Column("report_id", String(64), primary_key=True),
    Column("company_id", String(64), nullable=False),
    Column("agent_id", String(64), nullable=False),
    Column("score", Integer, nullable=False),
    Column("grade", String(1), nullable=False),
    Column("issues_summary", Text, nullable=False),  # JSON object
    Column("latest_issues", Text, nullable=False),  # JSON array
    Column("scan_count", Integer, nullable=False, server_default="0"),
    Column("last_scan_at", String(32), nullable=False),
    Column("score_history", Text, nullable=False),  # JSON array, oldest first
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="1"),
    UniqueConstraint("company_id", "agent_id", name="uq_report_tenant_agent"),
)

_scans = Table(
    "security_scans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scan_id", String(64), nullable=False, unique=True),
    Column("company_id", String(64), nullable=False),
    Column("agent_id", String(64), nullable=False),
    Column("session_id", String(128)),  # NULL for active scans
    Column("source", String(16), nullable=False, server_default="passive"),
    Column("page_url", Text, nullable=False),
    Column("issues", Text, nullable=False),  # JSON array
    Column("issue_count", Integer, nullable=False, server_default="0"),
    Column("meta", Text),  # JSON object
    Column("user_agent", Text),
    Column("score", Integer),
    Column("grade", String(1)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("company_id", "session_id", name="uq_scan_session"),
    Index("ix_scans_tenant_created", "company_id", "agent_id", "created_at"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by an ingestion in progress."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver-level failures into the engine's StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageError(f"Storage failure during {operation}.", detail=exc.__class__.__name__) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ReportStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Route handlers run on a thread pool; the same pooled connection
            # may be used from different threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Scan records
    # ------------------------------------------------------------------

    def put_scan(self, scan: ScanRecord) -> str:
        """Insert a ScanRecord and return its scan_id.

        Raises DuplicateSessionError if a record already exists for
        (company_id, session_id), StorageError on any other database failure.
        """
        with _storage_errors("put_scan"):
            with self.engine.begin() as conn:
                self._insert_scan(conn, scan)
        return scan.scan_id

    def find_scan_by_session(self, company_id: str, session_id: str) -> Optional[ScanRecord]:
        with _storage_errors("find_scan_by_session"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _scans.select().where((_scans.c.company_id == company_id) & (_scans.c.session_id == session_id))
                ).fetchone()
        return _row_to_scan(row) if row is not None else None

    def list_recent_scans(self, company_id: str, agent_id: str, limit: int = 5) -> list[ScanRecord]:
        """Return the newest ScanRecords for a tenant/agent, newest first."""
        with _storage_errors("list_recent_scans"):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _scans.select()
                    .where((_scans.c.company_id == company_id) & (_scans.c.agent_id == agent_id))
                    .order_by(_scans.c.created_at.desc(), _scans.c.id.desc())
                    .limit(limit)
                ).fetchall()
        return [_row_to_scan(r) for r in rows]

    def count_scans(self, company_id: str, agent_id: str) -> int:
        with _storage_errors("count_scans"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    select(func.count())
                    .select_from(_scans)
                    .where((_scans.c.company_id == company_id) & (_scans.c.agent_id == agent_id))
                ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_report(self, company_id: str, agent_id: str) -> Optional[Report]:
        with _storage_errors("get_report"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _reports.select().where((_reports.c.company_id == company_id) & (_reports.c.agent_id == agent_id))
                ).fetchone()
        return _row_to_report(row) if row is not None else None

    def commit_ingestion(self, report: Report, expected_version: int, scan: Optional[ScanRecord] = None) -> Report:
        """Write the Report and (optionally) its ScanRecord in a single transaction.

        expected_version is the version the caller read: 0 means "no report
        existed", so the row is inserted; otherwise the update only applies if
        the stored version still matches.

        Raises:
            ConcurrentUpdateError: another writer got there first. Nothing was written.
            DuplicateSessionError: the scan's session is already recorded. Nothing was written.
            StorageError: any other database failure. Nothing was written.

        Returns the report with its new version.
        """
        new_version = expected_version + 1
        with _storage_errors("commit_ingestion"):
            with self.engine.begin() as conn:
                if expected_version == 0:
                    try:
                        conn.execute(_reports.insert().values(**_report_values(report), version=new_version))
                    except IntegrityError as exc:
                        raise ConcurrentUpdateError(
                            f"Report for {report.company_id}/{report.agent_id} was created concurrently."
                        ) from exc
                else:
                    values = _report_values(report)
                    # Identity columns are fixed at creation.
                    for key in ("report_id", "company_id", "agent_id", "created_at"):
                        values.pop(key)
                    result = conn.execute(
                        _reports.update()
                        .where(
                            (_reports.c.company_id == report.company_id)
                            & (_reports.c.agent_id == report.agent_id)
                            & (_reports.c.version == expected_version)
                        )
                        .values(**values, version=new_version)
                    )
                    if result.rowcount == 0:
                        raise ConcurrentUpdateError(
                            f"Report for {report.company_id}/{report.agent_id} changed since version {expected_version}."
                        )
                if scan is not None:
                    self._insert_scan(conn, scan)
        return replace(report, version=new_version)

    def delete_report(self, company_id: str, agent_id: str) -> tuple[int, int]:
        """Hard-delete the Report and every ScanRecord for a tenant/agent.

        Irreversible. Returns (reports_deleted, scans_deleted).
        """
        with _storage_errors("delete_report"):
            with self.engine.begin() as conn:
                reports = conn.execute(
                    _reports.delete().where((_reports.c.company_id == company_id) & (_reports.c.agent_id == agent_id))
                )
                scans = conn.execute(
                    _scans.delete().where((_scans.c.company_id == company_id) & (_scans.c.agent_id == agent_id))
                )
        return reports.rowcount, scans.rowcount

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_scan(conn: Connection, scan: ScanRecord) -> None:
        try:
            conn.execute(
                _scans.insert().values(
                    scan_id=scan.scan_id,
                    company_id=scan.company_id,
                    agent_id=scan.agent_id,
                    session_id=scan.session_id,
                    source=scan.source,
                    page_url=scan.page_url,
                    issues=json.dumps([asdict(i) for i in scan.issues]),
                    issue_count=len(scan.issues),
                    meta=json.dumps(asdict(scan.meta)),
                    user_agent=scan.user_agent,
                    score=scan.score,
                    grade=scan.grade,
                    created_at=scan.created_at,
                )
            )
        except IntegrityError as exc:
            if scan.session_id is None:
                raise
            raise DuplicateSessionError(scan.company_id, scan.session_id) from exc


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row <-> domain dataclass)
# ---------------------------------------------------------------------------


def _report_values(report: Report) -> dict:
    return {
        "report_id": report.report_id,
        "company_id": report.company_id,
        "agent_id": report.agent_id,
        "score": report.score,
        "grade": report.grade,
        "issues_summary": json.dumps(asdict(report.issues_summary)),
        "latest_issues": json.dumps([asdict(i) for i in report.latest_issues]),
        "scan_count": report.scan_count,
        "last_scan_at": report.last_scan_at,
        "score_history": json.dumps([asdict(e) for e in report.score_history]),
        "created_at": report.created_at,
        "updated_at": report.updated_at,
    }


def _issues_from_json(raw: Optional[str]) -> list[Issue]:
    return [Issue(**item) for item in json.loads(raw)] if raw else []


def _row_to_report(row) -> Report:
    return Report(
        report_id=row.report_id,
        company_id=row.company_id,
        agent_id=row.agent_id,
        score=row.score,
        grade=row.grade,
        issues_summary=IssuesSummary(**json.loads(row.issues_summary)),
        latest_issues=_issues_from_json(row.latest_issues),
        scan_count=row.scan_count,
        last_scan_at=row.last_scan_at,
        score_history=[ScoreHistoryEntry(**e) for e in json.loads(row.score_history)],
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _row_to_scan(row) -> ScanRecord:
    meta = ScanMeta(**json.loads(row.meta)) if row.meta else ScanMeta()
    return ScanRecord(
        scan_id=row.scan_id,
        company_id=row.company_id,
        agent_id=row.agent_id,
        session_id=row.session_id,
        source=row.source,
        page_url=row.page_url,
        issues=_issues_from_json(row.issues),
        meta=meta,
        user_agent=row.user_agent or "unknown",
        score=row.score,
        grade=row.grade,
        created_at=row.created_at,
    )
