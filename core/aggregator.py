"""
aggregator.py — Merges one normalized ingestion into a tenant's living Report.

Pipeline per call:
  resolve tenant/agent -> normalize via catalog -> score/grade/summary
  -> read Report -> apply_ingestion() (pure) -> commit Report + ScanRecord atomically

apply_ingestion() holds every merge rule and touches no storage:
  - latest_issues / issues_summary / score / grade are replaced, never merged
  - score_history keeps one entry per UTC day; a same-day rescan overwrites
    that day's entry, a new day is inserted in date order and the oldest
    entry is evicted beyond HISTORY_MAX_ENTRIES
  - scan_count counts ingestions, so same-day rescans still increment it

Writers for one (company_id, agent_id) are serialized by a KeyedLock inside
the process and by the Report version check across processes. A version
conflict re-reads and recomputes; StorageError is retried with the same
input, which is safe because normalization and scoring are pure.
"""

import bisect
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from . import scoring
from .catalog import normalize_all
from .errors import ConcurrentUpdateError, DuplicateSessionError, NotFoundError, StorageError
from .locks import KeyedLock
from .models import (
    HISTORY_MAX_ENTRIES,
    IngestResult,
    Issue,
    IssuesSummary,
    RawIssue,
    Report,
    ScanContext,
    ScanRecord,
    ScoreHistoryEntry,
)

logger = logging.getLogger("siteposture.aggregator")

# Version conflicts are retried on their own counter, separate from
# max_attempts for storage failures.
_MAX_CONFLICT_RETRIES = 25


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_key(moment: datetime) -> str:
    """Return the UTC calendar day of a timestamp as YYYY-MM-DD. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date().isoformat()


def update_history(
    history: list[ScoreHistoryEntry], today: str, score: int, grade: str
) -> list[ScoreHistoryEntry]:
    """Return a new history with today's point set. The input list is not modified."""
    updated = list(history)
    entry = ScoreHistoryEntry(date=today, score=score, grade=grade)
    dates = [e.date for e in updated]
    idx = bisect.bisect_left(dates, today)
    if idx < len(updated) and updated[idx].date == today:
        updated[idx] = entry
        return updated
    updated.insert(idx, entry)
    while len(updated) > HISTORY_MAX_ENTRIES:
        updated.pop(0)
    return updated


def apply_ingestion(
    current: Optional[Report],
    *,
    company_id: str,
    agent_id: str,
    score: int,
    grade: str,
    summary: IssuesSummary,
    issues: list[Issue],
    timestamp: str,
    today: str,
) -> Report:
    """Return the Report as it should be after this ingestion.

    current=None creates the Report. The returned object keeps current's
    version so the store can check it on write.
    """
    if current is None:
        return Report(
            report_id=str(uuid.uuid4()),
            company_id=company_id,
            agent_id=agent_id,
            score=score,
            grade=grade,
            issues_summary=summary,
            latest_issues=list(issues),
            scan_count=1,
            last_scan_at=timestamp,
            score_history=[ScoreHistoryEntry(date=today, score=score, grade=grade)],
            created_at=timestamp,
            updated_at=timestamp,
            version=0,
        )
    return Report(
        report_id=current.report_id,
        company_id=current.company_id,
        agent_id=current.agent_id,
        score=score,
        grade=grade,
        issues_summary=summary,
        latest_issues=list(issues),
        scan_count=current.scan_count + 1,
        last_scan_at=timestamp,
        score_history=update_history(current.score_history, today, score, grade),
        created_at=current.created_at,
        updated_at=timestamp,
        version=current.version,
    )


class ReportAggregator:
    """Stateful core: one instance per process, shared by both gateways.

    store   -- reports.store.ReportStore (or anything with get_report / commit_ingestion)
    tenants -- tenants.store.TenantStore (or anything with resolve_agent)
    clock   -- returns the ingestion time; injectable for tests
    """

    def __init__(
        self,
        store,
        tenants,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
    ) -> None:
        self._store = store
        self._tenants = tenants
        self._clock = clock
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._locks = KeyedLock()

    def ingest(
        self,
        company_id: str,
        agent_id: str,
        raw_issues: list[RawIssue],
        scan: Optional[ScanContext] = None,
    ) -> IngestResult:
        """Normalize, score, and merge one issue batch into the tenant/agent Report.

        Raises:
            NotFoundError: company_id/agent_id do not resolve to an existing agent.
            DuplicateSessionError: scan.session_id is already recorded; nothing written.
            StorageError: persistence kept failing after retries; nothing written.
        """
        if self._tenants.resolve_agent(company_id, agent_id) is None:
            raise NotFoundError("Agent not found.", detail=f"{company_id}/{agent_id}")

        context = scan or ScanContext(page_url="")
        moment = self._clock()
        timestamp = moment.isoformat()
        today = day_key(moment)

        issues = normalize_all(raw_issues, timestamp)
        value = scoring.score(issues)
        letter = scoring.grade(value)
        summary = scoring.summarize(issues)

        record = ScanRecord(
            scan_id=str(uuid.uuid4()),
            company_id=company_id,
            agent_id=agent_id,
            session_id=context.session_id,
            source=context.source,
            page_url=context.page_url,
            issues=issues,
            meta=context.meta,
            user_agent=context.user_agent,
            score=value,
            grade=letter,
            created_at=timestamp,
        )

        with self._locks.hold((company_id, agent_id)):
            saved = self._commit_with_retry(record, value, letter, summary, issues, timestamp, today)

        logger.info(
            "Ingested %d issue(s) for %s/%s (%s): score=%d grade=%s scan_count=%d",
            len(issues),
            company_id,
            agent_id,
            context.source,
            value,
            letter,
            saved.scan_count,
        )
        return IngestResult(
            scan_id=record.scan_id,
            score=value,
            grade=letter,
            issue_count=len(issues),
            issues_summary=summary,
            issues=issues,
            scanned_at=timestamp,
        )

    def _commit_with_retry(
        self,
        record: ScanRecord,
        value: int,
        letter: str,
        summary: IssuesSummary,
        issues: list[Issue],
        timestamp: str,
        today: str,
    ) -> Report:
        failures = 0
        conflicts = 0
        while True:
            try:
                current = self._store.get_report(record.company_id, record.agent_id)
                updated = apply_ingestion(
                    current,
                    company_id=record.company_id,
                    agent_id=record.agent_id,
                    score=value,
                    grade=letter,
                    summary=summary,
                    issues=issues,
                    timestamp=timestamp,
                    today=today,
                )
                return self._store.commit_ingestion(updated, current.version if current else 0, record)
            except DuplicateSessionError:
                raise
            except ConcurrentUpdateError:
                conflicts += 1
                if conflicts >= _MAX_CONFLICT_RETRIES:
                    raise
                logger.info(
                    "Report %s/%s changed concurrently; recomputing (attempt %d)",
                    record.company_id,
                    record.agent_id,
                    conflicts + 1,
                )
            except StorageError:
                failures += 1
                if failures >= self._max_attempts:
                    logger.error(
                        "Giving up on %s/%s after %d storage failure(s)",
                        record.company_id,
                        record.agent_id,
                        failures,
                    )
                    raise
                logger.warning(
                    "Storage failure for %s/%s; retrying (%d/%d)",
                    record.company_id,
                    record.agent_id,
                    failures + 1,
                    self._max_attempts,
                )
                time.sleep(self._backoff * failures)
