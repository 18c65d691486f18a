"""
Sync reconciler.

Pulls work logs for a set of issues from the tracker and mirrors them into
the local cache. The tracker is authoritative: every fetched record replaces
its local copy by delete-then-insert, so re-running a sync over the same
window leaves the cache unchanged.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from worklog.duration import now_local
from worklog.exceptions import (
    IssueNotFoundError,
    NothingToSyncError,
    NotFoundError,
    ServerFaultError,
    StorageError,
    SyncError,
)
from worklog.logging import SyncLogEntry, now_iso, sync_logger
from worklog.persistence.models import IssueKey, IssueSummary, LocalWorklogEntry
from worklog.persistence.repository import WorklogRepository
from worklog.tracker.client import TrackerClient
from worklog.tracker.models import RemoteWorklog

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=30)


@dataclass
class SyncScope:
    """What a sync run should cover."""

    issues: list[str] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    started_after: datetime | None = None
    all_users: bool = False

    def effective_start(self, now: datetime | None = None) -> datetime:
        """The lower bound for work logs, 30 days back unless given."""
        if self.started_after is not None:
            return self.started_after
        return (now or now_local()) - DEFAULT_LOOKBACK


@dataclass
class SyncReport:
    """Outcome of one sync run."""

    issues: list[IssueSummary] = field(default_factory=list)
    started_after: datetime | None = None
    worklogs_fetched: int = 0
    worklogs_stored: int = 0
    failures: dict[str, Exception] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def complete(self) -> bool:
        return not self.failures


class SyncReconciler:
    """
    Reconciles the local cache with the tracker.

    Args:
        client: Tracker client used for all remote calls
        repository: Local cache to write into
    """

    def __init__(self, client: TrackerClient, repository: WorklogRepository):
        self.client = client
        self.repository = repository

    async def sync(
        self,
        started_after: datetime | None = None,
        issues: list[str] | None = None,
        projects: list[str] | None = None,
        all_users: bool = False,
    ) -> SyncReport:
        """Shorthand for ``reconcile`` with a scope built from keyword arguments."""
        return await self.reconcile(
            SyncScope(
                issues=list(issues or []),
                projects=list(projects or []),
                started_after=started_after,
                all_users=all_users,
            )
        )

    async def reconcile(self, scope: SyncScope) -> SyncReport:
        """
        Run one sync.

        Steps:
            1. Fetch and store the current user
            2. Resolve the issues to sync (keys, projects, or locally known keys)
            3. Fetch their work logs with bounded concurrency
            4. Keep only the current user's entries unless ``all_users``
            5. Upsert issue summaries, then replace each work log locally

        Raises:
            NothingToSyncError: If no issues could be resolved
            SyncError: If a work log could not be stored
        """
        run_id = str(uuid.uuid4())
        start = time.monotonic()
        started_after = scope.effective_start()

        sync_logger.info(
            SyncLogEntry(
                timestamp=now_iso(),
                run_id=run_id,
                event_type="start",
                issues=list(scope.issues),
                projects=list(scope.projects),
                started_after=started_after.isoformat(),
                all_users=scope.all_users,
            ).to_json()
        )

        try:
            report = await self._reconcile(scope, started_after)
        except Exception as e:
            sync_logger.error(
                SyncLogEntry(
                    timestamp=now_iso(),
                    run_id=run_id,
                    event_type="error",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_seconds=round(time.monotonic() - start, 3),
                ).to_json()
            )
            raise

        for key, error in sorted(report.failures.items()):
            sync_logger.warning(
                SyncLogEntry(
                    timestamp=now_iso(),
                    run_id=run_id,
                    event_type="issue_failed",
                    issues=[key],
                    error=str(error),
                    error_type=type(error).__name__,
                ).to_json()
            )

        report.duration_seconds = round(time.monotonic() - start, 3)
        sync_logger.info(
            SyncLogEntry(
                timestamp=now_iso(),
                run_id=run_id,
                event_type="end",
                issues=[issue.key.value for issue in report.issues],
                worklogs_fetched=report.worklogs_fetched,
                worklogs_stored=report.worklogs_stored,
                failed_issues=sorted(report.failures),
                duration_seconds=report.duration_seconds,
            ).to_json()
        )
        return report

    async def _reconcile(self, scope: SyncScope, started_after: datetime) -> SyncReport:
        current_user = await self.client.get_current_user()
        await self.repository.upsert_user(current_user)

        issues = await self.resolve_issues(scope)
        if not issues:
            raise NothingToSyncError(
                "No issue keys to synchronise supplied or found in the local database",
                {"issues": scope.issues, "projects": scope.projects},
            )

        logger.info(f"Synchronising work logs for {len(issues)} issues since {started_after.isoformat()}")
        fetched = await self.client.chunked_work_logs([issue.key for issue in issues], started_after)

        worklogs = fetched.worklogs
        if not scope.all_users:
            worklogs = [wl for wl in worklogs if wl.author.account_id == current_user.account_id]
            logger.info(f"Kept {len(worklogs)} of {len(fetched.worklogs)} work logs for {current_user.display_name}")

        # Work log rows reference issue rows, so issues go first
        await self.repository.add_issue_summaries(issues)

        keys_by_id = {issue.id: issue.key for issue in issues}
        stored = 0
        for remote in worklogs:
            issue_key = keys_by_id.get(remote.issue_id)
            if issue_key is None:
                logger.warning(f"Work log {remote.id} belongs to unknown issue id {remote.issue_id}, skipped")
                continue
            await self.mirror_remote_worklog(remote, issue_key)
            stored += 1

        return SyncReport(
            issues=issues,
            started_after=started_after,
            worklogs_fetched=len(fetched.worklogs),
            worklogs_stored=stored,
            failures=dict(fetched.failures),
        )

    async def resolve_issues(self, scope: SyncScope) -> list[IssueSummary]:
        """
        Turn the scope into issue summaries, sorted by key without duplicates.

        With neither keys nor projects, every issue key that already has
        cached work logs is synced again.
        """
        keys = [IssueKey(k) for k in scope.issues]
        if not keys and not scope.projects:
            keys = await self.repository.find_unique_issue_keys()
            logger.debug(f"No issues or projects given, using {len(keys)} locally known keys")

        summaries = await self.client.search_issues(scope.projects, keys, scope.all_users)

        unique: dict[IssueKey, IssueSummary] = {}
        for summary in summaries:
            unique.setdefault(summary.key, summary)
        return [unique[key] for key in sorted(unique)]

    async def mirror_remote_worklog(
        self,
        remote: RemoteWorklog,
        issue_key: IssueKey | str,
    ) -> LocalWorklogEntry:
        """
        Replace the local copy of one remote work log.

        The owning issue must already be cached.

        Raises:
            SyncError: If the insert is rejected
        """
        entry = remote.to_local(issue_key)
        await self.repository.remove_worklog_entry(entry.id)
        try:
            await self.repository.add_worklog_entries([entry])
        except StorageError as e:
            logger.error(f"Insert into database failed for work log {entry.id} on {entry.issue_key}: {e}")
            raise SyncError(
                f"Unable to store work log {entry.id} for {entry.issue_key}",
                {"worklog_id": entry.id, "issue_key": entry.issue_key.value, "error": e.message},
            ) from e
        return entry

    async def ensure_issue(self, issue_key: IssueKey | str) -> IssueSummary:
        """
        Return the cached issue, fetching and caching it from the tracker if needed.

        Raises:
            IssueNotFoundError: If the tracker does not know the key either
        """
        key = issue_key if isinstance(issue_key, IssueKey) else IssueKey(issue_key)
        cached = await self.repository.find_issue(key)
        if cached is not None:
            return cached

        try:
            found = await self.client.search_issues([], [key], all_users=True)
        except NotFoundError:
            found = []
        except ServerFaultError as e:
            # JQL rejects unknown keys with 400
            if e.code != 400:
                raise
            found = []

        match = next((issue for issue in found if issue.key == key), None)
        if match is None:
            raise IssueNotFoundError(f"Issue {key} not found", issue_key=key.value)

        await self.repository.add_issue_summaries([match])
        logger.info(f"Cached issue {match.key} ({match.summary})")
        return match
