"""
Worklog - Manual entries

Adds work logs directly, without a timer. Either one duration
("7,5h", optionally with a start time) or a batch of weekday-prefixed
durations ("Mon:7,5h" "Tue:2h"), each dated to the most recent such day
at 08:00.

Also deletes work logs the current account owns.
"""

from __future__ import annotations

import logging
from datetime import datetime

from worklog.config import WorklogConfig
from worklog.duration import (
    DEFAULT_START_OF_DAY,
    calculate_started_time,
    last_weekday_from,
    now_local,
    parse_duration,
    parse_weekday_durations,
)
from worklog.exceptions import InputError, NotFoundError, ServerFaultError
from worklog.persistence.models import IssueKey, LocalWorklogEntry
from worklog.sync.reconciler import SyncReconciler
from worklog.tracker.client import TrackerClient
from worklog.tracker.models import RemoteWorklog, TimeTrackingConfiguration

logger = logging.getLogger(__name__)


class ManualEntryService:
    """
    Records work logs given as durations and deletes your own.

    Args:
        client: Tracker client
        reconciler: Used to cache the issue and mirror created work logs
        config: Fallback working hours when the tracker settings are unavailable
    """

    def __init__(
        self,
        client: TrackerClient,
        reconciler: SyncReconciler,
        config: WorklogConfig | None = None,
    ):
        self.client = client
        self.reconciler = reconciler
        self.config = config or WorklogConfig()

    async def time_tracking_options(self) -> TimeTrackingConfiguration:
        """Server time tracking settings, falling back to the local config."""
        try:
            return await self.client.get_time_tracking_options()
        except (NotFoundError, ServerFaultError) as e:
            logger.warning(f"Time tracking settings unavailable, using configured defaults: {e}")
            return TimeTrackingConfiguration(
                working_hours_per_day=self.config.working_hours_per_day,
                working_days_per_week=self.config.working_days_per_week,
            )

    async def add(
        self,
        issue_key: IssueKey | str,
        durations: list[str],
        started: datetime | None = None,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> list[LocalWorklogEntry]:
        """
        Record one or more work logs on an issue.

        Args:
            issue_key: Issue to log against
            durations: One plain duration, or weekday-prefixed durations
            started: Start of a single entry; defaults to now minus the duration
            comment: Comment for every created entry

        Returns:
            The cached copies of the created work logs

        Raises:
            InputError: If the durations cannot be interpreted
            StartAndDurationExceedsNowError: If an entry would end in the future
        """
        if not durations:
            raise InputError("Need at least one duration")

        key = issue_key if isinstance(issue_key, IssueKey) else IssueKey(issue_key)
        now = now or now_local()
        options = await self.time_tracking_options()
        await self.reconciler.ensure_issue(key)

        first = durations[0].strip()
        if len(durations) == 1 and first[:1].isdigit():
            planned = [(started, first)]
        elif first[:1].isalpha():
            if started is not None:
                raise InputError(
                    "A start time cannot be combined with weekday entries",
                    {"durations": durations},
                )
            planned = []
            for weekday, duration in parse_weekday_durations(durations):
                day = last_weekday_from(now, weekday).date()
                planned.append((datetime.combine(day, DEFAULT_START_OF_DAY).astimezone(), duration))
        else:
            raise InputError(
                f"Unable to parse the durations, did not understand: {durations[0]}",
                {"durations": durations},
            )

        # Validate everything before the first remote write
        entries = []
        for start, duration in planned:
            spent = parse_duration(duration, options.working_hours_per_day, options.working_days_per_week)
            entries.append((calculate_started_time(start, spent.time_spent_seconds, now), spent.time_spent_seconds))

        added: list[LocalWorklogEntry] = []
        for start, seconds in entries:
            remote = await self.client.insert_work_log(key, start, seconds, comment or "")
            added.append(await self.reconciler.mirror_remote_worklog(remote, key))
        logger.info(f"Added {len(added)} work logs to {key}")
        return added

    async def delete(self, issue_key: IssueKey | str, worklog_id: int) -> RemoteWorklog:
        """
        Remove one of your own work logs from the tracker and the local cache.

        Returns:
            The work log as the tracker held it before deletion

        Raises:
            NotFoundError: If the tracker has no such work log
            InputError: If the work log belongs to another account
        """
        key = issue_key if isinstance(issue_key, IssueKey) else IssueKey(issue_key)
        current_user = await self.client.get_current_user()
        remote = await self.client.get_worklog(key, worklog_id)

        if remote.author.account_id != current_user.account_id:
            raise InputError(
                f"You are not the owner of work log {worklog_id}",
                {"issue": key.value, "author": remote.author.display_name},
            )

        await self.client.delete_work_log(key, worklog_id)
        await self.reconciler.repository.remove_worklog_entry(worklog_id)
        logger.info(f"Deleted work log {worklog_id} from {key}")
        return remote
