"""
Worklog - Timer Engine

Records work locally with one running timer at a time, then submits
finished timers to the tracker as work logs.

State transitions:
ABSENT -> ACTIVE (start)
ACTIVE -> STOPPED_UNSYNCED (stop)
ACTIVE -> ABSENT (discard)
STOPPED_UNSYNCED -> STOPPED_SYNCED (sync)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from worklog.duration import now_local
from worklog.exceptions import (
    NoActiveTimerError,
    StateTransitionError,
    TimerDurationError,
    TimerNotFoundError,
)
from worklog.persistence.models import IssueKey, Timer, TimerState
from worklog.persistence.repository import WorklogRepository
from worklog.sync.reconciler import SyncReconciler
from worklog.tracker.client import TrackerClient

logger = logging.getLogger(__name__)

# The tracker refuses work logs shorter than a minute
MIN_TIMER_SECONDS = 60
SYNC_LOOKBACK = timedelta(days=30)


VALID_TRANSITIONS: dict[TimerState, set[TimerState]] = {
    TimerState.ABSENT: {TimerState.ACTIVE},
    TimerState.ACTIVE: {TimerState.STOPPED_UNSYNCED, TimerState.ABSENT},
    TimerState.STOPPED_UNSYNCED: {TimerState.STOPPED_SYNCED},
    TimerState.STOPPED_SYNCED: set(),  # Terminal state
}


def can_transition(from_state: TimerState, to_state: TimerState) -> bool:
    """Check if moving from ``from_state`` to ``to_state`` is allowed."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def require_transition(from_state: TimerState, to_state: TimerState) -> None:
    """
    Validate a timer state transition.

    Raises:
        StateTransitionError: If the transition is not valid
    """
    if not can_transition(from_state, to_state):
        valid_targets = VALID_TRANSITIONS.get(from_state, set())
        valid_names = ", ".join(sorted(s.name for s in valid_targets)) or "none"
        raise StateTransitionError(
            f"Invalid timer transition: {from_state.name} -> {to_state.name}. "
            f"Valid transitions from {from_state.name}: {valid_names}",
            from_state=from_state.name,
            to_state=to_state.name,
        )


class TimerEngine:
    """
    Start, stop, discard and submit timers.

    Args:
        client: Tracker client used when submitting timers
        repository: Local cache holding the timers
        reconciler: Shared reconciler, for issue lookup and mirroring
            submitted work logs into the cache
    """

    def __init__(
        self,
        client: TrackerClient,
        repository: WorklogRepository,
        reconciler: SyncReconciler,
    ):
        self.client = client
        self.repository = repository
        self.reconciler = reconciler

    async def active(self) -> Timer | None:
        """The running timer, if any."""
        return await self.repository.find_active_timer()

    async def start(
        self,
        issue_key: IssueKey | str,
        comment: str | None = None,
        started_at: datetime | None = None,
    ) -> Timer:
        """
        Start a timer on an issue.

        Raises:
            IssueNotFoundError: If the issue is unknown locally and remotely
            ActiveTimerExistsError: If another timer is running
        """
        issue = await self.reconciler.ensure_issue(issue_key)

        now = now_local()
        timer = Timer(
            issue_key=issue.key,
            created_at=now,
            started_at=started_at or now,
            comment=comment,
        )
        return await self.repository.start_timer(timer)

    async def stop(
        self,
        stop_time: datetime | None = None,
        comment: str | None = None,
    ) -> Timer:
        """
        Stop the running timer.

        Raises:
            NoActiveTimerError: If no timer is running
            TimerDurationError: If the timer ran for less than a minute
        """
        timer = await self.repository.find_active_timer()
        if timer is None:
            raise NoActiveTimerError("No timer is running")
        require_transition(timer.state, TimerState.STOPPED_UNSYNCED)

        end = stop_time or now_local()
        elapsed = (end - timer.started_at).total_seconds()
        if elapsed < MIN_TIMER_SECONDS:
            raise TimerDurationError(
                f"Timer ran for {int(elapsed)}s, the minimum is {MIN_TIMER_SECONDS}s",
                {"timer_id": timer.id, "seconds": int(elapsed)},
            )

        return await self.repository.stop_active_timer(end, comment)

    async def discard(self) -> Timer:
        """
        Throw away the running timer; nothing is sent to the tracker.

        Raises:
            NoActiveTimerError: If no timer is running
        """
        timer = await self.repository.find_active_timer()
        if timer is None:
            raise NoActiveTimerError("No timer is running")
        require_transition(timer.state, TimerState.ABSENT)
        return await self.repository.discard_active_timer()

    async def sync_to_jira(self) -> list[Timer]:
        """
        Submit every stopped, unsynced timer from the last 30 days.

        Each timer becomes a remote work log, is flagged as synced and then
        mirrored into the local cache. Timers without a positive duration
        are skipped. The first failure propagates and stops the run.

        Returns:
            The timers that were submitted
        """
        since = now_local() - SYNC_LOOKBACK
        pending = [
            timer
            for timer in await self.repository.find_timers_since(since)
            if timer.state is TimerState.STOPPED_UNSYNCED
        ]
        logger.debug(f"Found {len(pending)} unsynced timers")

        synced: list[Timer] = []
        for timer in pending:
            seconds = timer.duration_seconds
            if seconds <= 0:
                logger.warning(f"Skipping timer {timer.id} on {timer.issue_key}: duration {seconds}s")
                continue

            require_transition(timer.state, TimerState.STOPPED_SYNCED)
            await self.reconciler.ensure_issue(timer.issue_key)
            remote = await self.client.insert_work_log(
                timer.issue_key,
                timer.started_at,
                seconds,
                timer.comment or "",
            )
            # Synced as soon as the tracker holds the work log
            timer.synced = True
            await self.repository.update_timer(timer)
            await self.reconciler.mirror_remote_worklog(remote, timer.issue_key)

            synced.append(timer)
            logger.info(f"Synced timer {timer.id} on {timer.issue_key} as work log {remote.id}")

        return synced

    async def total_time_for_issue(self, issue_key: IssueKey | str) -> timedelta:
        """Sum of all timers recorded on an issue, a running timer counted up to now."""
        timers = await self.repository.find_timers_for_issue(issue_key)
        return sum((timer.duration for timer in timers), timedelta())

    async def update_comment(self, timer_id: int, comment: str | None) -> Timer:
        """
        Replace the comment of a timer that has not been submitted yet.

        Raises:
            TimerNotFoundError: If the timer does not exist
            StateTransitionError: If the timer was already synced
        """
        timer = await self.repository.find_timer(timer_id)
        if timer is None:
            raise TimerNotFoundError(f"Timer {timer_id} not found", timer_id=timer_id)
        if timer.state is TimerState.STOPPED_SYNCED:
            raise StateTransitionError(
                f"Timer {timer_id} has already been synced",
                from_state=timer.state.name,
                to_state=timer.state.name,
            )
        timer.comment = comment
        return await self.repository.update_timer(timer)
