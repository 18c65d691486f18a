"""Tests for the SQLite repository."""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from worklog.exceptions import (
    ActiveTimerExistsError,
    InvalidIssueKeyError,
    NoActiveTimerError,
    StorageError,
    TimerDurationError,
    TimerNotFoundError,
)
from worklog.persistence import (
    Component,
    IssueKey,
    IssueSummary,
    LocalWorklogEntry,
    Timer,
    TimerState,
    User,
    WorklogRepository,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc).astimezone()


def issue(issue_id: int = 1, key: str = "TIME-1", summary: str = "Timekeeping", components=()) -> IssueSummary:
    return IssueSummary(id=issue_id, key=IssueKey(key), summary=summary, components=list(components))


def entry(worklog_id: int, issue_id: int = 1, key: str = "TIME-1", started=NOW, author="Me", seconds=3600):
    return LocalWorklogEntry(
        id=worklog_id,
        issue_key=key,
        issue_id=issue_id,
        author=author,
        created=started,
        updated=started,
        started=started,
        duration_seconds=seconds,
        comment="work",
    )


class TestIssueKey:
    """Tests for the IssueKey value object."""

    def test_normalizes_case_and_whitespace(self):
        assert IssueKey("  time-147 ") == IssueKey("TIME-147")
        assert str(IssueKey("time-147")) == "TIME-147"

    def test_empty_rejected(self):
        with pytest.raises(InvalidIssueKeyError):
            IssueKey("   ")

    def test_sortable_and_hashable(self):
        keys = {IssueKey("b-1"), IssueKey("A-1"), IssueKey("a-1")}
        assert sorted(keys) == [IssueKey("A-1"), IssueKey("B-1")]


class TestRepositoryLifecycle:
    """Tests for schema setup."""

    def test_initialize_is_idempotent(self, tmp_path):
        repo = WorklogRepository(tmp_path / "sub" / "db.sqlite")
        repo.initialize()
        repo.initialize()
        repo.close()

        with WorklogRepository(tmp_path / "sub" / "db.sqlite") as again:
            assert again.conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


class TestIssues:
    """Tests for issue and component storage."""

    @pytest.mark.asyncio
    async def test_upsert_refreshes_summary_and_components(self, repository):
        await repository.add_issue_summaries([issue(components=[Component(10, "Backend")])])
        await repository.add_issue_summaries(
            [issue(summary="Renamed", components=[Component(10, "Core"), Component(11, "API")])]
        )

        stored = await repository.find_issue("time-1")
        assert stored.summary == "Renamed"
        assert stored.components == [Component(11, "API"), Component(10, "Core")]

    @pytest.mark.asyncio
    async def test_upsert_drops_components_gone_remotely(self, repository):
        await repository.add_issue_summaries([issue(components=[Component(10, "Core"), Component(11, "API")])])
        await repository.add_issue_summaries([issue(components=[Component(11, "API")])])

        stored = await repository.find_issue("TIME-1")
        assert stored.components == [Component(11, "API")]

        await repository.add_issue_summaries([issue(components=[])])
        assert (await repository.find_issue("TIME-1")).components == []

    @pytest.mark.asyncio
    async def test_find_issue_missing(self, repository):
        assert await repository.find_issue("NOPE-1") is None

    @pytest.mark.asyncio
    async def test_find_issues_by_keys(self, repository):
        await repository.add_issue_summaries([issue(1, "B-1"), issue(2, "A-1"), issue(3, "C-1")])
        found = await repository.find_issues(["c-1", "A-1", "X-9"])
        assert [i.key.value for i in found] == ["A-1", "C-1"]


class TestWorklogs:
    """Tests for work log storage."""

    @pytest.mark.asyncio
    async def test_insert_requires_existing_issue(self, repository):
        """A work log pointing at an unknown issue id is rejected."""
        with pytest.raises(StorageError):
            await repository.add_worklog_entries([entry(100, issue_id=999)])
        assert await repository.count_worklogs() == 0

    @pytest.mark.asyncio
    async def test_duplicate_id_rolls_back_batch(self, repository):
        await repository.add_issue_summaries([issue()])
        await repository.add_worklog_entries([entry(100)])

        with pytest.raises(StorageError):
            await repository.add_worklog_entries([entry(101), entry(100)])
        assert await repository.count_worklogs() == 1

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, repository):
        await repository.add_issue_summaries([issue()])
        await repository.add_worklog_entries([entry(100)])

        assert await repository.remove_worklog_entry(100) is True
        assert await repository.remove_worklog_entry(100) is False
        assert await repository.find_worklog(100) is None

    @pytest.mark.asyncio
    async def test_round_trip_keeps_values(self, repository):
        await repository.add_issue_summaries([issue()])
        await repository.add_worklog_entries([entry(100, seconds=5400)])

        stored = await repository.find_worklog(100)
        assert stored.issue_key == IssueKey("TIME-1")
        assert stored.started == NOW
        assert stored.started.tzinfo is not None
        assert stored.duration_seconds == 5400
        assert stored.duration_text == "1h 30m"

    @pytest.mark.asyncio
    async def test_find_worklogs_after_filters(self, repository):
        await repository.add_issue_summaries([issue(1, "TIME-1"), issue(2, "TIME-2")])
        await repository.add_worklog_entries(
            [
                entry(1, started=NOW - timedelta(days=10)),
                entry(2, started=NOW - timedelta(days=1)),
                entry(3, issue_id=2, key="TIME-2", started=NOW - timedelta(hours=5)),
                entry(4, issue_id=2, key="TIME-2", started=NOW - timedelta(hours=2), author="Other"),
            ]
        )
        since = NOW - timedelta(days=2)

        assert [e.id for e in await repository.find_worklogs_after(since)] == [2, 3, 4]
        assert [e.id for e in await repository.find_worklogs_after(since, issue_keys=["time-2"])] == [3, 4]
        assert [e.id for e in await repository.find_worklogs_after(since, users=["Me"])] == [2, 3]
        assert [
            e.id for e in await repository.find_worklogs_after(since, issue_keys=["TIME-2"], users=["Other"])
        ] == [4]

    @pytest.mark.asyncio
    async def test_find_worklogs_after_is_exclusive(self, repository):
        await repository.add_issue_summaries([issue()])
        await repository.add_worklog_entries([entry(1, started=NOW)])
        assert await repository.find_worklogs_after(NOW) == []

    @pytest.mark.asyncio
    async def test_unique_issue_keys_sorted(self, repository):
        await repository.add_issue_summaries([issue(1, "TIME-2"), issue(2, "TIME-10"), issue(3, "ABC-1")])
        await repository.add_worklog_entries(
            [entry(1, 1, "TIME-2"), entry(2, 1, "TIME-2"), entry(3, 3, "ABC-1")]
        )
        assert await repository.find_unique_issue_keys() == [IssueKey("ABC-1"), IssueKey("TIME-2")]

    @pytest.mark.asyncio
    async def test_purge(self, repository):
        await repository.add_issue_summaries([issue()])
        await repository.add_worklog_entries([entry(1), entry(2)])
        assert await repository.purge_worklogs() == 2
        assert await repository.count_worklogs() == 0


class TestUser:
    @pytest.mark.asyncio
    async def test_upsert_user(self, repository):
        await repository.upsert_user(User("acc-1", "a@example.com", "A", "UTC"))
        await repository.upsert_user(User("acc-1", "a@example.com", "A. Person", "UTC"))
        stored = await repository.get_user()
        assert stored.display_name == "A. Person"


class TestTimers:
    """Tests for timer storage and the single running timer rule."""

    @pytest.mark.asyncio
    async def test_start_assigns_id(self, repository):
        timer = await repository.start_timer(Timer(issue_key="TIME-1"))
        assert timer.id is not None
        active = await repository.find_active_timer()
        assert active.id == timer.id
        assert active.state is TimerState.ACTIVE

    @pytest.mark.asyncio
    async def test_second_active_timer_rejected(self, repository):
        await repository.start_timer(Timer(issue_key="TIME-1"))
        with pytest.raises(ActiveTimerExistsError):
            await repository.start_timer(Timer(issue_key="TIME-2"))

        rows = repository.conn.execute('SELECT COUNT(*) FROM timer WHERE "end" IS NULL').fetchone()[0]
        assert rows == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_leave_one_active(self, repository):
        """Racing starts: exactly one wins, the rest fail."""
        results = await asyncio.gather(
            *(repository.start_timer(Timer(issue_key=f"TIME-{n}")) for n in range(5)),
            return_exceptions=True,
        )
        started = [r for r in results if isinstance(r, Timer)]
        failed = [r for r in results if isinstance(r, ActiveTimerExistsError)]
        assert len(started) == 1
        assert len(failed) == 4

    def test_unique_index_enforced_at_storage_level(self, repository):
        """Raw inserts bypassing the repository still cannot create two running timers."""
        sql = 'INSERT INTO timer (issue_key, created, started, "end", synced) VALUES (?, ?, ?, NULL, 0)'
        repository.conn.execute(sql, ("A-1", "2024-01-01", "2024-01-01"))
        with pytest.raises(sqlite3.IntegrityError):
            repository.conn.execute(sql, ("A-2", "2024-01-01", "2024-01-01"))

    @pytest.mark.asyncio
    async def test_stop_then_start_again(self, repository):
        started = await repository.start_timer(Timer(issue_key="TIME-1", started_at=NOW))
        stopped = await repository.stop_active_timer(NOW + timedelta(hours=1), comment="done")
        assert stopped.id == started.id
        assert stopped.duration_seconds == 3600
        assert stopped.comment == "done"
        assert stopped.state is TimerState.STOPPED_UNSYNCED

        await repository.start_timer(Timer(issue_key="TIME-2"))

    @pytest.mark.asyncio
    async def test_stop_without_active_timer(self, repository):
        with pytest.raises(NoActiveTimerError):
            await repository.stop_active_timer()

    @pytest.mark.asyncio
    async def test_stop_before_start_rejected(self, repository):
        await repository.start_timer(Timer(issue_key="TIME-1", started_at=NOW))
        with pytest.raises(TimerDurationError):
            await repository.stop_active_timer(NOW - timedelta(minutes=1))
        assert await repository.find_active_timer() is not None

    @pytest.mark.asyncio
    async def test_discard(self, repository):
        timer = await repository.start_timer(Timer(issue_key="TIME-1"))
        discarded = await repository.discard_active_timer()
        assert discarded.id == timer.id
        assert await repository.find_timer(timer.id) is None
        with pytest.raises(NoActiveTimerError):
            await repository.discard_active_timer()

    @pytest.mark.asyncio
    async def test_update_timer(self, repository):
        await repository.start_timer(Timer(issue_key="TIME-1", started_at=NOW))
        timer = await repository.stop_active_timer(NOW + timedelta(hours=2))
        timer.synced = True
        await repository.update_timer(timer)
        assert (await repository.find_timer(timer.id)).state is TimerState.STOPPED_SYNCED

    @pytest.mark.asyncio
    async def test_update_missing_timer(self, repository):
        with pytest.raises(TimerNotFoundError):
            await repository.update_timer(Timer(issue_key="TIME-1", id=42))

    @pytest.mark.asyncio
    async def test_find_timers_since_and_by_issue(self, repository):
        old = Timer(issue_key="TIME-1", created_at=NOW - timedelta(days=40), started_at=NOW - timedelta(days=40))
        old.stopped_at = old.started_at + timedelta(hours=1)
        await repository.start_timer(old)
        await repository.start_timer(Timer(issue_key="TIME-1", created_at=NOW, started_at=NOW))

        recent = await repository.find_timers_since(NOW - timedelta(days=30))
        assert [t.issue_key.value for t in recent] == ["TIME-1"]
        assert len(recent) == 1
        assert len(await repository.find_timers_for_issue("time-1")) == 2
