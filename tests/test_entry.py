"""Tests for manual work log entry."""

from datetime import date, datetime, timedelta

import httpx
import pytest

from tests.fakes import BASE_URL, OTHER, make_worklog
from worklog.config import WorklogConfig
from worklog.entry import ManualEntryService
from worklog.exceptions import (
    DurationParseError,
    InputError,
    IssueNotFoundError,
    NotFoundError,
    StartAndDurationExceedsNowError,
)
from worklog.tracker.client import TrackerClient

# A Wednesday afternoon
NOW = datetime(2024, 5, 22, 15, 0).astimezone()


@pytest.fixture
def tracker(fake_tracker):
    fake_tracker.add_issue(1, "TIME-1")
    return fake_tracker


@pytest.fixture
def entries(client, reconciler):
    return ManualEntryService(client, reconciler, WorklogConfig(working_hours_per_day=8.0))


class TestSingleEntry:
    """One plain duration."""

    @pytest.mark.asyncio
    async def test_defaults_to_ending_now(self, entries, repository, tracker):
        [added] = await entries.add("time-1", ["1,5h"], comment="review", now=NOW)

        assert added.duration_seconds == 5400
        assert added.started == NOW - timedelta(minutes=90)
        assert added.comment == "review"
        assert tracker.inserted[0]["timeSpentSeconds"] == 5400
        assert await repository.find_worklog(added.id) is not None

    @pytest.mark.asyncio
    async def test_explicit_start(self, entries, tracker):
        start = NOW - timedelta(hours=5)
        [added] = await entries.add("TIME-1", ["2h"], started=start, now=NOW)
        assert added.started == start

    @pytest.mark.asyncio
    async def test_start_plus_duration_in_future(self, entries, tracker):
        with pytest.raises(StartAndDurationExceedsNowError):
            await entries.add("TIME-1", ["2h"], started=NOW - timedelta(hours=1), now=NOW)
        assert tracker.inserted == []

    @pytest.mark.asyncio
    async def test_days_use_server_hours_per_day(self, entries, tracker):
        [added] = await entries.add("TIME-1", ["1d"], now=NOW)
        assert added.duration_seconds == int(7.5 * 3600)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 500])
    async def test_falls_back_to_configured_hours(self, reconciler, status):
        client = TrackerClient(BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(status)))
        service = ManualEntryService(client, reconciler, WorklogConfig(working_hours_per_day=8.0))

        options = await service.time_tracking_options()

        assert options.working_hours_per_day == 8.0
        assert options.working_days_per_week == 5.0
        await client.aclose()


class TestWeekdayEntries:
    """Weekday-prefixed durations."""

    @pytest.mark.asyncio
    async def test_each_day_at_eight(self, entries, tracker):
        added = await entries.add("TIME-1", ["Mon:7,5h", "Tue:2h"], now=NOW)

        assert [a.started.date() for a in added] == [date(2024, 5, 20), date(2024, 5, 21)]
        assert all((a.started.hour, a.started.minute) == (8, 0) for a in added)
        assert [a.duration_seconds for a in added] == [27000, 7200]
        assert len(tracker.inserted) == 2

    @pytest.mark.asyncio
    async def test_bad_entry_means_nothing_written(self, entries, tracker):
        with pytest.raises(DurationParseError):
            await entries.add("TIME-1", ["Mon:7,5h", "Tue:lots"], now=NOW)
        assert tracker.inserted == []

    @pytest.mark.asyncio
    async def test_unknown_weekday(self, entries, tracker):
        with pytest.raises(DurationParseError):
            await entries.add("TIME-1", ["Someday:1h"], now=NOW)

    @pytest.mark.asyncio
    async def test_start_time_rejected_with_weekdays(self, entries, tracker):
        with pytest.raises(InputError) as exc:
            await entries.add("TIME-1", ["Mon:1h"], started=NOW - timedelta(hours=3), now=NOW)
        assert "weekday" in exc.value.message
        assert tracker.inserted == []


class TestInvalidInput:
    @pytest.mark.asyncio
    async def test_no_durations(self, entries, tracker):
        with pytest.raises(InputError):
            await entries.add("TIME-1", [], now=NOW)

    @pytest.mark.asyncio
    async def test_several_plain_durations_rejected(self, entries, tracker):
        with pytest.raises(InputError):
            await entries.add("TIME-1", ["1h", "2h"], now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_issue(self, entries, tracker):
        with pytest.raises(IssueNotFoundError):
            await entries.add("NOPE-1", ["1h"], now=NOW)


class TestDelete:
    """Deleting work logs owned by the current account."""

    @pytest.mark.asyncio
    async def test_own_worklog_removed_remotely_and_locally(self, entries, repository, tracker):
        [added] = await entries.add("TIME-1", ["1h"], now=NOW)

        removed = await entries.delete("time-1", added.id)

        assert removed.id == added.id
        assert tracker.deleted == [("TIME-1", added.id)]
        assert tracker.worklogs["TIME-1"] == []
        assert await repository.find_worklog(added.id) is None

    @pytest.mark.asyncio
    async def test_someone_elses_worklog_rejected(self, entries, tracker):
        tracker.add_worklogs("TIME-1", make_worklog(104, 1, author=OTHER))

        with pytest.raises(InputError) as exc:
            await entries.delete("TIME-1", 104)

        assert "not the owner" in exc.value.message
        assert tracker.deleted == []
        assert len(tracker.worklogs["TIME-1"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_worklog(self, entries, tracker):
        with pytest.raises(NotFoundError):
            await entries.delete("TIME-1", 404)
        assert tracker.deleted == []
