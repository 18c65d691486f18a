"""
Worklog Persistence Models

Dataclasses that map to the SQLite tables of the local cache.
Designed for:
- Easy conversion to/from database rows
- Aware datetimes in the local zone for callers, UTC text in storage
- Value semantics for issue keys
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import total_ordering

from worklog.duration import format_duration, now_local
from worklog.exceptions import InvalidIssueKeyError


# ============================================================================
# ENUMS
# ============================================================================


class TimerState(str, Enum):
    """Timer lifecycle state, derived from the stored columns."""

    ABSENT = "absent"
    ACTIVE = "active"
    STOPPED_UNSYNCED = "stopped_unsynced"
    STOPPED_SYNCED = "stopped_synced"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def to_db_timestamp(value: datetime) -> str:
    """
    Render a datetime for storage.

    Always UTC with a fixed microsecond width, so string comparison in SQL
    matches chronological order. Naive values are taken as local time.
    """
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware local datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone()


# ============================================================================
# ISSUES
# ============================================================================


@total_ordering
class IssueKey:
    """
    Tracker issue key such as ``TIME-147``.

    Always trimmed and uppercase; equal keys compare and hash equal.
    """

    __slots__ = ("value",)

    def __init__(self, value: str):
        normalized = (value or "").strip().upper()
        if not normalized:
            raise InvalidIssueKeyError("Issue key must not be empty", {"input": value})
        self.value = normalized

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"IssueKey({self.value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, IssueKey):
            return self.value == other.value
        return NotImplemented

    def __lt__(self, other: IssueKey) -> bool:
        return self.value < other.value

    def __hash__(self) -> int:
        return hash(self.value)


@dataclass(frozen=True)
class Component:
    """Tracker component an issue belongs to."""

    id: int
    name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row | tuple) -> Component:
        return cls(id=int(row[0]), name=row[1])


@dataclass
class IssueSummary:
    """Cached header of a remote issue."""

    id: int
    key: IssueKey
    summary: str
    components: list[Component] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.key, IssueKey):
            self.key = IssueKey(self.key)

    def to_row(self) -> tuple:
        """Convert to tuple for INSERT."""
        return (self.id, self.key.value, self.summary)

    @classmethod
    def from_row(cls, row: sqlite3.Row | tuple) -> IssueSummary:
        """Create from database row."""
        return cls(id=int(row[0]), key=IssueKey(row[1]), summary=row[2] or "")


# ============================================================================
# WORK LOGS
# ============================================================================


@dataclass
class LocalWorklogEntry:
    """Local copy of one remote work log record."""

    id: int
    issue_key: IssueKey
    issue_id: int
    author: str
    created: datetime
    updated: datetime
    started: datetime
    duration_seconds: int
    duration_text: str = ""
    comment: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.issue_key, IssueKey):
            self.issue_key = IssueKey(self.issue_key)
        if self.duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {self.duration_seconds}")
        if not self.duration_text:
            self.duration_text = format_duration(self.duration_seconds)

    def to_row(self) -> tuple:
        """Convert to tuple for INSERT."""
        return (
            self.id,
            self.issue_key.value,
            self.issue_id,
            self.author,
            to_db_timestamp(self.created),
            to_db_timestamp(self.updated),
            to_db_timestamp(self.started),
            self.duration_text,
            self.duration_seconds,
            self.comment,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LocalWorklogEntry:
        """Create from database row."""
        return cls(
            id=int(row["id"]),
            issue_key=IssueKey(row["issue_key"]),
            issue_id=int(row["issue_id"]),
            author=row["author"],
            created=from_db_timestamp(row["created"]),  # type: ignore[arg-type]
            updated=from_db_timestamp(row["updated"]),  # type: ignore[arg-type]
            started=from_db_timestamp(row["started"]),  # type: ignore[arg-type]
            duration_seconds=int(row["time_spent_seconds"]),
            duration_text=row["time_spent"] or "",
            comment=row["comment"],
        )


# ============================================================================
# TIMERS
# ============================================================================


@dataclass
class Timer:
    """A locally recorded span of work on one issue."""

    issue_key: IssueKey
    started_at: datetime = field(default_factory=now_local)
    created_at: datetime = field(default_factory=now_local)
    stopped_at: datetime | None = None
    synced: bool = False
    comment: str | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.issue_key, IssueKey):
            self.issue_key = IssueKey(self.issue_key)

    @property
    def is_active(self) -> bool:
        return self.stopped_at is None

    @property
    def state(self) -> TimerState:
        if self.stopped_at is None:
            return TimerState.ACTIVE
        return TimerState.STOPPED_SYNCED if self.synced else TimerState.STOPPED_UNSYNCED

    @property
    def duration(self) -> timedelta:
        """Elapsed time; a running timer is measured up to now."""
        end = self.stopped_at or now_local()
        return end - self.started_at

    @property
    def duration_seconds(self) -> int:
        return int(self.duration.total_seconds())

    def to_row(self) -> tuple:
        """Convert to tuple for INSERT (without the generated id)."""
        return (
            self.issue_key.value,
            to_db_timestamp(self.created_at),
            to_db_timestamp(self.started_at),
            to_db_timestamp(self.stopped_at) if self.stopped_at else None,
            1 if self.synced else 0,
            self.comment,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Timer:
        """Create from database row."""
        return cls(
            id=int(row["id"]),
            issue_key=IssueKey(row["issue_key"]),
            created_at=from_db_timestamp(row["created"]),  # type: ignore[arg-type]
            started_at=from_db_timestamp(row["started"]),  # type: ignore[arg-type]
            stopped_at=from_db_timestamp(row["end"]),
            synced=bool(row["synced"]),
            comment=row["comment"],
        )


# ============================================================================
# USER
# ============================================================================


@dataclass
class User:
    """The authenticated tracker account that owns this database."""

    account_id: str
    email: str = ""
    display_name: str = ""
    time_zone: str = ""

    def to_row(self) -> tuple:
        """Convert to tuple for INSERT."""
        return (self.account_id, self.email, self.display_name, self.time_zone)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> User:
        """Create from database row."""
        return cls(
            account_id=row["account_id"],
            email=row["email"] or "",
            display_name=row["display_name"] or "",
            time_zone=row["timezone"] or "",
        )
