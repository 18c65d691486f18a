"""
Worklog Repository - Database access layer

Provides all database operations for the local work-log cache.
Single connection per repository instance.

Concurrency:
- One asyncio.Lock serializes every statement against the connection
- Statements run in a worker thread so the event loop never blocks
- Invariants (foreign keys, single running timer) live in the schema,
  not in read-then-write checks
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from worklog.config import DEFAULT_DB_PATH
from worklog.duration import now_local
from worklog.exceptions import (
    ActiveTimerExistsError,
    NoActiveTimerError,
    StorageError,
    TimerDurationError,
    TimerNotFoundError,
    WorklogError,
)
from worklog.persistence.models import (
    Component,
    IssueKey,
    IssueSummary,
    LocalWorklogEntry,
    Timer,
    User,
    to_db_timestamp,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_TIMER_INDEX = "idx_single_active_timer"


def _is_active_timer_violation(error: sqlite3.IntegrityError) -> bool:
    message = str(error)
    return ACTIVE_TIMER_INDEX in message or message.startswith("UNIQUE constraint failed: timer")


class WorklogRepository:
    """
    Repository for all local cache operations.

    Usage:
        repo = WorklogRepository(db_path)
        repo.initialize()

        await repo.add_issue_summaries([issue])
        await repo.add_worklog_entries([entry])

        repo.close()

    Also usable as a context manager for setup and teardown.
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file. If None, uses default location.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    def __enter__(self) -> WorklogRepository:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection, initializing if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn  # type: ignore

    def initialize(self) -> None:
        """
        Open the connection and apply the schema.

        Creates the database file and parent directories if needed.
        Safe to call more than once.
        """
        if self._conn is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # worker threads, serialized by self._lock
                isolation_level=None,  # autocommit, explicit BEGIN/COMMIT below
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._apply_schema()
        except sqlite3.Error as e:
            self.close()
            raise StorageError(f"Unable to open database at {self.db_path}", {"error": str(e)}) from e

        logger.info(f"Initialized worklog database at {self.db_path}")

    def _apply_schema(self) -> None:
        """Apply the database schema from schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"

        if not schema_path.exists():
            logger.error(f"Schema file not found: {schema_path}")
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path) as f:
            schema_sql = f.read()

        self._conn.executescript(schema_sql)  # type: ignore
        logger.debug("Database schema applied")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Execute operations in a transaction.

        Usage:
            with repo.transaction() as cursor:
                cursor.execute(...)
        """
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    async def _run(self, operation: Callable[[], T]) -> T:
        """Run a blocking database operation under the lock in a worker thread."""
        async with self._lock:
            try:
                return await asyncio.to_thread(operation)
            except WorklogError:
                raise
            except sqlite3.Error as e:
                logger.error(f"Database operation failed: {e}")
                raise StorageError(f"Database operation failed: {e}", {"error_type": type(e).__name__}) from e

    # =========================================================================
    # ISSUE OPERATIONS
    # =========================================================================

    async def add_issue_summaries(self, issues: Iterable[IssueSummary]) -> None:
        """
        Upsert issues and their components.

        Existing rows keep their id; key and summary are refreshed and the
        component links are replaced by the ones given.
        """
        batch = list(issues)

        def _op() -> None:
            with self.transaction() as cursor:
                for issue in batch:
                    cursor.execute(
                        """INSERT INTO issue (id, key, summary) VALUES (?, ?, ?)
                           ON CONFLICT (id) DO UPDATE SET
                               key = excluded.key,
                               summary = excluded.summary""",
                        issue.to_row(),
                    )
                    cursor.execute("DELETE FROM issue_component WHERE issue_key = ?", (issue.key.value,))
                    for component in issue.components:
                        cursor.execute(
                            """INSERT INTO component (id, name) VALUES (?, ?)
                               ON CONFLICT (id) DO UPDATE SET name = excluded.name""",
                            (component.id, component.name),
                        )
                        cursor.execute(
                            """INSERT OR IGNORE INTO issue_component (issue_key, component_id)
                               VALUES (?, ?)""",
                            (issue.key.value, component.id),
                        )

        await self._run(_op)
        logger.debug(f"Upserted {len(batch)} issue summaries")

    def _load_components(self, cursor: sqlite3.Cursor, issue: IssueSummary) -> IssueSummary:
        cursor.execute(
            """SELECT c.id, c.name FROM component c
               JOIN issue_component ic ON ic.component_id = c.id
               WHERE ic.issue_key = ? ORDER BY c.name""",
            (issue.key.value,),
        )
        issue.components = [Component.from_row(row) for row in cursor.fetchall()]
        return issue

    async def find_issue(self, key: IssueKey | str) -> IssueSummary | None:
        """Get an issue by key, with its components."""
        issue_key = key if isinstance(key, IssueKey) else IssueKey(key)

        def _op() -> IssueSummary | None:
            cursor = self.conn.cursor()
            cursor.execute("SELECT id, key, summary FROM issue WHERE key = ?", (issue_key.value,))
            row = cursor.fetchone()
            return self._load_components(cursor, IssueSummary.from_row(row)) if row else None

        return await self._run(_op)

    async def find_issues(self, keys: Iterable[IssueKey | str]) -> list[IssueSummary]:
        """Get the issues matching ``keys`` that are cached, ordered by key."""
        wanted = sorted({k.value if isinstance(k, IssueKey) else IssueKey(k).value for k in keys})
        if not wanted:
            return []

        def _op() -> list[IssueSummary]:
            cursor = self.conn.cursor()
            placeholders = ",".join("?" * len(wanted))
            cursor.execute(
                f"SELECT id, key, summary FROM issue WHERE key IN ({placeholders}) ORDER BY key",
                wanted,
            )
            issues = [IssueSummary.from_row(row) for row in cursor.fetchall()]
            return [self._load_components(cursor, issue) for issue in issues]

        return await self._run(_op)

    async def find_unique_issue_keys(self) -> list[IssueKey]:
        """Distinct issue keys that have cached work logs, ascending."""

        def _op() -> list[IssueKey]:
            cursor = self.conn.cursor()
            cursor.execute("SELECT DISTINCT issue_key FROM worklog ORDER BY issue_key")
            return [IssueKey(row[0]) for row in cursor.fetchall()]

        return await self._run(_op)

    # =========================================================================
    # WORKLOG OPERATIONS
    # =========================================================================

    async def add_worklog_entries(self, entries: Iterable[LocalWorklogEntry]) -> None:
        """
        Insert work logs in one transaction.

        The referenced issue must already exist. A duplicate id or a missing
        issue rolls back the whole batch and raises StorageError.
        """
        batch = list(entries)

        def _op() -> None:
            with self.transaction() as cursor:
                cursor.executemany(
                    """INSERT INTO worklog
                       (id, issue_key, issue_id, author, created, updated, started,
                        time_spent, time_spent_seconds, comment)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    [entry.to_row() for entry in batch],
                )

        await self._run(_op)
        logger.debug(f"Inserted {len(batch)} work log entries")

    async def remove_worklog_entry(self, worklog_id: int) -> bool:
        """Delete a work log by id. Returns False when it was not cached."""

        def _op() -> bool:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM worklog WHERE id = ?", (worklog_id,))
            return cursor.rowcount > 0

        return await self._run(_op)

    async def find_worklog(self, worklog_id: int) -> LocalWorklogEntry | None:
        """Get a cached work log by id."""

        def _op() -> LocalWorklogEntry | None:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM worklog WHERE id = ?", (worklog_id,))
            row = cursor.fetchone()
            return LocalWorklogEntry.from_row(row) if row else None

        return await self._run(_op)

    async def find_worklogs_after(
        self,
        since: datetime,
        issue_keys: Iterable[IssueKey | str] = (),
        users: Iterable[str] = (),
    ) -> list[LocalWorklogEntry]:
        """
        Cached work logs started strictly after ``since``, oldest first.

        Args:
            since: Lower bound, exclusive
            issue_keys: Only these issues, when given
            users: Only these authors (display names), when given
        """
        keys = [k.value if isinstance(k, IssueKey) else IssueKey(k).value for k in issue_keys]
        authors = list(users)

        sql = "SELECT * FROM worklog WHERE started > ?"
        params: list[object] = [to_db_timestamp(since)]
        if keys:
            sql += f" AND issue_key IN ({','.join('?' * len(keys))})"
            params.extend(keys)
        if authors:
            sql += f" AND author IN ({','.join('?' * len(authors))})"
            params.extend(authors)
        sql += " ORDER BY started, id"

        def _op() -> list[LocalWorklogEntry]:
            cursor = self.conn.cursor()
            cursor.execute(sql, params)
            return [LocalWorklogEntry.from_row(row) for row in cursor.fetchall()]

        return await self._run(_op)

    async def count_worklogs(self) -> int:
        def _op() -> int:
            return self.conn.execute("SELECT COUNT(*) FROM worklog").fetchone()[0]

        return await self._run(_op)

    async def purge_worklogs(self) -> int:
        """Delete every cached work log. Returns the number removed."""

        def _op() -> int:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM worklog")
            return cursor.rowcount

        removed = await self._run(_op)
        logger.info(f"Purged {removed} cached work logs")
        return removed

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    async def upsert_user(self, user: User) -> None:
        def _op() -> None:
            self.conn.execute(
                """INSERT INTO "user" (account_id, email, display_name, timezone)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (account_id) DO UPDATE SET
                       email = excluded.email,
                       display_name = excluded.display_name,
                       timezone = excluded.timezone""",
                user.to_row(),
            )

        await self._run(_op)

    async def get_user(self) -> User | None:
        """The stored account, if a remote call has succeeded before."""

        def _op() -> User | None:
            row = self.conn.execute('SELECT * FROM "user" LIMIT 1').fetchone()
            return User.from_row(row) if row else None

        return await self._run(_op)

    # =========================================================================
    # TIMER OPERATIONS
    # =========================================================================

    async def start_timer(self, timer: Timer) -> Timer:
        """
        Insert a timer and return it with its id.

        Raises:
            ActiveTimerExistsError: If another timer is still running
        """

        def _op() -> Timer:
            cursor = self.conn.cursor()
            try:
                cursor.execute(
                    """INSERT INTO timer (issue_key, created, started, "end", synced, comment)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    timer.to_row(),
                )
            except sqlite3.IntegrityError as e:
                if _is_active_timer_violation(e):
                    raise ActiveTimerExistsError(
                        "A timer is already running, stop or discard it first",
                        {"issue_key": timer.issue_key.value},
                    ) from e
                raise
            timer.id = cursor.lastrowid
            return timer

        started = await self._run(_op)
        logger.info(f"Started timer {started.id} on {started.issue_key}")
        return started

    def _select_active_timer(self, cursor: sqlite3.Cursor) -> Timer | None:
        cursor.execute('SELECT * FROM timer WHERE "end" IS NULL')
        row = cursor.fetchone()
        return Timer.from_row(row) if row else None

    async def find_active_timer(self) -> Timer | None:
        def _op() -> Timer | None:
            return self._select_active_timer(self.conn.cursor())

        return await self._run(_op)

    async def stop_active_timer(
        self,
        stop_time: datetime | None = None,
        comment: str | None = None,
    ) -> Timer:
        """
        Stop the running timer.

        Args:
            stop_time: When the work ended, defaults to now
            comment: Replaces the timer comment when given

        Raises:
            NoActiveTimerError: If no timer is running
            TimerDurationError: If stop_time is before the start
        """
        end = stop_time or now_local()

        def _op() -> Timer:
            with self.transaction() as cursor:
                timer = self._select_active_timer(cursor)
                if timer is None:
                    raise NoActiveTimerError("No timer is running")
                if end < timer.started_at:
                    raise TimerDurationError(
                        "Timer cannot stop before it started",
                        {"started": timer.started_at.isoformat(), "stop": end.isoformat()},
                    )
                timer.stopped_at = end
                if comment is not None:
                    timer.comment = comment
                cursor.execute(
                    'UPDATE timer SET "end" = ?, comment = ? WHERE id = ?',
                    (to_db_timestamp(end), timer.comment, timer.id),
                )
                return timer

        stopped = await self._run(_op)
        logger.info(f"Stopped timer {stopped.id} after {stopped.duration_seconds}s")
        return stopped

    async def discard_active_timer(self) -> Timer:
        """
        Delete the running timer without recording it.

        Raises:
            NoActiveTimerError: If no timer is running
        """

        def _op() -> Timer:
            with self.transaction() as cursor:
                timer = self._select_active_timer(cursor)
                if timer is None:
                    raise NoActiveTimerError("No timer is running")
                cursor.execute("DELETE FROM timer WHERE id = ?", (timer.id,))
                return timer

        discarded = await self._run(_op)
        logger.info(f"Discarded timer {discarded.id} on {discarded.issue_key}")
        return discarded

    async def update_timer(self, timer: Timer) -> Timer:
        """
        Write back every column of an existing timer.

        Raises:
            TimerNotFoundError: If the timer no longer exists
            ActiveTimerExistsError: If this would make a second timer running
        """
        if timer.id is None:
            raise TimerNotFoundError("Timer has not been stored yet")

        def _op() -> Timer:
            cursor = self.conn.cursor()
            try:
                cursor.execute(
                    """UPDATE timer SET issue_key = ?, created = ?, started = ?, "end" = ?,
                       synced = ?, comment = ? WHERE id = ?""",
                    (*timer.to_row(), timer.id),
                )
            except sqlite3.IntegrityError as e:
                if _is_active_timer_violation(e):
                    raise ActiveTimerExistsError(
                        "A timer is already running",
                        {"timer_id": timer.id},
                    ) from e
                raise
            if cursor.rowcount == 0:
                raise TimerNotFoundError(f"Timer {timer.id} not found", timer_id=timer.id)
            return timer

        return await self._run(_op)

    async def find_timer(self, timer_id: int) -> Timer | None:
        def _op() -> Timer | None:
            row = self.conn.execute("SELECT * FROM timer WHERE id = ?", (timer_id,)).fetchone()
            return Timer.from_row(row) if row else None

        return await self._run(_op)

    async def find_timers_since(self, since: datetime) -> list[Timer]:
        """Timers created at or after ``since``, oldest first."""

        def _op() -> list[Timer]:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM timer WHERE created >= ? ORDER BY started, id",
                (to_db_timestamp(since),),
            )
            return [Timer.from_row(row) for row in cursor.fetchall()]

        return await self._run(_op)

    async def find_timers_for_issue(self, key: IssueKey | str) -> list[Timer]:
        issue_key = key if isinstance(key, IssueKey) else IssueKey(key)

        def _op() -> list[Timer]:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM timer WHERE issue_key = ? ORDER BY started, id",
                (issue_key.value,),
            )
            return [Timer.from_row(row) for row in cursor.fetchall()]

        return await self._run(_op)
