"""
Worklog Persistence Layer

SQLite-backed local cache of issues, work logs, timers and the current user.
"""

from worklog.persistence.models import (
    Component,
    IssueKey,
    IssueSummary,
    LocalWorklogEntry,
    Timer,
    TimerState,
    User,
)
from worklog.persistence.repository import WorklogRepository

__all__ = [
    # Enums
    "TimerState",
    # Entities
    "IssueKey",
    "Component",
    "IssueSummary",
    "LocalWorklogEntry",
    "Timer",
    "User",
    # Repository
    "WorklogRepository",
]
