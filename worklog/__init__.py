"""
Worklog - local work-log cache and timer, reconciled against an issue tracker.

Pulls work logs from the tracker's REST API into an embedded SQLite
database, records time locally with a single running timer, and pushes
finished timers back as remote work logs.
"""

__version__ = "0.1.0"

from worklog.exceptions import (
    ConfigError,
    StorageError,
    SyncError,
    TimerError,
    TrackerError,
    WorklogError,
)

__all__ = [
    "__version__",
    "WorklogError",
    "ConfigError",
    "TrackerError",
    "StorageError",
    "TimerError",
    "SyncError",
]
