"""
worklog structured logging.

Provides JSONL logs for:
- Tracker HTTP requests (method, path, status, latency)
- Reconciliation runs (scope, counts, per-issue failures)

Usage:
    from worklog.logging import tracker_logger, TrackerLogEntry, now_iso

    entry = TrackerLogEntry(
        timestamp=now_iso(),
        request_id=str(uuid.uuid4()),
        method="GET",
        path="/myself",
    )
    tracker_logger.info(entry.to_json())

The directory, level and rotation come from WorklogConfig; ApplicationRuntime
calls configure_logging() with the loaded config. Files are only created
once something is written:
    - tracker.jsonl
    - sync.jsonl
"""

import logging
import threading
from typing import Any

from worklog.config import WorklogConfig

from .entries import SyncLogEntry, TrackerLogEntry, now_iso
from .handlers import create_jsonl_logger

CHANNELS = ("tracker", "sync")

_loggers: dict[str, logging.Logger] = {}
_init_lock = threading.Lock()


def _close_loggers() -> None:
    for logger in _loggers.values():
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
    _loggers.clear()


def configure_logging(config: WorklogConfig) -> None:
    """Point the JSONL loggers at the directory, level and rotation of ``config``."""
    with _init_lock:
        _close_loggers()
        for channel in CHANNELS:
            _loggers[channel] = create_jsonl_logger(
                f"worklog.jsonl.{channel}",
                config.log_dir / f"{channel}.jsonl",
                level=config.log_level,
                max_bytes=int(config.log_max_size_mb * 1024 * 1024),
                backup_count=config.log_backup_count,
            )


def reset_loggers() -> None:
    """Drop the JSONL loggers; the next write falls back to the default config."""
    with _init_lock:
        _close_loggers()


class _LazyLogger:
    """Wrapper resolving the channel logger on each call."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> logging.Logger:
        if not _loggers:
            configure_logging(WorklogConfig())
        return _loggers[self._name]

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().error(msg, *args, **kwargs)


tracker_logger = _LazyLogger("tracker")
sync_logger = _LazyLogger("sync")


__all__ = [
    # Loggers
    "tracker_logger",
    "sync_logger",
    "configure_logging",
    "reset_loggers",
    # Log entries
    "TrackerLogEntry",
    "SyncLogEntry",
    "now_iso",
]
