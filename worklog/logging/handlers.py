"""
Log handlers for worklog.

Size-rotated JSONL output: one JSON object per line, so the files can be
tailed or loaded back with ``json.loads`` line by line.
"""

import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JSONLRotatingHandler(RotatingFileHandler):
    """
    Rotating file handler that writes one JSON document per record.

    Records whose message is already a JSON object (the log entry
    dataclasses call ``to_json()``) are written unchanged. Anything else is
    wrapped with timestamp, level and logger name. The file is opened on
    the first record.
    """

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 10_000_000,
        backup_count: int = 5,
    ):
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self.shouldRollover(record):
                self.doRollover()
            # Opened lazily, and closed again by a rollover
            if self.stream is None:
                self.stream = self._open()

            msg = self.format(record)
            try:
                data = json.loads(msg)
                if not isinstance(data, dict):
                    raise ValueError("not an object")
            except ValueError:
                data = {
                    "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": msg,
                }

            self.stream.write(json.dumps(data, default=str) + "\n")
            self.flush()
        except Exception:
            self.handleError(record)


class PassthroughFormatter(logging.Formatter):
    """Formatter that returns the interpolated message only."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_jsonl_logger(
    name: str,
    filepath: Path,
    level: str = "INFO",
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Create a logger that writes JSONL to ``filepath``.

    Args:
        name: Logger name
        filepath: Path to log file
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        max_bytes: Max file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger, detached from the root logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = JSONLRotatingHandler(filepath, max_bytes=max_bytes, backup_count=backup_count)
    handler.setFormatter(PassthroughFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger
