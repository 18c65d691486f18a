"""
Log Entry Data Structures for worklog.

Structured entries for remote tracker requests and reconciliation runs.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class TrackerLogEntry:
    """Log entry for one HTTP request against the tracker."""

    timestamp: str  # ISO 8601
    request_id: str
    method: str  # GET, POST, DELETE
    path: str

    # Request
    params: dict[str, Any] = field(default_factory=dict)

    # Response
    status_code: int | None = None
    latency_ms: int = 0

    # Error (if any)
    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackerLogEntry":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SyncLogEntry:
    """Log entry for reconciliation run events."""

    timestamp: str  # ISO 8601
    run_id: str
    event_type: str  # "start", "end", "issue_failed", "error"

    # Scope
    issues: list[str] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    started_after: str = ""
    all_users: bool = False

    # Run end metrics (populated on "end" event)
    worklogs_fetched: int = 0
    worklogs_stored: int = 0
    failed_issues: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    # Error info
    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncLogEntry":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return datetime.now().isoformat()
