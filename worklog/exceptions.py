"""
Worklog - Exception Hierarchy

All worklog-specific exceptions inherit from WorklogError so callers can
catch one type at the CLI boundary and render details consistently.
"""

from typing import Any


class WorklogError(Exception):
    """Base exception for all worklog errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(WorklogError):
    """Raised when configuration is invalid or missing."""

    pass


# Remote tracker Errors
class TrackerError(WorklogError):
    """Base exception for remote issue tracker errors."""

    pass


class UnauthorizedError(TrackerError):
    """Raised when the tracker rejects the supplied credentials (HTTP 401)."""

    pass


class NotFoundError(TrackerError):
    """Raised when the requested remote resource does not exist (HTTP 404)."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message, {"url": url})
        self.url = url


class RateLimitedError(TrackerError):
    """Raised when the tracker throttles us (HTTP 429)."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class ServerFaultError(TrackerError):
    """Raised for any other non-2xx status or an unreadable response body."""

    def __init__(self, message: str, code: int, body: str = ""):
        super().__init__(message, {"code": code, "body": body[:500]})
        self.code = code
        self.body = body


class TransportError(TrackerError):
    """Raised when the request never produced a response (connect, timeout)."""

    pass


# Local storage Errors
class StorageError(WorklogError):
    """Raised when the local SQLite cache rejects an operation."""

    pass


# Timer Errors
class TimerError(WorklogError):
    """Base exception for timer lifecycle errors."""

    pass


class ActiveTimerExistsError(TimerError):
    """Raised when starting a timer while another one is still running."""

    pass


class NoActiveTimerError(TimerError):
    """Raised when stopping or discarding with no timer running."""

    pass


class TimerNotFoundError(TimerError):
    """Raised when a timer id does not match any stored timer."""

    def __init__(self, message: str, timer_id: int | None = None):
        super().__init__(message, {"timer_id": timer_id})
        self.timer_id = timer_id


class TimerDurationError(TimerError):
    """Raised when a timer would end before it started."""

    pass


# Issue Errors
class IssueNotFoundError(WorklogError):
    """Raised when an issue key is unknown both locally and remotely."""

    def __init__(self, message: str, issue_key: str = ""):
        super().__init__(message, {"issue_key": issue_key})
        self.issue_key = issue_key


class InvalidIssueKeyError(WorklogError):
    """Raised when an issue key is empty or blank."""

    pass


# Input Errors
class InputError(WorklogError):
    """Base exception for user input that cannot be interpreted."""

    pass


class DurationParseError(InputError):
    """Raised when a duration string has no recognizable unit."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message, {"input": text})
        self.text = text


class StartAndDurationExceedsNowError(InputError):
    """Raised when start time plus duration lands in the future."""

    pass


# Sync Errors
class SyncError(WorklogError):
    """Raised when a reconciliation run cannot complete."""

    pass


class NothingToSyncError(SyncError):
    """Raised when the resolved sync scope contains no issues."""

    exit_code = 4


# State Machine Errors
class StateTransitionError(WorklogError):
    """Raised when an invalid timer state transition is attempted."""

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state
