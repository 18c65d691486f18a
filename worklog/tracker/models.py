"""
Remote tracker models.

Plain dataclasses parsed from the tracker's JSON payloads. Issue summaries
and users are returned as the persistence models they are cached as.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from worklog.persistence.models import (
    Component,
    IssueKey,
    IssueSummary,
    LocalWorklogEntry,
    User,
)


def parse_tracker_timestamp(value: str) -> datetime:
    """
    Parse a tracker timestamp like ``2024-03-01T09:15:00.000+0100``.

    The tracker omits the colon in the offset, which older ``fromisoformat``
    versions reject, so strptime is tried first.
    """
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return datetime.fromisoformat(value)


def format_tracker_timestamp(value: datetime) -> str:
    """Render a datetime the way the tracker expects: milliseconds and a ``+HHMM`` offset."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}" + value.strftime("%z")


def flatten_document(node: Any) -> str:
    """
    Reduce a rich-text document (nested ``content`` nodes) to plain text.

    Plain strings are returned unchanged.
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(flatten_document(child) for child in node)
    if not isinstance(node, dict):
        return str(node)

    node_type = node.get("type")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"

    text = flatten_document(node.get("content", []))
    if node_type in ("paragraph", "heading", "listItem", "codeBlock"):
        text += "\n"
    if node_type == "doc":
        text = text.rstrip("\n")
    return text


@dataclass
class Author:
    """Author of a remote work log."""

    account_id: str
    email: str = ""
    display_name: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Author:
        return cls(
            account_id=data.get("accountId", ""),
            email=data.get("emailAddress", "") or "",
            display_name=data.get("displayName", "") or "",
        )


@dataclass
class RemoteWorklog:
    """A work log record as served by the tracker."""

    id: int
    issue_id: int
    author: Author
    created: datetime
    updated: datetime
    started: datetime
    time_spent: str
    time_spent_seconds: int
    comment: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> RemoteWorklog:
        comment = data.get("comment")
        return cls(
            id=int(data["id"]),
            issue_id=int(data["issueId"]),
            author=Author.from_json(data.get("author") or {}),
            created=parse_tracker_timestamp(data["created"]),
            updated=parse_tracker_timestamp(data["updated"]),
            started=parse_tracker_timestamp(data["started"]),
            time_spent=data.get("timeSpent", ""),
            time_spent_seconds=int(data.get("timeSpentSeconds", 0)),
            comment=flatten_document(comment) if comment is not None else None,
        )

    def to_local(self, issue_key: IssueKey | str) -> LocalWorklogEntry:
        """Convert to the cached form, stored under the author's display name."""
        return LocalWorklogEntry(
            id=self.id,
            issue_key=issue_key if isinstance(issue_key, IssueKey) else IssueKey(issue_key),
            issue_id=self.issue_id,
            author=self.author.display_name,
            created=self.created.astimezone(),
            updated=self.updated.astimezone(),
            started=self.started.astimezone(),
            duration_seconds=max(self.time_spent_seconds, 0),
            duration_text=self.time_spent,
            comment=self.comment,
        )


@dataclass
class TimeTrackingConfiguration:
    """How the tracker converts days and weeks into hours."""

    working_hours_per_day: float = 7.5
    working_days_per_week: float = 5.0
    time_format: str = "pretty"
    default_unit: str = "minute"

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TimeTrackingConfiguration:
        options = data.get("timeTrackingConfiguration") or data
        return cls(
            working_hours_per_day=float(options.get("workingHoursPerDay", 7.5)),
            working_days_per_week=float(options.get("workingDaysPerWeek", 5.0)),
            time_format=options.get("timeFormat", "pretty"),
            default_unit=options.get("defaultUnit", "minute"),
        )


@dataclass
class NewIssue:
    """Identity of an issue just created on the tracker."""

    id: int
    key: IssueKey

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> NewIssue:
        return cls(id=int(data["id"]), key=IssueKey(data["key"]))


@dataclass
class WorklogFetchResult:
    """Outcome of a fan-out work log fetch."""

    worklogs: list[RemoteWorklog] = field(default_factory=list)
    # issue key -> error that stopped that issue's fetch
    failures: dict[str, Exception] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures


def issue_from_json(data: dict[str, Any]) -> IssueSummary:
    """Parse a search hit into an IssueSummary."""
    fields = data.get("fields") or {}
    return IssueSummary(
        id=int(data["id"]),
        key=IssueKey(data["key"]),
        summary=fields.get("summary", "") or "",
        components=[
            Component(id=int(c["id"]), name=c.get("name", ""))
            for c in fields.get("components") or []
        ],
    )


def user_from_json(data: dict[str, Any]) -> User:
    """Parse the ``/myself`` payload into a User."""
    return User(
        account_id=data["accountId"],
        email=data.get("emailAddress", "") or "",
        display_name=data.get("displayName", "") or "",
        time_zone=data.get("timeZone", "") or "",
    )
