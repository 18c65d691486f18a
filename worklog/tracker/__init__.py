"""
Tracker integration - async REST client and remote payload models.
"""

from worklog.tracker.client import BearerAuth, Credentials, TrackerClient
from worklog.tracker.models import (
    Author,
    NewIssue,
    RemoteWorklog,
    TimeTrackingConfiguration,
    WorklogFetchResult,
)

__all__ = [
    "TrackerClient",
    "Credentials",
    "BearerAuth",
    "Author",
    "NewIssue",
    "RemoteWorklog",
    "TimeTrackingConfiguration",
    "WorklogFetchResult",
]
