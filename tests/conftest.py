"""Shared fixtures: temporary database, JSONL logs, and an in-memory tracker."""

import httpx
import pytest

from tests.fakes import BASE_URL, FakeTracker
from worklog.config import WorklogConfig
from worklog.logging import configure_logging, reset_loggers
from worklog.persistence.repository import WorklogRepository
from worklog.sync.reconciler import SyncReconciler
from worklog.timer import TimerEngine
from worklog.tracker.client import Credentials, TrackerClient


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path):
    """Send JSONL logs to a temporary directory."""
    configure_logging(WorklogConfig(log_dir=tmp_path / "logs"))
    yield tmp_path / "logs"
    reset_loggers()


@pytest.fixture
def repository(tmp_path):
    repo = WorklogRepository(tmp_path / "worklog.db")
    repo.initialize()
    yield repo
    repo.close()


@pytest.fixture
def fake_tracker():
    return FakeTracker()


@pytest.fixture
def client(fake_tracker):
    return TrackerClient(
        BASE_URL,
        Credentials.basic("me@example.com", "secret"),
        transport=httpx.MockTransport(fake_tracker.handler),
    )


@pytest.fixture
def reconciler(client, repository):
    return SyncReconciler(client, repository)


@pytest.fixture
def engine(client, repository, reconciler):
    return TimerEngine(client, repository, reconciler)
