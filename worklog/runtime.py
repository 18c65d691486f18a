"""
Worklog - Application runtime

Builds the tracker client, repository and services once from a validated
config and hands the same instances to every command.
"""

from __future__ import annotations

import logging

import httpx

from worklog.config import WorklogConfig
from worklog.entry import ManualEntryService
from worklog.logging import configure_logging
from worklog.persistence.repository import WorklogRepository
from worklog.sync.reconciler import SyncReconciler
from worklog.timer import TimerEngine
from worklog.tracker.client import TrackerClient

logger = logging.getLogger(__name__)


class ApplicationRuntime:
    """
    Wires configuration, client, repository and services together.

    Usage:
        async with ApplicationRuntime(config) as runtime:
            report = await runtime.reconciler.sync(issues=["TIME-147"])

    Raises:
        ConfigError: From construction, before any network or database access
    """

    def __init__(
        self,
        config: WorklogConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config.validate()
        configure_logging(config)
        self.config = config
        self.repository = WorklogRepository(config.db_path)
        self.client = TrackerClient.from_config(config, transport=transport)
        self.reconciler = SyncReconciler(self.client, self.repository)
        self.timers = TimerEngine(self.client, self.repository, self.reconciler)
        self.entries = ManualEntryService(self.client, self.reconciler, config)

    async def __aenter__(self) -> ApplicationRuntime:
        self.repository.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the HTTP pool and the database connection."""
        try:
            await self.client.aclose()
        finally:
            self.repository.close()
        logger.debug("Runtime closed")
