"""
Tracker REST client.

Async access to the issue tracker's work log API over one shared
httpx.AsyncClient. Pagination is hidden from callers: every public method
returns complete results or raises a TrackerError subclass.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Generator, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from worklog.config import WorklogConfig
from worklog.exceptions import (
    NotFoundError,
    RateLimitedError,
    ServerFaultError,
    TrackerError,
    TransportError,
    UnauthorizedError,
)
from worklog.logging import TrackerLogEntry, now_iso, tracker_logger
from worklog.persistence.models import IssueKey, IssueSummary, User
from worklog.tracker.models import (
    NewIssue,
    RemoteWorklog,
    TimeTrackingConfiguration,
    WorklogFetchResult,
    format_tracker_timestamp,
    issue_from_json,
    user_from_json,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10
SEARCH_PAGE_SIZE = 100
WORKLOG_PAGE_SIZE = 5000
# Keys per JQL query, keeps the query string to a sane length
KEYS_PER_QUERY = 50
SEARCH_FIELDS = "id,key,summary,components"

# Per-issue failures recorded by chunked_work_logs instead of aborting the batch
ISSUE_LEVEL_ERRORS = (NotFoundError, ServerFaultError, TransportError)


class BearerAuth(httpx.Auth):
    """Personal access token sent as ``Authorization: Bearer``."""

    def __init__(self, token: str):
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


@dataclass(frozen=True)
class Credentials:
    """How requests authenticate: anonymous, basic (user + API token) or bearer."""

    scheme: str = "anonymous"
    user: str = ""
    token: str = ""

    @classmethod
    def anonymous(cls) -> Credentials:
        return cls()

    @classmethod
    def basic(cls, user: str, token: str) -> Credentials:
        return cls(scheme="basic", user=user, token=token)

    @classmethod
    def bearer(cls, token: str) -> Credentials:
        return cls(scheme="bearer", token=token)

    def as_auth(self) -> httpx.Auth | None:
        if self.scheme == "basic":
            return httpx.BasicAuth(self.user, self.token)
        if self.scheme == "bearer":
            return BearerAuth(self.token)
        return None

    def __repr__(self) -> str:
        return f"Credentials(scheme={self.scheme!r}, user={self.user!r})"


def _chunks(items: Sequence[str], size: int) -> Generator[Sequence[str], None, None]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _quote_jql(values: Iterable[str]) -> str:
    return ",".join(f'"{v}"' for v in values)


class TrackerClient:
    """
    Async client for the tracker's REST API.

    Usage:
        async with TrackerClient.from_config(config) as client:
            me = await client.get_current_user()
            issues = await client.search_issues(["TIME"], [], all_users=False)
            result = await client.chunked_work_logs([i.key for i in issues], since)

    Args:
        base_url: Tracker URL including the REST API path
        credentials: How to authenticate each request
        timeout: Per-request timeout in seconds
        max_concurrency: Upper bound on in-flight requests during fan-out
        transport: Optional httpx transport, used by tests to stub the server
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials | None = None,
        timeout: float = 30.0,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials or Credentials.anonymous()
        self.max_concurrency = max_concurrency
        self.worklog_page_size = WORKLOG_PAGE_SIZE
        self.search_page_size = SEARCH_PAGE_SIZE
        # API version 3 takes comments as rich-text documents
        self._rich_text = self.base_url.endswith("/3")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=self.credentials.as_auth(),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
            limits=httpx.Limits(
                max_connections=max_concurrency,
                max_keepalive_connections=max_concurrency,
            ),
        )

    @classmethod
    def from_config(
        cls,
        config: WorklogConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> TrackerClient:
        """Build a client from validated configuration."""
        if config.auth == "bearer":
            credentials = Credentials.bearer(config.token)
        elif config.token:
            credentials = Credentials.basic(config.user, config.token)
        else:
            credentials = Credentials.anonymous()
        return cls(
            config.api_base_url,
            credentials,
            timeout=config.request_timeout,
            max_concurrency=config.max_concurrency,
            transport=transport,
        )

    async def __aenter__(self) -> TrackerClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()
        logger.debug("Tracker HTTP client closed")

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send one request and decode the JSON body.

        Returns None for empty (e.g. 204) responses.
        """
        entry = TrackerLogEntry(
            timestamp=now_iso(),
            request_id=str(uuid.uuid4()),
            method=method,
            path=path,
            params={k: v for k, v in (params or {}).items() if k != "jql"},
        )
        start = time.monotonic()

        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.TransportError as e:
            entry.error = str(e)
            entry.error_type = type(e).__name__
            entry.latency_ms = int((time.monotonic() - start) * 1000)
            tracker_logger.error(entry.to_json())
            logger.warning(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise TransportError(
                f"Unable to reach tracker: {e}",
                {"method": method, "path": path, "error_type": type(e).__name__},
            ) from e

        entry.status_code = response.status_code
        entry.latency_ms = int((time.monotonic() - start) * 1000)

        try:
            self._raise_for_status(response)
        except TrackerError as e:
            entry.error = e.message
            entry.error_type = type(e).__name__
            tracker_logger.error(entry.to_json())
            raise

        tracker_logger.info(entry.to_json())
        logger.debug(f"{method} {path} -> {response.status_code} in {entry.latency_ms}ms")

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerFaultError(
                f"Unreadable response body from {method} {path}",
                code=response.status_code,
                body=response.text,
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Map a non-2xx response to the matching TrackerError."""
        status = response.status_code
        if status < 400:
            return
        url = str(response.request.url)
        if status == 401:
            raise UnauthorizedError(
                "Tracker rejected the credentials",
                {"url": url, "hint": "Check WORKLOG_USER and WORKLOG_TOKEN"},
            )
        if status == 404:
            raise NotFoundError(f"Not found: {url}", url=url)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                "Tracker rate limit hit",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        raise ServerFaultError(
            f"Tracker returned HTTP {status}",
            code=status,
            body=response.text,
        )

    def _comment_payload(self, comment: str) -> Any:
        if not self._rich_text:
            return comment
        return {
            "type": "doc",
            "version": 1,
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": line}]}
                for line in comment.splitlines()
                if line
            ],
        }

    # =========================================================================
    # USER AND SERVER SETTINGS
    # =========================================================================

    async def get_current_user(self) -> User:
        """The account the credentials belong to."""
        data = await self._request("GET", "/myself")
        return user_from_json(data)

    async def get_time_tracking_options(self) -> TimeTrackingConfiguration:
        """Working hours per day and days per week configured on the server."""
        data = await self._request("GET", "/configuration")
        return TimeTrackingConfiguration.from_json(data or {})

    # =========================================================================
    # ISSUES
    # =========================================================================

    async def search_issues(
        self,
        projects: Iterable[str] = (),
        issue_keys: Iterable[IssueKey | str] = (),
        all_users: bool = False,
    ) -> list[IssueSummary]:
        """
        Find issue summaries by key or by project.

        Explicit issue keys take precedence over projects. When searching by
        project without ``all_users``, only issues carrying a work log by the
        current user are returned.

        Returns:
            Issue summaries, each issue at most once. Empty when both
            filters are empty, without contacting the server.
        """
        keys = sorted({k.value if isinstance(k, IssueKey) else IssueKey(k).value for k in issue_keys})
        project_keys = sorted({p.strip().upper() for p in projects if p.strip()})

        if keys:
            queries = [f"issuekey in ({_quote_jql(chunk)})" for chunk in _chunks(keys, KEYS_PER_QUERY)]
        elif project_keys:
            jql = f"project in ({_quote_jql(project_keys)})"
            if not all_users:
                jql += " AND worklogAuthor = currentUser()"
            queries = [jql]
        else:
            logger.warning("search_issues called without projects or issue keys")
            return []

        found: dict[int, IssueSummary] = {}
        for jql in queries:
            for issue in await self._search_jql(jql):
                found.setdefault(issue.id, issue)

        logger.info(f"Found {len(found)} issues")
        return list(found.values())

    async def _search_jql(self, jql: str) -> list[IssueSummary]:
        """Follow ``nextPageToken`` until the server stops sending one."""
        issues: list[IssueSummary] = []
        seen_tokens: set[str] = set()
        params: dict[str, Any] = {
            "jql": jql,
            "maxResults": self.search_page_size,
            "fields": SEARCH_FIELDS,
        }

        while True:
            page = await self._request("GET", "/search/jql", params=params) or {}
            issues.extend(issue_from_json(item) for item in page.get("issues", []))

            token = page.get("nextPageToken")
            if not token or page.get("isLast") is True:
                break
            if token in seen_tokens:
                logger.warning(f"Search returned a repeated page token, stopping: {jql}")
                break
            seen_tokens.add(token)
            params["nextPageToken"] = token

        logger.debug(f"JQL '{jql}' returned {len(issues)} issues")
        return issues

    async def create_issue(
        self,
        project_key: str,
        summary: str,
        description: str | None = None,
        issue_type: str = "Task",
    ) -> NewIssue:
        """Create an issue and return its id and key."""
        fields: dict[str, Any] = {
            "project": {"key": project_key.strip().upper()},
            "summary": summary,
            "issuetype": {"name": issue_type},
        }
        if description:
            fields["description"] = self._comment_payload(description)
        data = await self._request("POST", "/issue", json={"fields": fields})
        created = NewIssue.from_json(data)
        logger.info(f"Created issue {created.key}")
        return created

    async def delete_issue(self, issue_key: IssueKey | str) -> None:
        await self._request("DELETE", f"/issue/{issue_key}")
        logger.info(f"Deleted issue {issue_key}")

    # =========================================================================
    # WORK LOGS
    # =========================================================================

    async def fetch_work_logs(
        self,
        issue_key: IssueKey | str,
        started_after: datetime,
    ) -> list[RemoteWorklog]:
        """
        All work logs of one issue started after ``started_after``.

        Walks ``startAt``/``maxResults`` pages. Stops on a short or empty
        page, once ``total`` is reached, or when the next offset would not
        advance.
        """
        path = f"/issue/{issue_key}/worklog"
        started_after_ms = int(started_after.timestamp() * 1000)
        start_at = 0
        worklogs: list[RemoteWorklog] = []

        while True:
            page = await self._request(
                "GET",
                path,
                params={
                    "startAt": start_at,
                    "maxResults": self.worklog_page_size,
                    "startedAfter": started_after_ms,
                },
            ) or {}
            items = page.get("worklogs", [])
            worklogs.extend(RemoteWorklog.from_json(item) for item in items)

            max_results = int(page.get("maxResults") or self.worklog_page_size)
            if not items or len(items) < max_results:
                break
            next_start = int(page.get("startAt", start_at)) + len(items)
            if next_start <= start_at:
                break
            total = page.get("total")
            if total is not None and next_start >= int(total):
                break
            start_at = next_start

        logger.debug(f"Fetched {len(worklogs)} work logs for {issue_key}")
        return worklogs

    async def chunked_work_logs(
        self,
        issue_keys: Iterable[IssueKey | str],
        started_after: datetime,
    ) -> WorklogFetchResult:
        """
        Fetch work logs for many issues with bounded concurrency.

        At most ``max_concurrency`` requests are in flight. An issue that
        fails with NotFound, a server fault or a transport error is recorded
        in ``failures`` and the others continue. Authentication and rate
        limit errors abort the whole batch.
        """
        keys = [str(k) for k in issue_keys]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _fetch(key: str) -> tuple[str, list[RemoteWorklog], Exception | None]:
            async with semaphore:
                try:
                    return key, await self.fetch_work_logs(key, started_after), None
                except ISSUE_LEVEL_ERRORS as e:
                    logger.warning(f"Skipping work logs for {key}: {e}")
                    return key, [], e

        tasks = [asyncio.ensure_future(_fetch(key)) for key in keys]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        outcome = WorklogFetchResult()
        for key, worklogs, error in results:
            if error is not None:
                outcome.failures[key] = error
            outcome.worklogs.extend(worklogs)

        logger.info(
            f"Fetched {len(outcome.worklogs)} work logs from {len(keys)} issues "
            f"({len(outcome.failures)} failed)"
        )
        return outcome

    async def get_worklog(self, issue_key: IssueKey | str, worklog_id: int) -> RemoteWorklog:
        data = await self._request("GET", f"/issue/{issue_key}/worklog/{worklog_id}")
        return RemoteWorklog.from_json(data)

    async def insert_work_log(
        self,
        issue_key: IssueKey | str,
        started: datetime,
        time_spent_seconds: int,
        comment: str = "",
    ) -> RemoteWorklog:
        """
        Record a work log on the tracker.

        Returns:
            The created record, including the id the tracker assigned
        """
        body: dict[str, Any] = {
            "timeSpentSeconds": int(time_spent_seconds),
            "started": format_tracker_timestamp(started),
        }
        if comment:
            body["comment"] = self._comment_payload(comment)

        data = await self._request("POST", f"/issue/{issue_key}/worklog", json=body)
        created = RemoteWorklog.from_json(data)
        logger.info(f"Added work log {created.id} to {issue_key} ({time_spent_seconds}s)")
        return created

    async def delete_work_log(self, issue_key_or_id: IssueKey | str | int, worklog_id: int) -> None:
        await self._request("DELETE", f"/issue/{issue_key_or_id}/worklog/{worklog_id}")
        logger.info(f"Deleted work log {worklog_id} from {issue_key_or_id}")
