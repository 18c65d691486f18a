"""In-memory tracker server and payload builders for tests."""

import asyncio
import json
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx

API_PREFIX = "/rest/api/latest"
BASE_URL = f"https://tracker.test{API_PREFIX}"

ME = {
    "accountId": "acc-me",
    "emailAddress": "me@example.com",
    "displayName": "Me Myself",
    "timeZone": "Europe/Oslo",
}
OTHER = {"accountId": "acc-other", "emailAddress": "other@example.com", "displayName": "Someone Else"}


def tracker_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000+0000")


def _epoch_ms(text: str) -> int:
    return int(datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%f%z").timestamp() * 1000)


def make_worklog(
    worklog_id: int,
    issue_id: int,
    author: dict | None = None,
    started: datetime | None = None,
    seconds: int = 3600,
    comment: str | None = "worked",
) -> dict:
    started = started or datetime.now(timezone.utc) - timedelta(days=1)
    data = {
        "id": str(worklog_id),
        "issueId": str(issue_id),
        "author": author or ME,
        "created": tracker_time(started),
        "updated": tracker_time(started),
        "started": tracker_time(started),
        "timeSpent": f"{seconds // 3600}h",
        "timeSpentSeconds": seconds,
    }
    if comment is not None:
        data["comment"] = comment
    return data


class FakeTracker:
    """
    Minimal tracker REST server for httpx.MockTransport.

    Issues are keyed by key; work logs are kept per issue key in insertion
    order. Pages honour startAt/maxResults and nextPageToken.
    """

    def __init__(self):
        self.user = dict(ME)
        self.issues: dict[str, dict] = {}
        self.worklogs: dict[str, list[dict]] = {}
        self.search_page_size = 2
        self.worklog_page_cap: int | None = None
        self.failures: dict[str, int] = {}
        self.status_override: int | None = None
        self.requests: list[httpx.Request] = []
        self.inserted: list[dict] = []
        self.deleted: list[tuple[str, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fetch_delay = 0.0
        self._next_worklog_id = 90000

    # -- setup helpers ---------------------------------------------------------

    def add_issue(self, issue_id: int, key: str, summary: str = "", components=()) -> dict:
        issue = {
            "id": str(issue_id),
            "key": key,
            "fields": {
                "summary": summary or f"Summary of {key}",
                "components": [{"id": str(c_id), "name": name} for c_id, name in components],
            },
        }
        self.issues[key] = issue
        self.worklogs.setdefault(key, [])
        return issue

    def add_worklogs(self, key: str, *worklogs: dict) -> None:
        self.worklogs.setdefault(key, []).extend(worklogs)

    def count(self, method: str, pattern: str) -> int:
        return sum(
            1 for r in self.requests if r.method == method and re.search(pattern, r.url.path)
        )

    # -- request handling ------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override is not None:
            return httpx.Response(self.status_override, text="overridden")

        path = request.url.path[len(API_PREFIX):]
        params = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}

        if path == "/myself" and request.method == "GET":
            return httpx.Response(200, json=self.user)
        if path == "/configuration" and request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "timeTrackingConfiguration": {
                        "workingHoursPerDay": 7.5,
                        "workingDaysPerWeek": 5.0,
                        "timeFormat": "pretty",
                        "defaultUnit": "minute",
                    }
                },
            )
        if path == "/search/jql" and request.method == "GET":
            return self._search(params)

        match = re.fullmatch(r"/issue/([^/]+)/worklog", path)
        if match and request.method == "GET":
            return await self._worklogs(match.group(1), params)
        if match and request.method == "POST":
            return self._insert(match.group(1), json.loads(request.content))

        match = re.fullmatch(r"/issue/([^/]+)/worklog/(\d+)", path)
        if match and request.method == "GET":
            found = self._find_worklog(match.group(1), match.group(2))
            if found is None:
                return httpx.Response(404, json={"errorMessages": ["Cannot find worklog"]})
            return httpx.Response(200, json=found)
        if match and request.method == "DELETE":
            found = self._find_worklog(match.group(1), match.group(2))
            if found is not None:
                self.worklogs[match.group(1)].remove(found)
            self.deleted.append((match.group(1), int(match.group(2))))
            return httpx.Response(204)

        return httpx.Response(404, json={"errorMessages": ["no route"]})

    def _search(self, params: dict) -> httpx.Response:
        jql = params["jql"]
        keys_clause = re.search(r"issuekey in \(([^)]*)\)", jql)
        projects_clause = re.search(r"project in \(([^)]*)\)", jql)

        def _values(clause):
            return [v.strip().strip('"') for v in clause.group(1).split(",")]

        if keys_clause:
            wanted = set(_values(keys_clause))
            hits = [issue for key, issue in self.issues.items() if key in wanted]
        elif projects_clause:
            projects = set(_values(projects_clause))
            hits = [issue for key, issue in self.issues.items() if key.split("-")[0] in projects]
            if "currentUser()" in jql:
                hits = [
                    issue
                    for issue in hits
                    if any(w["author"]["accountId"] == self.user["accountId"] for w in self.worklogs[issue["key"]])
                ]
        else:
            return httpx.Response(400, json={"errorMessages": ["bad jql"]})

        start = int(params.get("nextPageToken", 0))
        page = hits[start : start + self.search_page_size]
        body: dict = {"issues": page}
        if start + self.search_page_size < len(hits):
            body["nextPageToken"] = str(start + self.search_page_size)
        return httpx.Response(200, json=body)

    async def _worklogs(self, key: str, params: dict) -> httpx.Response:
        if key in self.failures:
            return httpx.Response(self.failures[key], text="failure")
        if key not in self.worklogs:
            return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.fetch_delay:
                await asyncio.sleep(self.fetch_delay)
        finally:
            self.in_flight -= 1

        start_at = int(params.get("startAt", 0))
        max_results = int(params.get("maxResults", 5000))
        if self.worklog_page_cap is not None:
            max_results = min(max_results, self.worklog_page_cap)
        started_after = int(params.get("startedAfter", 0))
        items = [w for w in self.worklogs[key] if _epoch_ms(w["started"]) >= started_after]
        page = items[start_at : start_at + max_results]
        return httpx.Response(
            200,
            json={"startAt": start_at, "maxResults": max_results, "total": len(items), "worklogs": page},
        )

    def _find_worklog(self, key: str, worklog_id: str) -> dict | None:
        return next((w for w in self.worklogs.get(key, []) if w["id"] == worklog_id), None)

    def _insert(self, key: str, body: dict) -> httpx.Response:
        issue = self.issues.get(key)
        if issue is None:
            return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
        self._next_worklog_id += 1
        started = datetime.strptime(body["started"], "%Y-%m-%dT%H:%M:%S.%f%z")
        created = make_worklog(
            self._next_worklog_id,
            int(issue["id"]),
            author=self.user,
            started=started,
            seconds=body["timeSpentSeconds"],
            comment=body.get("comment"),
        )
        self.inserted.append(body)
        self.worklogs[key].append(created)
        return httpx.Response(201, json=created)
