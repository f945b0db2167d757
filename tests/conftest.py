"""Pytest configuration and fixtures."""

import os
import tempfile
import threading

# Settings are read at import time, so the environment goes first
_TMP_DIR = tempfile.mkdtemp(prefix="cw-tests-")
os.environ["CW_ENV"] = "test"
os.environ["CW_DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.sqlite3"
os.environ["XDG_DATA_HOME"] = os.path.join(_TMP_DIR, "data")
os.environ["XDG_CACHE_HOME"] = os.path.join(_TMP_DIR, "cache")
os.environ["CW_RETRY_BASE_DELAY"] = "0.001"
os.environ["CW_RETRY_MAX_DELAY"] = "0.005"
os.environ["CW_RETRY_MAX_ATTEMPTS"] = "3"
os.environ["CW_TAIL_MIN_INTERVAL"] = "0.01"
os.environ["CW_TAIL_MAX_INTERVAL"] = "0.05"
os.environ["CW_QUERY_POLL_INTERVAL"] = "0.001"
os.environ["CW_QUERY_POLL_MAX_INTERVAL"] = "0.005"

import pytest  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402

from cw.core.database import clean_database, close_db, create_tables  # noqa: E402
from cw.models import QueryHistory  # noqa: E402
from cw.services import HistoryService  # noqa: E402


def client_error(code: str, message: str = "boom", status: int = 400, operation: str = "Op"):
    """Build a botocore ClientError like the ones the SDK raises."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def create_test_run(
    run_id: str = "run-1",
    query_id: str = "definition-1",
    status: str = "Scheduled",
    contents: str = "fields @message",
) -> QueryHistory:
    """Helper function to record a query run with default values."""
    return HistoryService.upsert(
        QueryHistory(id=run_id, query_id=query_id, status=status, contents=contents)
    )


class FakeLogsClient:
    """In-memory stand-in for a boto3 ``logs`` client.

    Only the operations the application calls are implemented. Errors can be
    queued per operation (and optionally per group) with ``fail``.
    """

    def __init__(self):
        self.groups: dict[str, dict] = {}
        self.streams: dict[str, list[dict]] = {}
        self.events: dict[str, list[dict]] = {}
        self.page_size = 10_000
        self.calls: list[tuple[str, dict]] = []
        self._failures: list[tuple[str, str | None, Exception]] = []
        self._lock = threading.Lock()
        self._event_counter = 0

        # Logs Insights
        self.query_statuses: list[str] = ["Complete"]
        self.query_result_pages: list[list[list[dict]]] = [[]]
        self.query_statistics: dict[str, float] = {}
        self.started_queries: list[dict] = []
        self.stopped_queries: list[str] = []

    # Setup helpers

    def add_group(self, name: str, retention: int | None = None, streams=()):
        group = {"logGroupName": name}
        if retention is not None:
            group["retentionInDays"] = retention
        self.groups[name] = group
        self.streams.setdefault(name, [])
        self.events.setdefault(name, [])
        for stream in streams:
            self.add_stream(name, stream)

    def add_stream(self, group: str, name: str, last_event: int | None = None):
        stream = {"logStreamName": name}
        if last_event is not None:
            stream["lastEventTimestamp"] = last_event
        self.streams[group].append(stream)

    def add_event(
        self,
        group: str,
        stream: str,
        timestamp: int,
        message: str | None = None,
        event_id: str | None = None,
    ) -> dict:
        with self._lock:
            self._event_counter += 1
            event = {
                "logStreamName": stream,
                "timestamp": timestamp,
                "message": message if message is not None else f"message {timestamp}",
                "eventId": event_id or f"{stream}-{self._event_counter}",
                "ingestionTime": timestamp,
            }
            self.events[group].append(event)
        return event

    def fail(self, operation: str, error: Exception, times: int = 1, group: str | None = None):
        for _ in range(times):
            self._failures.append((operation, group, error))

    def calls_to(self, operation: str) -> list[dict]:
        return [params for op, params in self.calls if op == operation]

    def _record(self, operation: str, params: dict, group: str | None = None):
        with self._lock:
            self.calls.append((operation, dict(params)))
            for index, (op, failing_group, error) in enumerate(self._failures):
                if op == operation and failing_group in (None, group):
                    del self._failures[index]
                    raise error

    @staticmethod
    def _page(items: list, token: str | None, size: int) -> tuple[list, str | None]:
        start = int(token) if token else 0
        end = start + size
        return items[start:end], (str(end) if end < len(items) else None)

    # Describe calls

    def describe_log_groups(self, **params):
        self._record("describe_log_groups", params)
        prefix = params.get("logGroupNamePrefix")
        pattern = params.get("logGroupNamePattern")
        names = sorted(self.groups)
        if prefix:
            names = [n for n in names if n.startswith(prefix)]
        if pattern:
            names = [n for n in names if pattern in n]
        page, token = self._page(names, params.get("nextToken"), params.get("limit", 50))
        response = {"logGroups": [self.groups[n] for n in page]}
        if token:
            response["nextToken"] = token
        return response

    def describe_log_streams(self, **params):
        group = params["logGroupName"]
        self._record("describe_log_streams", params, group)
        if group not in self.groups:
            raise client_error("ResourceNotFoundException", "The specified log group does not exist.")
        streams = list(self.streams[group])
        prefix = params.get("logStreamNamePrefix")
        if prefix:
            streams = [s for s in streams if s["logStreamName"].startswith(prefix)]
        if params.get("orderBy") == "LastEventTime":
            streams.sort(
                key=lambda s: s.get("lastEventTimestamp") or 0,
                reverse=params.get("descending", False),
            )
        page, token = self._page(streams, params.get("nextToken"), params.get("limit", 50))
        response = {"logStreams": page}
        if token:
            response["nextToken"] = token
        return response

    # Events

    def filter_log_events(self, **params):
        group = params["logGroupName"]
        self._record("filter_log_events", params, group)
        if group not in self.groups:
            raise client_error("ResourceNotFoundException", "The specified log group does not exist.")

        with self._lock:
            events = list(self.events[group])
        start = params.get("startTime", 0)
        end = params.get("endTime")
        streams = params.get("logStreamNames")
        pattern = params.get("filterPattern")
        matched = [
            e
            for e in events
            if e["timestamp"] >= start
            and (end is None or e["timestamp"] < end)
            and (not streams or e["logStreamName"] in streams)
            and (not pattern or pattern in e["message"])
        ]
        matched.sort(key=lambda e: e["timestamp"])

        size = min(self.page_size, params.get("limit", self.page_size))
        page, token = self._page(matched, params.get("nextToken"), size)
        response = {"events": page, "searchedLogStreams": []}
        if token:
            response["nextToken"] = token
        return response

    # Logs Insights

    def start_query(self, **params):
        self._record("start_query", params)
        self.started_queries.append(params)
        return {"queryId": f"query-{len(self.started_queries)}"}

    def get_query_results(self, **params):
        self._record("get_query_results", params)
        token = params.get("nextToken")
        if token:
            index = int(token)
            response = {"status": "Complete", "results": self.query_result_pages[index]}
            if index + 1 < len(self.query_result_pages):
                response["nextToken"] = str(index + 1)
            return response

        with self._lock:
            status = self.query_statuses[0]
            if len(self.query_statuses) > 1:
                self.query_statuses.pop(0)

        response = {"status": status, "statistics": dict(self.query_statistics), "results": []}
        if status == "Complete":
            response["results"] = self.query_result_pages[0]
            if len(self.query_result_pages) > 1:
                response["nextToken"] = "1"
        return response

    def stop_query(self, **params):
        self._record("stop_query", params)
        self.stopped_queries.append(params["queryId"])
        return {"success": True}


def result_row(**fields) -> list[dict]:
    """A Logs Insights result row from keyword fields."""
    return [{"field": name, "value": value} for name, value in fields.items()]


@pytest.fixture(autouse=True, scope="function")
def clean_db():
    """Initialize and clean database for each test."""
    create_tables()

    # Clean all tables before test to ensure isolation
    clean_database()

    yield

    # Close DB connections
    close_db()


@pytest.fixture
def fake_client():
    """A fresh in-memory logs client."""
    return FakeLogsClient()
