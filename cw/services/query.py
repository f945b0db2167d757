"""Logs Insights query execution and tracking."""

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from cw.core.errors import (
    NotFoundError,
    QueryFailedError,
    RemoteError,
    RemoteRejectedError,
    ValidationError,
)
from cw.models import QueryHistory, QueryStatus
from cw.services.aws_client import invoke
from cw.services.backoff import (
    BackoffPolicy,
    Cancelled,
    call_with_retry,
    query_poll_policy,
    retry_policy,
    wait_or_cancel,
)
from cw.services.history import HistoryService

logger = logging.getLogger(__name__)


def definition_id(query_text: str) -> str:
    """Stable identifier for a query text, ignoring whitespace layout."""
    normalized = " ".join(query_text.split())
    return hashlib.sha256(normalized.encode()).hexdigest()[:32]


@dataclass
class QueryPoll:
    """Outcome of one status poll."""

    run_id: str
    status: QueryStatus
    results: list[dict[str, str]] | None = None
    statistics: dict[str, float] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class QueryRunner:
    """Submits a query, polls it to completion and records each step.

    The logs client and the history store are injected so tests can pass
    fakes. One runner tracks runs sequentially.
    """

    def __init__(
        self,
        client,
        history=HistoryService,
        retry: BackoffPolicy | None = None,
        poll_policy: BackoffPolicy | None = None,
        stop: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        account: str | None = None,
    ):
        self.client = client
        self.history = history
        self.retry = retry or retry_policy()
        self.poll_policy = poll_policy or query_poll_policy()
        self.stop = stop or threading.Event()
        self.clock = clock
        self.account = account

    def _call(self, operation: str, **params) -> dict:
        return call_with_retry(
            lambda: invoke(self.client, operation, **params),
            self.retry,
            self.stop,
            description=operation,
        )

    def submit(
        self,
        query_text: str,
        group_names: list[str],
        start_time: int,
        end_time: int,
        query_id: str | None = None,
    ) -> str:
        """Start a query and record it as Scheduled.

        Args:
            query_text: Logs Insights query
            group_names: Log groups to query
            start_time: Range start, epoch milliseconds
            end_time: Range end, epoch milliseconds
            query_id: Query definition id (defaults to a digest of the text)

        Returns:
            The run id issued by CloudWatch

        Raises:
            ValidationError: If the query, groups or time range are empty
            RemoteError: If the service rejects the query
            StoreError: If the run cannot be recorded
        """
        if not query_text.strip():
            raise ValidationError("The query is empty")
        if not group_names:
            raise ValidationError("At least one log group is required")
        if start_time >= end_time:
            raise ValidationError("The time range is empty: start must be before end")

        # StartQuery takes seconds
        response = self._call(
            "start_query",
            logGroupNames=list(group_names),
            queryString=query_text,
            startTime=start_time // 1000,
            endTime=-(-end_time // 1000),
        )
        run_id = response.get("queryId")
        if not run_id:
            raise RemoteError("StartQuery did not return a query id")

        logger.info(f"Collecting events for query with id {run_id}")
        self.history.upsert(
            QueryHistory(
                id=run_id,
                query_id=query_id or definition_id(query_text),
                account=self.account,
                status=QueryStatus.SUBMITTED.transition_to(QueryStatus.SCHEDULED).value,
                contents=query_text,
            )
        )
        return run_id

    def poll(self, run_id: str) -> QueryPoll:
        """Check a run once and record what the service reports.

        Non-terminal polls refresh the partial statistics. A terminal poll
        collects every result page and records the final statistics.
        """
        record = self.history.get_run(run_id)
        current = record.query_status
        if current.is_terminal:
            return QueryPoll(run_id, current)

        response = self._call("get_query_results", queryId=run_id)
        remote = QueryStatus.from_remote(response.get("status"))
        statistics = response.get("statistics") or {}

        if remote is None:
            logger.warning(
                f"[{run_id}] unexpected status {response.get('status')!r}, still waiting"
            )
            remote = current

        # The service may briefly report an earlier state; never go back
        status = remote if current.can_transition_to(remote) else current

        results = None
        if status is QueryStatus.COMPLETE:
            results = self._collect_results(run_id, response)
            record.records_total = len(results)

        record.status = status.value
        record.records_matched = statistics.get("recordsMatched", record.records_matched)
        record.records_scanned = statistics.get("recordsScanned", record.records_scanned)
        record.bytes_scanned = statistics.get("bytesScanned", record.bytes_scanned)
        self.history.upsert(record)

        logger.info(f"[{run_id}] status: {status}")
        return QueryPoll(run_id, status, results, dict(statistics))

    def _collect_results(self, run_id: str, response: dict) -> list[dict[str, str]]:
        rows = [self._to_row(line) for line in response.get("results", [])]
        token = response.get("nextToken")
        while token:
            page = self._call("get_query_results", queryId=run_id, nextToken=token)
            rows.extend(self._to_row(line) for line in page.get("results", []))
            token = page.get("nextToken")
        return rows

    @staticmethod
    def _to_row(line: list[dict]) -> dict[str, str]:
        return {cell["field"]: cell.get("value", "") for cell in line if cell.get("field")}

    def wait(self, run_id: str, timeout: float | None = None) -> QueryPoll:
        """Poll until the run finishes.

        Args:
            run_id: Run to wait for
            timeout: Wall-clock limit in seconds, None for no limit

        Returns:
            The Complete poll with all result rows

        Raises:
            QueryFailedError: If the run fails, is cancelled or times out
            Cancelled: If the stop signal is set; the run is cancelled first
        """
        deadline = None if timeout is None else self.clock() + timeout
        attempt = 0

        try:
            while True:
                result = self.poll(run_id)
                if result.is_terminal:
                    if result.status is not QueryStatus.COMPLETE:
                        raise QueryFailedError(run_id, result.status)
                    return result

                delay = self.poll_policy.delay(attempt)
                attempt += 1
                if deadline is not None:
                    remaining = deadline - self.clock()
                    if remaining <= 0:
                        self._abandon(run_id, QueryStatus.TIMED_OUT)
                        raise QueryFailedError(
                            run_id,
                            QueryStatus.TIMED_OUT,
                            f"no result within {timeout}s",
                        )
                    delay = min(delay, remaining)

                wait_or_cancel(self.stop, delay)
        except (Cancelled, KeyboardInterrupt):
            self._abandon(run_id, QueryStatus.CANCELLED)
            raise

    def cancel(self, run_id: str) -> bool:
        """Ask the service to stop a run.

        Returns:
            True if the service acknowledged and the run is now Cancelled,
            False if the run had already finished or the request was refused
        """
        record = self.history.get_run(run_id)
        if record.query_status.is_terminal:
            logger.info(f"[{run_id}] already {record.status}, not cancelling")
            return False

        try:
            response = self._call("stop_query", queryId=run_id)
        except RemoteRejectedError as e:
            logger.warning(f"[{run_id}] cancel refused: {e}")
            return False

        if not response.get("success"):
            return False

        record.status = QueryStatus.CANCELLED.value
        self.history.upsert(record)
        logger.info(f"[{run_id}] cancelled")
        return True

    def _abandon(self, run_id: str, status: QueryStatus) -> None:
        """Record a local terminal status, then fire one remote stop."""
        record = self.history.get_run(run_id)
        if record.query_status.is_terminal:
            return
        record.status = status.value
        self.history.upsert(record)

        try:
            invoke(self.client, "stop_query", queryId=run_id)
        except (RemoteError, NotFoundError) as e:
            logger.warning(f"[{run_id}] best-effort cancel failed: {e}")

    def run(
        self,
        query_text: str,
        group_names: list[str],
        start_time: int,
        end_time: int,
        timeout: float | None = None,
        query_id: str | None = None,
    ) -> QueryPoll:
        """Submit a query and wait for its results."""
        run_id = self.submit(query_text, group_names, start_time, end_time, query_id)
        result = self.wait(run_id, timeout)

        record = self.history.get_run(run_id)
        elapsed = record.modified_at - record.created_at
        logger.info(
            f"[{run_id}] showing: {record.records_total} of "
            f"{record.records_matched} records matched."
        )
        logger.info(
            f"[{run_id}] {record.records_scanned} records "
            f"({record.bytes_scanned} bytes) scanned in {elapsed.total_seconds():.3f}s."
        )
        return result
