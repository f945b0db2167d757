"""Paginated event retrieval for a single fetch target."""

import logging
import threading
from collections.abc import Callable, Iterator

from cw.core.errors import FetchError, NotFoundError, RemoteError
from cw.models import FetchTarget, LogEvent
from cw.services.aws_client import invoke
from cw.services.backoff import (
    BackoffPolicy,
    RecentIdentityWindow,
    call_with_retry,
    retry_policy,
    tail_policy,
    wait_or_cancel,
)

logger = logging.getLogger(__name__)

# Default page size of FilterLogEvents, also its maximum
PAGE_LIMIT = 10_000


class EventFetcher:
    """Fetches filtered log events for one target.

    The fetcher keeps a time watermark and a window of recently returned
    event identities. The watermark is inclusive, so a pass re-reads the
    newest millisecond of the previous pass; the window drops those repeats
    while still catching events that landed in that millisecond late.
    """

    def __init__(
        self,
        client,
        target: FetchTarget,
        start_time: int,
        retry: BackoffPolicy | None = None,
        stop: threading.Event | None = None,
        window_size: int = PAGE_LIMIT,
    ):
        self.client = client
        self.target = target
        self.start_time = start_time
        self.retry = retry or retry_policy()
        self.stop = stop or threading.Event()
        self.seen = RecentIdentityWindow(window_size)
        self.next_token: str | None = None

    def _request(self, filter_pattern: str | None, end_time: int | None) -> dict:
        params = {
            "logGroupName": self.target.group_name,
            "startTime": self.start_time,
            "limit": PAGE_LIMIT,
        }
        if self.target.stream_name:
            params["logStreamNames"] = [self.target.stream_name]
        if filter_pattern:
            params["filterPattern"] = filter_pattern
        if end_time is not None:
            params["endTime"] = end_time
        if self.next_token:
            params["nextToken"] = self.next_token

        return call_with_retry(
            lambda: invoke(self.client, "filter_log_events", **params),
            self.retry,
            self.stop,
            description=f"filter_log_events {self.target}",
        )

    def pages(
        self, filter_pattern: str | None = None, end_time: int | None = None
    ) -> Iterator[list[LogEvent]]:
        """Yield the new events of one pass, page by page.

        Raises:
            FetchError: If the target cannot be read
            Cancelled: If the stop signal is set
        """
        self.next_token = None
        newest = self.start_time
        while True:
            try:
                response = self._request(filter_pattern, end_time)
            except (RemoteError, NotFoundError) as e:
                raise FetchError(self.target, e) from e

            page = []
            for raw in response.get("events", []):
                event = LogEvent.from_filtered_event(self.target.group_name, raw)
                newest = max(newest, event.timestamp)
                if self.seen.add(event.identity):
                    page.append(event)
            yield page

            self.next_token = response.get("nextToken")
            if not self.next_token:
                break

        self.start_time = newest

    def poll(
        self, filter_pattern: str | None = None, end_time: int | None = None
    ) -> list[LogEvent]:
        """Run one full pass and return its new events in order."""
        events = [e for page in self.pages(filter_pattern, end_time) for e in page]
        events.sort(key=lambda e: e.sort_key)
        logger.debug(f"{self.target}: {len(events)} new event(s), watermark {self.start_time}")
        return events

    def fetch(
        self,
        filter_pattern: str | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
        follow: bool = False,
        backoff: BackoffPolicy | None = None,
        on_idle: Callable[[], None] | None = None,
    ) -> Iterator[LogEvent]:
        """Lazily yield events, each page in order.

        One-shot mode makes a single pass over ``[start_time, end_time)``.
        Follow mode repeats passes until the stop signal is set, calling
        ``on_idle`` after every pass and waiting with ``backoff`` after
        passes that found nothing.
        """
        if start_time is not None:
            self.start_time = start_time
        backoff = backoff or tail_policy()
        empty_polls = 0

        while True:
            found = 0
            for page in self.pages(filter_pattern, end_time):
                page.sort(key=lambda e: e.sort_key)
                found += len(page)
                yield from page
            if not follow:
                return

            if on_idle is not None:
                on_idle()
            if found:
                empty_polls = 0
                continue
            delay = backoff.delay(empty_polls)
            empty_polls += 1
            logger.debug(f"{self.target}: reached end of stream, sleeping {delay}s")
            wait_or_cancel(self.stop, delay)
