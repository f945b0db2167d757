"""Concurrent tailing of several log sources into one ordered stream."""

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from cw.core.errors import AuthError, FetchError, TailError, ValidationError
from cw.models import FetchTarget, LogEvent
from cw.services.backoff import (
    BackoffPolicy,
    Cancelled,
    RecentIdentityWindow,
    retry_policy,
    tail_policy,
)
from cw.services.fetcher import PAGE_LIMIT, EventFetcher

logger = logging.getLogger(__name__)

# How long blocking calls wait before re-checking the stop signal
STOP_CHECK_INTERVAL = 0.1


class TargetState(Enum):
    POLLING = "polling"
    WAITING = "waiting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _Source:
    target: FetchTarget
    queue: queue.Queue
    buffer: deque = field(default_factory=deque)
    state: TargetState = TargetState.POLLING
    thread: threading.Thread | None = None

    @property
    def finished(self) -> bool:
        return self.state in (TargetState.DONE, TargetState.FAILED)


class TailEngine:
    """Tails a set of targets and merges them by timestamp.

    Each target is polled by its own worker thread, which writes into a
    bounded queue. ``events()`` runs the merge in the caller's thread and
    always emits the earliest buffered event, breaking timestamp ties by
    group name, stream name and event id. A target that is still fetching
    and has nothing buffered holds the merge back; a target that is waiting
    out its backoff does not.
    """

    def __init__(
        self,
        client,
        targets: list[FetchTarget],
        start_time: int,
        end_time: int | None = None,
        filter_pattern: str | None = None,
        follow: bool = False,
        backoff: BackoffPolicy | None = None,
        retry: BackoffPolicy | None = None,
        on_error: Callable[[FetchTarget, FetchError], None] | None = None,
        queue_size: int = 1000,
        window_size: int = PAGE_LIMIT,
    ):
        if not targets:
            raise ValidationError("At least one log source is required")
        if follow and end_time is not None:
            raise ValidationError("You can not use --end-time together with --follow!")
        if end_time is not None and end_time <= start_time:
            raise ValidationError("The end time must be after the start time")

        self.client = client
        self.targets = targets
        self.start_time = start_time
        self.end_time = end_time
        self.filter_pattern = filter_pattern
        self.follow = follow
        self.backoff = backoff or tail_policy()
        self.retry = retry or retry_policy()
        self.on_error = on_error
        self.window_size = window_size
        self.failures: list[FetchError] = []

        self._stop = threading.Event()
        self._activity = threading.Event()
        self._seen = RecentIdentityWindow(window_size)
        self._sources = [
            _Source(target=t, queue=queue.Queue(maxsize=queue_size)) for t in targets
        ]

    def __enter__(self) -> "TailEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal every worker to stop and wait for them to exit."""
        self._stop.set()
        self._activity.set()
        for source in self._sources:
            if source.thread is not None and source.thread.is_alive():
                source.thread.join(timeout=timeout)

    def events(self) -> Iterator[LogEvent]:
        """Yield merged, deduplicated events until all targets finish.

        Raises:
            AuthError: As soon as any target's credentials are rejected
            TailError: If every target failed
        """
        self._start_workers()
        try:
            while not self._stop.is_set():
                for source in self._sources:
                    self._fill(source)

                blocking = [
                    s
                    for s in self._sources
                    if s.state is TargetState.POLLING and not s.buffer
                ]
                if blocking:
                    self._receive(blocking[0])
                    continue

                ready = [s for s in self._sources if s.buffer]
                if ready:
                    source = min(ready, key=lambda s: s.buffer[0].sort_key)
                    event = source.buffer.popleft()
                    if self._seen.add(event.identity):
                        yield event
                    continue

                if all(s.finished for s in self._sources):
                    break

                # Every live target is waiting out its backoff
                self._activity.wait(STOP_CHECK_INTERVAL * 5)
                self._activity.clear()
        finally:
            self.stop()

        if self.failures and len(self.failures) == len(self._sources):
            raise TailError(self.failures)

    def _start_workers(self) -> None:
        for source in self._sources:
            source.thread = threading.Thread(
                target=self._worker,
                args=(source,),
                name=f"tail-{source.target}",
                daemon=True,
            )
            source.thread.start()
        logger.info(
            f"Tailing {len(self._sources)} target(s), follow={self.follow}, "
            f"filter={self.filter_pattern!r}"
        )

    def _fill(self, source: _Source) -> None:
        """Move queued messages into an empty buffer without blocking."""
        while not source.buffer and not source.finished:
            try:
                message = source.queue.get_nowait()
            except queue.Empty:
                return
            self._apply(source, message)

    def _receive(self, source: _Source) -> None:
        try:
            message = source.queue.get(timeout=STOP_CHECK_INTERVAL)
        except queue.Empty:
            return
        self._apply(source, message)

    def _apply(self, source: _Source, message: tuple) -> None:
        kind, payload = message
        if kind == "event":
            source.buffer.append(payload)
            if source.state is TargetState.WAITING:
                source.state = TargetState.POLLING
        elif kind == "idle":
            source.state = TargetState.WAITING
        elif kind == "done":
            source.state = TargetState.DONE
        elif kind == "error":
            source.state = TargetState.FAILED
            self._report(source.target, payload)

    def _report(self, target: FetchTarget, error: FetchError) -> None:
        if isinstance(error.cause, AuthError):
            logger.error(f"Credentials rejected while tailing {target}: {error.cause}")
            self._stop.set()
            raise error.cause from error

        logger.error(f"Tailing {target} failed: {error}")
        self.failures.append(error)
        if self.on_error is not None:
            self.on_error(target, error)

    def _put(self, source: _Source, message: tuple) -> None:
        while True:
            if self._stop.is_set():
                raise Cancelled()
            try:
                source.queue.put(message, timeout=STOP_CHECK_INTERVAL)
            except queue.Full:
                continue
            self._activity.set()
            return

    def _worker(self, source: _Source) -> None:
        target = source.target
        fetcher = EventFetcher(
            self.client,
            target,
            self.start_time,
            retry=self.retry,
            stop=self._stop,
            window_size=self.window_size,
        )
        logger.info(f"Starting tail worker for {target}")

        try:
            events = fetcher.fetch(
                self.filter_pattern,
                end_time=self.end_time,
                follow=self.follow,
                backoff=self.backoff,
                on_idle=lambda: self._put(source, ("idle", None)),
            )
            for event in events:
                self._put(source, ("event", event))
            if not self.follow:
                self._put(source, ("done", None))
        except Cancelled:
            logger.debug(f"Tail worker for {target} cancelled")
        except FetchError as e:
            self._send_error(source, e)
        except Exception as e:
            logger.exception(f"Unexpected error tailing {target}")
            self._send_error(source, FetchError(target, e))

    def _send_error(self, source: _Source, error: FetchError) -> None:
        try:
            self._put(source, ("error", error))
        except Cancelled:
            pass
