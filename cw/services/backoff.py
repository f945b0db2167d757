"""Exponential backoff and retry for CloudWatch Logs calls."""

import logging
import random
import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TypeVar

from cw.core.config import settings
from cw.core.errors import RemoteTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cancelled(Exception):
    """Raised inside a worker when the shared stop signal is set."""


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff.

    ``delay(k)`` is ``min(base * factor**k, cap)``. With ``jitter`` the
    delay is drawn uniformly from ``[0, delay(k)]`` (full jitter).
    """

    base: float = 1.0
    factor: float = 2.0
    cap: float = 10.0
    max_retries: int = 5
    jitter: bool = False

    def delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        # factor**attempt can overflow float for long follow sessions
        try:
            raw = self.base * self.factor**attempt
        except OverflowError:
            return self.cap
        return min(raw, self.cap)

    def sleep_for(self, attempt: int) -> float:
        delay = self.delay(attempt)
        if self.jitter:
            return random.uniform(0, delay)
        return delay


def retry_policy() -> BackoffPolicy:
    """Policy for transient remote errors."""
    return BackoffPolicy(
        base=settings.retry_base_delay,
        factor=2.0,
        cap=settings.retry_max_delay,
        max_retries=settings.retry_max_attempts,
        jitter=True,
    )


def tail_policy() -> BackoffPolicy:
    """Policy for follow-mode waits between empty polls."""
    return BackoffPolicy(
        base=settings.tail_min_interval,
        factor=2.0,
        cap=settings.tail_max_interval,
    )


def query_poll_policy() -> BackoffPolicy:
    """Policy for the interval between query status polls."""
    return BackoffPolicy(
        base=settings.query_poll_interval,
        factor=2.0,
        cap=settings.query_poll_max_interval,
    )


def wait_or_cancel(stop: threading.Event | None, seconds: float) -> None:
    """Sleep ``seconds``, waking early and raising Cancelled on ``stop``."""
    if stop is None:
        stop = threading.Event()
    if stop.wait(seconds):
        raise Cancelled()


def call_with_retry(
    fn: Callable[[], T],
    policy: BackoffPolicy,
    stop: threading.Event | None = None,
    description: str = "request",
) -> T:
    """Call ``fn`` and retry RemoteTransientError with backoff.

    Any other exception propagates at once. After ``policy.max_retries``
    retries the last transient error is raised.
    """
    attempt = 0
    while True:
        if stop is not None and stop.is_set():
            raise Cancelled()
        try:
            return fn()
        except RemoteTransientError as e:
            if attempt >= policy.max_retries:
                logger.error(
                    f"{description} failed after {attempt + 1} attempts: {e}"
                )
                raise
            delay = policy.sleep_for(attempt)
            logger.warning(
                f"{description} failed ({e.code}), retrying in {delay:.2f}s"
            )
            attempt += 1
            wait_or_cancel(stop, delay)


class RecentIdentityWindow:
    """Fixed-capacity set of recently seen keys; the oldest are evicted."""

    def __init__(self, capacity: int = 10_000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: Hashable) -> bool:
        """Record ``key``. Returns False if it was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        if len(self._keys) > self.capacity:
            self._keys.popitem(last=False)
        return True
