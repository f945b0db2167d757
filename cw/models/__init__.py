"""Database and domain models."""

from .log_event import FetchTarget, LogEvent
from .query_history import QueryHistory
from .status import QueryStatus

__all__ = ["FetchTarget", "LogEvent", "QueryHistory", "QueryStatus"]
