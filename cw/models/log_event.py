"""Tail domain types."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FetchTarget:
    """A log group, optionally narrowed to a single log stream."""

    group_name: str
    stream_name: str | None = None

    def __str__(self) -> str:
        if self.stream_name:
            return f"{self.group_name}:{self.stream_name}"
        return self.group_name


@dataclass(frozen=True)
class LogEvent:
    """A single log event returned by ``FilterLogEvents``."""

    group_name: str
    stream_name: str
    timestamp: int
    message: str
    event_id: str
    ingestion_time: int | None = None

    @property
    def identity(self) -> tuple[str, str]:
        """Deduplication key. Event ids are unique within a stream."""
        return (self.stream_name, self.event_id)

    @property
    def sort_key(self) -> tuple[int, str, str, str]:
        return (self.timestamp, self.group_name, self.stream_name, self.event_id)

    @classmethod
    def from_filtered_event(cls, group_name: str, event: dict[str, Any]) -> "LogEvent":
        """Build from one entry of a ``filter_log_events`` response."""
        return cls(
            group_name=group_name,
            stream_name=event.get("logStreamName", ""),
            timestamp=event.get("timestamp", 0),
            message=event.get("message", ""),
            event_id=event.get("eventId", ""),
            ingestion_time=event.get("ingestionTime"),
        )
