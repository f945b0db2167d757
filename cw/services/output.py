"""Writers for tailed events and query results."""

import json
import sys
from typing import TextIO

from rich.console import Console
from rich.text import Text

from cw.core.timeparse import format_timestamp
from cw.models import LogEvent


class EventWriter:
    """Base for tail output writers."""

    def __init__(
        self,
        file: TextIO | None = None,
        use_local_time: bool = False,
        with_timestamp: bool = False,
        with_group_name: bool = False,
        with_stream_name: bool = False,
        with_event_id: bool = False,
    ):
        self.file = file or sys.stdout
        self.use_local_time = use_local_time
        self.with_timestamp = with_timestamp
        self.with_group_name = with_group_name
        self.with_stream_name = with_stream_name
        self.with_event_id = with_event_id

    def write(self, event: LogEvent) -> None:
        raise NotImplementedError


class TextWriter(EventWriter):
    """One line per event, optional fields first, separated by `` - ``."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.console = Console(file=self.file, highlight=False, soft_wrap=True)

    def write(self, event: LogEvent) -> None:
        line = Text()
        if self.with_timestamp:
            line.append(format_timestamp(event.timestamp, self.use_local_time), "green")
            line.append(" - ")
        if self.with_group_name:
            line.append(event.group_name, "blue")
            line.append(" - ")
        if self.with_stream_name and event.stream_name:
            line.append(event.stream_name, "cyan")
            line.append(" - ")
        if self.with_event_id and event.event_id:
            line.append(event.event_id, "yellow")
            line.append(" - ")
        line.append(event.message.rstrip("\n"))
        self.console.print(line)


class JsonWriter(EventWriter):
    """One JSON object per event."""

    def write(self, event: LogEvent) -> None:
        record: dict[str, str] = {"message": event.message}
        if self.with_timestamp:
            record["timestamp"] = format_timestamp(event.timestamp, self.use_local_time)
        if self.with_event_id and event.event_id:
            record["id"] = event.event_id
        if self.with_group_name:
            record["group"] = event.group_name
        if self.with_stream_name and event.stream_name:
            record["stream"] = event.stream_name
        self.file.write(json.dumps(record) + "\n")
        self.file.flush()


def get_event_writer(output: str, **options) -> EventWriter:
    """Writer for ``--output text|json``."""
    if output == "json":
        return JsonWriter(**options)
    return TextWriter(**options)


class QueryResultWriter:
    """Prints query result rows as JSON lines."""

    # Pointer to the underlying event, only useful to the console
    HIDDEN_FIELDS = frozenset({"@ptr"})

    def __init__(self, file: TextIO | None = None, include_ptr: bool = False):
        self.file = file or sys.stdout
        self.hidden = frozenset() if include_ptr else self.HIDDEN_FIELDS

    def write(self, row: dict[str, str]) -> None:
        record = {k: v for k, v in row.items() if k not in self.hidden}
        self.file.write(json.dumps(record) + "\n")

    def write_all(self, rows: list[dict[str, str]]) -> None:
        for row in rows:
            self.write(row)
        self.file.flush()
