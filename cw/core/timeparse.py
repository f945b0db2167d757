"""Parsing and formatting of the CLI's time arguments."""

import re
from datetime import UTC, datetime, timedelta

from cw.core.errors import ValidationError

_UNITS = {
    "ms": timedelta(milliseconds=1),
    "msec": timedelta(milliseconds=1),
    "msecs": timedelta(milliseconds=1),
    "millisecond": timedelta(milliseconds=1),
    "milliseconds": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "sec": timedelta(seconds=1),
    "secs": timedelta(seconds=1),
    "second": timedelta(seconds=1),
    "seconds": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "mins": timedelta(minutes=1),
    "minute": timedelta(minutes=1),
    "minutes": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "hrs": timedelta(hours=1),
    "hour": timedelta(hours=1),
    "hours": timedelta(hours=1),
    "d": timedelta(days=1),
    "day": timedelta(days=1),
    "days": timedelta(days=1),
    "w": timedelta(weeks=1),
    "week": timedelta(weeks=1),
    "weeks": timedelta(weeks=1),
    # Calendar averages
    "month": timedelta(days=30.44),
    "months": timedelta(days=30.44),
    "y": timedelta(days=365.25),
    "year": timedelta(days=365.25),
    "years": timedelta(days=365.25),
}

_DURATION_PART = re.compile(r"\s*(\d+)\s*([a-z]+)")


def parse_duration(value: str) -> timedelta:
    """Parse a human duration such as ``90s``, ``15m`` or ``1h 30m``."""
    text = value.strip().lower()
    if not text:
        raise ValidationError("Empty duration")

    total = timedelta()
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if not match or match.group(2) not in _UNITS:
            raise ValidationError(f"Invalid duration: {value!r}")
        total += int(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()
        while position < len(text) and text[position] == " ":
            position += 1
    return total


def to_millis(moment: datetime) -> int:
    """Milliseconds since the epoch."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp() * 1000)


def now_millis() -> int:
    return to_millis(datetime.now(UTC))


def parse_human_time(value: str, now: datetime | None = None) -> int:
    """Parse a time argument into epoch milliseconds.

    Accepts a duration into the past (``1h`` means one hour ago) or an
    ISO 8601 date/time. Naive date/times are taken as UTC.
    """
    now = now or datetime.now(UTC)
    try:
        return to_millis(now - parse_duration(value))
    except ValidationError:
        pass

    try:
        moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(
            f"Invalid time {value!r}: expected a duration like 15m or a date/time"
        ) from e
    return to_millis(moment)


def format_timestamp(timestamp_ms: int, local: bool = False) -> str:
    """RFC 3339 rendering with second precision."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
    if local:
        moment = moment.astimezone()
        return moment.isoformat(timespec="seconds")
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")
