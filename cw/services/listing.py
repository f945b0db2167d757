"""One-shot listing of log groups and log streams."""

import logging
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

from cw.core.errors import NotFoundError
from cw.core.timeparse import to_millis
from cw.services.aws_client import DESCRIBE_LIMIT, find_log_group, paginate

logger = logging.getLogger(__name__)

# Retention assumed for groups without one when hiding stale streams
DEFAULT_STREAM_MAX_AGE = timedelta(days=182)


class ListingService:
    """Service for the ``ls`` commands."""

    @staticmethod
    def list_groups(client, pattern: str | None = None) -> Iterator[str]:
        """Yield log group names, optionally matching a name pattern."""
        params = {"limit": DESCRIBE_LIMIT}
        if pattern:
            params["logGroupNamePattern"] = pattern

        for group in paginate(client, "describe_log_groups", "logGroups", **params):
            yield group.get("logGroupName", "")

    @staticmethod
    def get_group(client, group_name: str) -> dict:
        """Describe a single log group.

        Raises:
            NotFoundError: If no group has exactly this name
        """
        group = find_log_group(client, group_name)
        if group is None:
            raise NotFoundError(f"Can't find log group with name {group_name}")
        return group

    @staticmethod
    def list_streams(
        client,
        group_name: str,
        show_expired: bool = False,
        now: datetime | None = None,
    ) -> Iterator[str]:
        """Yield stream names of a group, most recently active first.

        Streams whose last event is older than the group's retention (or
        about six months when none is set) are skipped unless
        ``show_expired`` is set.
        """
        group = ListingService.get_group(client, group_name)
        now = now or datetime.now(UTC)

        retention_days = group.get("retentionInDays")
        if retention_days:
            logger.info(f"The retention for {group_name} is set to {retention_days}.")
            cutoff = to_millis(now - timedelta(days=retention_days))
        else:
            logger.info(
                f"No retention found for {group_name}, only showing streams "
                "that received an event in the last 6 months."
            )
            cutoff = to_millis(now - DEFAULT_STREAM_MAX_AGE)

        streams = paginate(
            client,
            "describe_log_streams",
            "logStreams",
            logGroupName=group_name,
            orderBy="LastEventTime",
            descending=True,
            limit=DESCRIBE_LIMIT,
        )
        for stream in streams:
            last_event = stream.get("lastEventTimestamp")
            if not show_expired and (last_event is None or last_event <= cutoff):
                continue
            yield stream.get("logStreamName", "")
