"""Resolution of ``group[:streamPrefix]`` specifiers into fetch targets."""

import logging

from cw.core.errors import NotFoundError, ValidationError
from cw.models import FetchTarget
from cw.services.aws_client import DESCRIBE_LIMIT, find_log_group, paginate
from cw.services.backoff import BackoffPolicy, retry_policy

logger = logging.getLogger(__name__)


def parse_specifiers(specs: str | list[str]) -> list[tuple[str, str | None]]:
    """Split comma-joined ``group[:streamPrefix]`` specifiers.

    Whitespace around items is ignored and empty items are dropped.

    Raises:
        ValidationError: If an item has an empty group name or nothing is left
    """
    if isinstance(specs, str):
        specs = [specs]

    parsed = []
    for chunk in specs:
        for item in chunk.split(","):
            item = item.strip()
            if not item:
                continue
            group, _, prefix = item.partition(":")
            group, prefix = group.strip(), prefix.strip()
            if not group:
                raise ValidationError(
                    f"Invalid group '{item}': Group name cannot be empty"
                )
            parsed.append((group, prefix or None))

    if not parsed:
        raise ValidationError("At least one log group is required")
    return parsed


class SourceResolver:
    """Validates log groups and expands stream prefixes."""

    def __init__(self, client, retry: BackoffPolicy | None = None):
        self.client = client
        self.retry = retry or retry_policy()

    def resolve(self, specs: str | list[str]) -> list[FetchTarget]:
        """Resolve specifiers into a deduplicated list of targets.

        A group specified without a prefix covers every stream of the group,
        so stream targets of that group are dropped.

        Raises:
            ValidationError: If a specifier is malformed
            NotFoundError: If a group or stream prefix matches nothing
        """
        targets: list[FetchTarget] = []
        known_groups: set[str] = set()

        for group, prefix in parse_specifiers(specs):
            spec = f"{group}:{prefix}" if prefix else group
            if group not in known_groups:
                if not self.group_exists(group):
                    raise NotFoundError(f"Can't find log group for '{spec}'")
                known_groups.add(group)

            if prefix is None:
                targets.append(FetchTarget(group))
                continue

            streams = self.list_stream_names(group, prefix)
            if not streams:
                raise NotFoundError(
                    f"Can't find log streams with prefix '{prefix}' for '{spec}'"
                )
            targets.extend(FetchTarget(group, stream) for stream in streams)

        whole_groups = {t.group_name for t in targets if t.stream_name is None}
        resolved: list[FetchTarget] = []
        for target in targets:
            if target in resolved:
                continue
            if target.stream_name is not None and target.group_name in whole_groups:
                continue
            resolved.append(target)

        logger.info(f"Resolved {len(resolved)} target(s): {', '.join(map(str, resolved))}")
        return resolved

    def group_exists(self, group_name: str) -> bool:
        """Check for a log group with exactly this name."""
        return find_log_group(self.client, group_name, self.retry) is not None

    def list_stream_names(self, group_name: str, prefix: str) -> list[str]:
        """Names of all streams in ``group_name`` starting with ``prefix``."""
        streams = paginate(
            self.client,
            "describe_log_streams",
            "logStreams",
            self.retry,
            logGroupName=group_name,
            logStreamNamePrefix=prefix,
            limit=DESCRIBE_LIMIT,
        )
        return [s["logStreamName"] for s in streams if s.get("logStreamName")]
