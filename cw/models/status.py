"""Query run status state machine."""

from enum import Enum

from cw.core.errors import InvalidTransitionError


class QueryStatus(str, Enum):
    """Lifecycle of a Logs Insights query run.

    ``Submitted`` exists only client side, before the service acknowledges
    the run.
    """

    SUBMITTED = "Submitted"
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "QueryStatus") -> bool:
        """Check if moving from this status to ``target`` is legal."""
        return target in TRANSITIONS[self]

    def transition_to(self, target: "QueryStatus") -> "QueryStatus":
        """Return ``target`` or raise if the move is illegal."""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                f"Illegal query status transition {self} -> {target}"
            )
        return target

    @classmethod
    def from_remote(cls, value: str | None) -> "QueryStatus | None":
        """Map a CloudWatch ``QueryStatus`` string.

        ``Unknown`` and missing values map to None.
        """
        return _REMOTE_STATUS.get(value or "")


TERMINAL_STATUSES = frozenset(
    {
        QueryStatus.COMPLETE,
        QueryStatus.FAILED,
        QueryStatus.CANCELLED,
        QueryStatus.TIMED_OUT,
    }
)

_FINISH = TERMINAL_STATUSES

TRANSITIONS: dict[QueryStatus, frozenset[QueryStatus]] = {
    QueryStatus.SUBMITTED: frozenset(
        {QueryStatus.SUBMITTED, QueryStatus.SCHEDULED, QueryStatus.RUNNING} | _FINISH
    ),
    QueryStatus.SCHEDULED: frozenset(
        {QueryStatus.SCHEDULED, QueryStatus.RUNNING} | _FINISH
    ),
    QueryStatus.RUNNING: frozenset({QueryStatus.RUNNING} | _FINISH),
    QueryStatus.COMPLETE: frozenset(),
    QueryStatus.FAILED: frozenset(),
    QueryStatus.CANCELLED: frozenset(),
    QueryStatus.TIMED_OUT: frozenset(),
}

_REMOTE_STATUS = {
    "Scheduled": QueryStatus.SCHEDULED,
    "Running": QueryStatus.RUNNING,
    "Complete": QueryStatus.COMPLETE,
    "Failed": QueryStatus.FAILED,
    "Cancelled": QueryStatus.CANCELLED,
    "Timeout": QueryStatus.TIMED_OUT,
}
