"""Core exception classes for the application."""


class NotFoundError(Exception):
    """Raised when a log source or query run is not found."""


class ValidationError(Exception):
    """Raised when user input fails validation."""


class StoreError(Exception):
    """Raised when the local history database fails."""


class RemoteError(Exception):
    """Raised when a CloudWatch Logs call fails."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class RemoteTransientError(RemoteError):
    """Raised for throttling, timeouts and dropped connections."""


class RemoteRejectedError(RemoteError):
    """Raised when the service rejects a request, e.g. a malformed filter."""


class AuthError(RemoteRejectedError):
    """Raised when the service rejects the caller's credentials."""


class FetchError(RemoteError):
    """Raised when fetching events for one log source fails for good."""

    def __init__(self, target, cause: Exception):
        super().__init__(f"{target}: {cause}", getattr(cause, "code", None))
        self.target = target
        self.cause = cause


class TailError(RemoteError):
    """Raised when every tailed log source has failed."""

    def __init__(self, failures: list[FetchError]):
        details = "; ".join(str(f) for f in failures)
        super().__init__(f"All log sources failed: {details}")
        self.failures = failures


class QueryFailedError(RemoteError):
    """Raised when a query run ends without completing."""

    def __init__(self, run_id: str, status, reason: str | None = None):
        message = f"Query {run_id} ended with status {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.run_id = run_id
        self.status = status


class InvalidTransitionError(AssertionError):
    """Raised when code attempts an illegal query status change."""
