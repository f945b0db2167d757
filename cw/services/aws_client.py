"""CloudWatch Logs client construction and error translation."""

import logging
import threading
from collections.abc import Iterator
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
)

from cw import __version__
from cw.core.errors import (
    AuthError,
    NotFoundError,
    RemoteError,
    RemoteRejectedError,
    RemoteTransientError,
)
from cw.services.backoff import BackoffPolicy, call_with_retry, retry_policy

logger = logging.getLogger(__name__)

# 50 is the service maximum for both Describe calls
DESCRIBE_LIMIT = 50

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "LimitExceededException",
        "ServiceUnavailableException",
        "ServiceUnavailable",
        "InternalFailure",
        "InternalServerError",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)

AUTH_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "UnrecognizedClientException",
        "ExpiredTokenException",
        "ExpiredToken",
        "InvalidClientTokenId",
        "InvalidSignatureException",
        "IncompleteSignature",
        "MissingAuthenticationToken",
        "UnauthorizedOperation",
        "AuthFailure",
    }
)


class LogsClientService:
    """Service for building the shared CloudWatch Logs client."""

    @staticmethod
    def get_client(
        profile: str | None = None,
        region: str | None = None,
        endpoint: str | None = None,
    ):
        """Get a configured ``logs`` client.

        Credentials, region, ``HTTPS_PROXY`` and ``AWS_CA_BUNDLE`` are
        resolved by boto3 from the environment and the shared AWS config.
        SDK retries are disabled; callers retry with their own policy.

        Args:
            profile: AWS profile name (defaults to AWS_PROFILE)
            region: AWS region (defaults to AWS_REGION or the profile region)
            endpoint: Custom endpoint URL, e.g. a local emulator

        Returns:
            A boto3 CloudWatch Logs client

        Raises:
            AuthError: If the profile does not exist or has no credentials
            RemoteError: If no region could be resolved
        """
        config = Config(
            user_agent_extra=f"cw/{__version__}",
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        try:
            session = boto3.Session(profile_name=profile, region_name=region)
            client = session.client("logs", config=config, endpoint_url=endpoint)
        except ProfileNotFound as e:
            raise AuthError(str(e), "ProfileNotFound") from e
        except BotoCoreError as e:
            raise RemoteError(f"Failed creating CloudWatch Logs client: {e}") from e

        logger.info(
            f"Created logs client for region {client.meta.region_name}"
            + (f" at {endpoint}" if endpoint else "")
        )
        return client


def translate_error(error: Exception) -> Exception:
    """Map a botocore exception onto the application's error taxonomy."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code", "Unknown")
        message = details.get("Message") or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

        if code == "ResourceNotFoundException":
            return NotFoundError(message)
        if code in TRANSIENT_ERROR_CODES or status >= 500:
            return RemoteTransientError(message, code)
        if code in AUTH_ERROR_CODES:
            return AuthError(message, code)
        return RemoteRejectedError(message, code)

    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return RemoteTransientError(str(error), type(error).__name__)
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AuthError(str(error), type(error).__name__)
    if isinstance(error, BotoCoreError):
        return RemoteError(str(error), type(error).__name__)
    return error


def invoke(client, operation: str, **params: Any) -> dict[str, Any]:
    """Call ``client.<operation>(**params)`` with translated errors."""
    logger.debug(f"{operation} {params}")
    try:
        return getattr(client, operation)(**params)
    except (ClientError, BotoCoreError) as e:
        raise translate_error(e) from e


def paginate(
    client,
    operation: str,
    result_key: str,
    retry: BackoffPolicy | None = None,
    stop: threading.Event | None = None,
    **params: Any,
) -> Iterator[dict[str, Any]]:
    """Yield every ``result_key`` item of a ``nextToken`` paginated call.

    Each page request retries transient errors with ``retry``.
    """
    retry = retry or retry_policy()
    while True:
        response = call_with_retry(
            lambda: invoke(client, operation, **params),
            retry,
            stop,
            description=operation,
        )
        yield from response.get(result_key, [])
        token = response.get("nextToken")
        if not token:
            return
        params["nextToken"] = token


def find_log_group(
    client, group_name: str, retry: BackoffPolicy | None = None
) -> dict[str, Any] | None:
    """Describe the log group named exactly ``group_name``, if any."""
    for group in paginate(
        client,
        "describe_log_groups",
        "logGroups",
        retry,
        logGroupNamePrefix=group_name,
        limit=DESCRIBE_LIMIT,
    ):
        if group.get("logGroupName") == group_name:
            return group
    return None
