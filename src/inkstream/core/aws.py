"""Shared construction of AWS clients."""

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from inkstream.core.config import Settings, get_settings

THROTTLING_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "ProvisionedThroughputExceededException",
        "ServiceUnavailableException",
        "InternalServerError",
        "ServiceQuotaExceededException",
        "LimitExceededException",
    }
)


def create_boto_client(
    service_name: str,
    settings: Settings | None = None,
    read_timeout: int = 300,
) -> Any:
    """Create a boto3 client configured from settings.

    Args:
        service_name: AWS service, e.g. ``"s3"`` or ``"textract"``
        settings: Application settings
        read_timeout: Socket read timeout in seconds

    Returns:
        A boto3 client
    """
    settings = settings or get_settings()

    config = Config(
        region_name=settings.aws_region,
        read_timeout=read_timeout,
        connect_timeout=60,
        retries={"max_attempts": 0},
    )

    session_kwargs = {}
    if settings.aws_profile:
        session_kwargs["profile_name"] = settings.aws_profile

    session = boto3.Session(**session_kwargs)

    client_kwargs: dict[str, Any] = {"config": config}
    if settings.aws_endpoint_url:
        client_kwargs["endpoint_url"] = settings.aws_endpoint_url

    return session.client(service_name, **client_kwargs)


def error_code(error: ClientError) -> str:
    """Error code of a botocore client error."""
    return error.response.get("Error", {}).get("Code", "Unknown")


def is_throttling(error: ClientError) -> bool:
    """Whether a client error is worth retrying."""
    return error_code(error) in THROTTLING_CODES
