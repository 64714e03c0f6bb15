"""Shared boto3 client construction and error classification."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from app.core.config import settings

_NOT_FOUND_CODES = frozenset(
    {
        "404",
        "NoSuchBucket",
        "NoSuchKey",
        "NoSuchDistribution",
        "NoSuchHostedZone",
        "ResourceNotFoundException",
        "DBInstanceNotFound",
        "DBInstanceNotFoundFault",
        "InvalidInstanceID.NotFound",
        "InvalidAllocationID.NotFound",
        "InvalidAssociationID.NotFound",
        "InvalidKeyPair.NotFound",
        "InvalidGroup.NotFound",
    }
)

_retry_config = Config(retries={"max_attempts": 5, "mode": "standard"})


def get_client(service: str, region: str | None = None):
    """Create a boto3 client for ``service`` from application settings."""
    kwargs = {
        "service_name": service,
        "region_name": region or settings.AWS_REGION,
        "config": _retry_config,
    }
    if settings.AWS_ACCESS_KEY_ID:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY
    if settings.AWS_ENDPOINT_URL:
        kwargs["endpoint_url"] = settings.AWS_ENDPOINT_URL
    return boto3.client(**kwargs)


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_not_found(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) in _NOT_FOUND_CODES


def as_tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]
