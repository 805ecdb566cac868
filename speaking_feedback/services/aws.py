"""AWS client factory for Bedrock and Polly."""

from __future__ import annotations

from typing import Any

import boto3

from speaking_feedback.config.settings import settings


def create_boto3_client(service_name: str, *, region_name: str | None = None) -> Any:
    """Build a boto3 client, using explicit credentials only when both are configured."""

    options: dict[str, Any] = {"region_name": region_name or settings.aws.region}
    if settings.aws.access_key_id and settings.aws.secret_access_key:
        options["aws_access_key_id"] = settings.aws.access_key_id
        options["aws_secret_access_key"] = settings.aws.secret_access_key
    return boto3.client(service_name, **options)


__all__ = ["create_boto3_client"]
