"""S3 client construction from application settings."""
import logging

import boto3
from botocore.config import Config

from uploads_api.settings import Settings

logger = logging.getLogger(__name__)


def create_s3_client(settings: Settings):
    """Create a boto3 S3 client for the configured store.

    Connect/read timeouts follow ``backend_timeout_seconds``; transient-fault
    retries are left to botocore's standard retry mode.
    """
    client_kwargs = {
        "region_name": settings.aws_region,
        "config": Config(
            signature_version="s3v4",
            connect_timeout=settings.backend_timeout_seconds,
            read_timeout=settings.backend_timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
            s3={"addressing_style": "path" if settings.s3_force_path_style else "auto"},
        ),
    }

    # Add credentials from settings
    if settings.aws_access_key_id:
        client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
    if settings.aws_secret_access_key:
        client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

    # Add endpoint URL for S3-compatible stores
    if settings.aws_endpoint_url:
        client_kwargs["endpoint_url"] = settings.aws_endpoint_url

    logger.info(f"Creating S3 client (region={settings.aws_region}, endpoint={settings.aws_endpoint_url})")
    return boto3.client("s3", **client_kwargs)
