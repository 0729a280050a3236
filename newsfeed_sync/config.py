"""Configuration for the newsfeed sync client.

This module provides configuration for the REST API, the real-time
channel and local state storage, supporting both local development
(environment variables / .env) and AWS deployment (Secrets Manager).
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv


@dataclass
class ApiConfig:
    """REST API and real-time channel configuration.

    Attributes:
        base_url: Base URL of the news API (also used for the event channel)
        token: Bearer credential to start with (None = sign in first)
        request_timeout: Per-request timeout in seconds
    """

    base_url: str
    token: str | None
    request_timeout: int


@dataclass
class StorageConfig:
    """Local state storage configuration.

    Attributes:
        table_name: DynamoDB table for persisted state (empty = in-memory)
        endpoint_url: Custom endpoint URL (for DynamoDB Local)
        region_name: AWS region
        device_id: Partition used for this client's entries
    """

    table_name: str
    endpoint_url: str | None
    region_name: str
    device_id: str


@dataclass
class Settings:
    """All settings needed to build a client."""

    api: ApiConfig
    storage: StorageConfig
    log_level: str = "INFO"


def get_storage_config() -> StorageConfig:
    """Get storage configuration from environment variables.

    Environment Variables:
        NEWSFEED_STATE_TABLE: Table name (optional, in-memory when unset)
        DYNAMODB_ENDPOINT_URL: Custom endpoint (for local development)
        AWS_REGION: AWS region
        NEWSFEED_DEVICE_ID: Partition for this device (default: "default")

    Returns:
        StorageConfig instance
    """
    return StorageConfig(
        table_name=os.getenv("NEWSFEED_STATE_TABLE", ""),
        endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL"),
        region_name=os.getenv("AWS_REGION", ""),
        device_id=os.getenv("NEWSFEED_DEVICE_ID", "default"),
    )


@lru_cache(maxsize=10)
def _get_secret(secret_name: str) -> str | None:
    """Get secret value from AWS Secrets Manager.

    Args:
        secret_name: Name of the secret in Secrets Manager

    Returns:
        Secret value or None if not found
    """
    region = os.getenv("AWS_REGION", "")
    if not region:
        return None

    client = boto3.client("secretsmanager", region_name=region)
    try:
        response = client.get_secret_value(SecretId=secret_name)
        return response.get("SecretString")
    except ClientError:
        return None


def get_api_config() -> ApiConfig:
    """Get API configuration.

    Supports two modes for the credential:
    1. Direct environment variable (local development):
       - NEWSFEED_API_TOKEN
    2. Secrets Manager (deployment):
       - NEWSFEED_TOKEN_SECRET_NAME → reads from Secrets Manager

    Returns:
        ApiConfig instance
    """
    token = os.getenv("NEWSFEED_API_TOKEN")

    if not token:
        secret_name = os.getenv("NEWSFEED_TOKEN_SECRET_NAME")
        if secret_name:
            token = _get_secret(secret_name)

    return ApiConfig(
        base_url=os.getenv("NEWSFEED_API_URL", "http://localhost:3000").rstrip("/"),
        token=token or None,
        request_timeout=int(os.getenv("NEWSFEED_REQUEST_TIMEOUT", REQUEST_TIMEOUT_SECONDS)),
    )


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Load settings, reading a .env file first when present.

    Args:
        env_file: Explicit .env path (None = search from the working directory)

    Returns:
        Settings instance
    """
    load_dotenv(env_file)
    return Settings(
        api=get_api_config(),
        storage=get_storage_config(),
        log_level=os.getenv("NEWSFEED_LOG_LEVEL", "INFO"),
    )


# Constants for persisted state schema
STATE_PK_PREFIX = "DEVICE#"
STATE_SK_PREFIX = "KEY#"

# Cache settings
STALE_TIME_SECONDS = 300  # 5 minutes
FETCH_RETRIES = 1
REQUEST_TIMEOUT_SECONDS = 10

# Feed settings
PAGE_SIZE = 10
BREAKING_NEWS_LIMIT = 10
COMMENTS_PAGE_SIZE = 10

# Delay before a patched key is refetched, long enough for the patch to render
INVALIDATE_DELAY_SECONDS = 0.1
BOOKMARK_UPDATE_INVALIDATE_DELAY_SECONDS = 0.2

PRIVILEGED_ROLE = "admin"
