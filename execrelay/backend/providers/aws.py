"""boto3 client construction shared by the AWS adapters.

boto3 clients are synchronous; adapters call them through
``anyio.to_thread.run_sync`` so the event loop never blocks.
"""

from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

# Standard retry mode backs off on throttling, which ECS RunTask hits under bursts.
_DEFAULT_CONFIG = Config(
    retries={"max_attempts": 5, "mode": "standard"},
    connect_timeout=5,
    read_timeout=30,
)


def create_client(
    service: str,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
) -> Any:
    """Create a boto3 client for *service*.

    Args:
        service: boto3 service name (``ecs``, ``logs``, ``ssm``, ...).
        region: AWS region name; falls back to the default credential chain.
        endpoint_url: Override endpoint (required by ``apigatewaymanagementapi``).
        config: Extra botocore config merged over the defaults.
    """
    merged = _DEFAULT_CONFIG.merge(config) if config is not None else _DEFAULT_CONFIG
    return boto3.client(service, region_name=region, endpoint_url=endpoint_url, config=merged)


def error_code(exc: Exception) -> str | None:
    """Return the AWS error code of a botocore ``ClientError``."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return None
    return response.get("Error", {}).get("Code")
