"""Service configuration loaded from EXECRELAY_* environment variables."""

from __future__ import annotations

import secrets

from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecRelaySettings(BaseSettings):
    """execrelay backend settings.

    All fields are read from environment variables with the ``EXECRELAY_``
    prefix.  For example, ``EXECRELAY_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    AWS credentials are **not** managed here -- boto3 resolves them through
    its own chain (env vars, shared config, instance role).
    """

    model_config = SettingsConfigDict(
        env_prefix="EXECRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (psycopg).  Falls back to in-memory records when unset."""

    redis_url: str | None = None
    """Redis connection string for WebSocket tokens and connections."""

    # -- Compute platform ------------------------------------------------------
    aws_region: str | None = None
    ecs_cluster: str | None = None
    """ECS cluster name.  Execution endpoints return 503 when unset."""

    ecs_task_definition: str | None = None
    """Task definition used when a request names no image."""

    image_task_definitions: dict[str, str] = {}
    """Registered images mapped to their task definition (JSON object in env)."""

    ecs_subnets: list[str] = []
    ecs_security_groups: list[str] = []
    ecs_assign_public_ip: bool = True
    runner_container_name: str = "runner"
    """Name of the container running the user command inside the task."""

    log_group: str = "/execrelay/runner"
    """CloudWatch Logs group the runner container writes to."""

    # -- Secrets ---------------------------------------------------------------
    secrets_prefix: str = "/execrelay/secrets"
    """SSM Parameter Store path prefix for named secret references."""

    # -- WebSocket -------------------------------------------------------------
    websocket_api_endpoint: str | None = None
    """API Gateway WebSocket endpoint host (without scheme).  Streaming is disabled when unset."""

    websocket_token_ttl_seconds: int = 300
    websocket_token_single_use: bool = False
    push_timeout_seconds: float = 5.0
    broadcast_concurrency: int = 50

    # -- Auth ------------------------------------------------------------------
    auth_token: str | None = None
    """Bearer token for API access.  Auto-generated at startup if empty."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    request_timeout_seconds: float = 30.0
    """Deadline applied to every orchestrator call made by the HTTP layer."""

    # -- Helpers ---------------------------------------------------------------

    def resolve_auth_token(self) -> str:
        """Return the configured token or generate a random one."""
        if self.auth_token:
            return self.auth_token
        return secrets.token_urlsafe(32)

    @property
    def websocket_endpoint_url(self) -> str | None:
        """HTTPS endpoint of the API Gateway management API."""
        if not self.websocket_api_endpoint:
            return None
        return f"https://{self.websocket_api_endpoint}"


def get_settings() -> ExecRelaySettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``get_settings.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> ExecRelaySettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return ExecRelaySettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
