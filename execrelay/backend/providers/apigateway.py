"""API Gateway Management API connection pusher."""

from __future__ import annotations

from functools import partial
from typing import Any

from anyio import to_thread
from botocore.exceptions import ClientError

from execrelay.backend.providers.aws import create_client, error_code
from execrelay.backend.providers.base import ConnectionGoneError


class ApiGatewayPusher:
    """Posts to WebSocket connections via ``post_to_connection``."""

    def __init__(self, endpoint_url: str, region: str | None = None, client: Any = None) -> None:
        self._client = client or create_client("apigatewaymanagementapi", region=region, endpoint_url=endpoint_url)

    async def post(self, connection_id: str, data: bytes) -> None:
        try:
            await to_thread.run_sync(partial(self._client.post_to_connection, ConnectionId=connection_id, Data=data))
        except ClientError as e:
            if error_code(e) in ("GoneException", "410"):
                raise ConnectionGoneError(connection_id) from e
            raise
