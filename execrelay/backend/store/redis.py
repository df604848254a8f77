"""Redis-backed WebSocket token and connection stores.

Key layout::

    ws:token:{token}                  -> WebSocketToken JSON (SETEX, expires with the token)
    ws:conn:{connection_id}           -> WebSocketConnection JSON
    ws:exec:{execution_id}:conns      -> SET of connection ids subscribed to the execution
"""

from __future__ import annotations

import redis.asyncio as aioredis

from execrelay.backend.models.execution import WebSocketConnection, WebSocketToken

TOKEN_KEY = "ws:token:{token}"
CONNECTION_KEY = "ws:conn:{connection_id}"
EXECUTION_CONNECTIONS_KEY = "ws:exec:{execution_id}:conns"

# Connections outlive tokens but not by much; API Gateway caps a socket at 2h.
CONNECTION_TTL_SECONDS = 2 * 60 * 60


class RedisTokenStore:
    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    async def put_token(self, token: WebSocketToken, ttl_seconds: int) -> None:
        await self._redis.setex(TOKEN_KEY.format(token=token.token), ttl_seconds, token.model_dump_json())

    async def get_token(self, token: str) -> WebSocketToken | None:
        raw = await self._redis.get(TOKEN_KEY.format(token=token))
        if raw is None:
            return None
        return WebSocketToken.model_validate_json(raw)

    async def delete_token(self, token: str) -> None:
        await self._redis.delete(TOKEN_KEY.format(token=token))


class RedisConnectionStore:
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = CONNECTION_TTL_SECONDS) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    async def add_connection(self, connection: WebSocketConnection) -> None:
        index_key = EXECUTION_CONNECTIONS_KEY.format(execution_id=connection.execution_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.setex(
                CONNECTION_KEY.format(connection_id=connection.connection_id),
                self._ttl,
                connection.model_dump_json(),
            )
            pipe.sadd(index_key, connection.connection_id)
            pipe.expire(index_key, self._ttl)
            await pipe.execute()

    async def get_connection(self, connection_id: str) -> WebSocketConnection | None:
        raw = await self._redis.get(CONNECTION_KEY.format(connection_id=connection_id))
        if raw is None:
            return None
        return WebSocketConnection.model_validate_json(raw)

    async def remove_connection(self, connection_id: str) -> WebSocketConnection | None:
        connection = await self.get_connection(connection_id)
        if connection is None:
            return None
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(CONNECTION_KEY.format(connection_id=connection_id))
            pipe.srem(EXECUTION_CONNECTIONS_KEY.format(execution_id=connection.execution_id), connection_id)
            await pipe.execute()
        return connection

    async def list_connections(self, execution_id: str) -> list[WebSocketConnection]:
        index_key = EXECUTION_CONNECTIONS_KEY.format(execution_id=execution_id)
        members = await self._redis.smembers(index_key)
        if not members:
            return []

        ids = sorted(m.decode() if isinstance(m, bytes) else m for m in members)
        raws = await self._redis.mget([CONNECTION_KEY.format(connection_id=cid) for cid in ids])

        connections: list[WebSocketConnection] = []
        stale: list[str] = []
        for cid, raw in zip(ids, raws, strict=True):
            if raw is None:
                stale.append(cid)
            else:
                connections.append(WebSocketConnection.model_validate_json(raw))
        if stale:
            # Connection keys expired without a $disconnect; drop them from the index.
            await self._redis.srem(index_key, *stale)
        return connections
