"""Function entry point for direct event delivery (Lambda-style).

Configure the function handler as ``execrelay.backend.handler.handle``.
Each invocation runs its own event loop, so pooled clients (SQLAlchemy
engine, Redis) are created and disposed per invocation.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any

import anyio
import redis.asyncio as aioredis
from loguru import logger

from execrelay.backend.app import build_event_processor, build_websocket_manager
from execrelay.backend.db.engine import create_engine, create_session_factory
from execrelay.backend.log import setup_logging
from execrelay.backend.settings import get_settings
from execrelay.backend.store.base import ConnectionStore, ExecutionRepository, TokenStore
from execrelay.backend.store.memory import InMemoryConnectionStore, InMemoryExecutionRepository, InMemoryTokenStore
from execrelay.backend.store.redis import RedisConnectionStore, RedisTokenStore
from execrelay.backend.store.sql import SqlExecutionRepository

_logging_ready = False


async def _handle(event: Any, context: Any) -> dict[str, Any] | None:
    settings = get_settings()
    async with AsyncExitStack() as stack:
        repo: ExecutionRepository
        if settings.database_url:
            engine = create_engine(settings.database_url, pool_size=1, max_overflow=0)
            stack.push_async_callback(engine.dispose)
            repo = SqlExecutionRepository(create_session_factory(engine))
        else:
            logger.warning("EXECRELAY_DATABASE_URL not set -- using a throwaway in-memory repository")
            repo = InMemoryExecutionRepository()

        tokens: TokenStore
        connections: ConnectionStore
        if settings.redis_url:
            client = aioredis.from_url(settings.redis_url, socket_connect_timeout=5, socket_timeout=5)
            stack.push_async_callback(client.aclose)
            tokens, connections = RedisTokenStore(client), RedisConnectionStore(client)
        else:
            tokens, connections = InMemoryTokenStore(), InMemoryConnectionStore()

        websocket = build_websocket_manager(settings, tokens, connections)
        processor = build_event_processor(settings, repo, websocket)
        return await processor.handle(event, context)


def handle(event: dict[str, Any], context: Any = None) -> dict[str, Any] | None:
    """Process one provider event.  Raises ``UnhandledEventError`` for unknown shapes."""
    global _logging_ready  # noqa: PLW0603
    if not _logging_ready:
        setup_logging(get_settings().log_level)
        _logging_ready = True
    return anyio.run(_handle, event, context)
