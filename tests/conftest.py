"""Container-backed fixtures for the integration suite.

PostgreSQL 17 and Redis 7 run in testcontainers for the whole session; the
schema is created by running the packaged Alembic migrations.  Per test, the
SQL repository gets a session factory pinned to one connection whose outer
transaction is rolled back at teardown, and Redis is flushed.

Only tests marked ``integration`` pull these fixtures in, so the unit suite
runs without Docker.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from execrelay.backend.settings import _get_settings_cached


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Session-scoped: containers (started once, shared across all tests)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container() -> Iterator[PostgresContainer]:
    """PostgreSQL 17 with a throwaway ``execrelay_test`` database."""
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="execrelay_test",
        driver="psycopg",
    ) as pg:
        yield pg


@pytest.fixture(scope="session")
def redis_container() -> Iterator[RedisContainer]:
    """Redis 7 holding WebSocket tokens and connections."""
    with RedisContainer(image="redis:7") as r:
        yield r


# ---------------------------------------------------------------------------
# Session-scoped: connection URLs and schema migration
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_url(pg_container: PostgresContainer) -> str:
    """PostgreSQL URL (psycopg3 dialect) with Alembic migrations applied."""
    url = pg_container.get_connection_url()
    _set_env("EXECRELAY_DATABASE_URL", url)

    from alembic import command
    from alembic.config import Config

    ini_path = Path(__file__).parent.parent / "execrelay" / "backend" / "alembic.ini"
    command.upgrade(Config(str(ini_path)), "head")

    return url


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    url = f"redis://{host}:{port}/0"
    _set_env("EXECRELAY_REDIS_URL", url)
    return url


@pytest.fixture(scope="session")
def async_engine(pg_url: str) -> Iterator[AsyncEngine]:
    engine = create_async_engine(pg_url)
    yield engine
    engine.sync_engine.dispose()


# ---------------------------------------------------------------------------
# Function-scoped: savepoint-isolated session factory
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory(async_engine: AsyncEngine) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory bound to one connection; everything is rolled back after the test.

    ``join_transaction_mode="create_savepoint"`` turns ``session.commit()``
    inside tested code into a savepoint release, while the outer
    transaction is rolled back at teardown.
    """
    async with async_engine.connect() as conn:
        await conn.begin()
        yield async_sessionmaker(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")
        await conn.rollback()


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncIterator[aioredis.Redis]:
    """Async Redis client; database flushed after each test."""
    client = aioredis.from_url(redis_url)
    yield client
    await client.flushdb()
    await client.aclose()
