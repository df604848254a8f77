"""Async SQLAlchemy engine and session factory.

All URLs are normalised to the psycopg3 dialect, which serves both the
async API engine and Alembic's synchronous migration runs.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_DIALECT_ALIASES = (
    "postgresql+asyncpg://",
    "postgresql://",
    "postgres://",
)


def normalize_database_url(url: str) -> str:
    """Rewrite bare / asyncpg PostgreSQL URLs to ``postgresql+psycopg://``."""
    for alias in _DIALECT_ALIASES:
        if url.startswith(alias):
            return "postgresql+psycopg://" + url[len(alias) :]
    return url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async engine for the execution repository.

    Pool defaults assume many short transactions (one or two statements per
    request or event):

    - **pool_size=5** / **max_overflow=10**: baseline plus burst capacity.
    - **pool_pre_ping=True**: survive server-side disconnects.
    - **pool_recycle=1800**: drop connections before common idle cutoffs.

    All defaults can be overridden via *kwargs*.
    """
    defaults: dict[str, object] = {
        "echo": False,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }
    defaults.update(kwargs)
    return create_async_engine(normalize_database_url(database_url), **defaults)  # type: ignore[arg-type]


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with ``expire_on_commit=False`` (rows stay readable after commit)."""
    return async_sessionmaker(engine, expire_on_commit=False)
