import click


@click.group()
def main() -> None:
    """execrelay - run shell commands on remote tasks and stream their logs."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from EXECRELAY_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from EXECRELAY_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    from execrelay.backend.settings import ExecRelaySettings

    settings = ExecRelaySettings()

    uvicorn.run(
        "execrelay.backend.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
    )


@main.command()
def reconcile() -> None:
    """Sync non-terminal executions with the platform's view of their tasks.

    Catches executions whose state change events were lost.  Tasks started
    without a record (failed writes) are visible in the logs as orphaned
    tasks; this command does not adopt them.
    """
    import anyio

    from execrelay.backend.app import build_orchestrator, build_websocket_manager
    from execrelay.backend.db.engine import create_engine, create_session_factory
    from execrelay.backend.log import setup_logging
    from execrelay.backend.settings import ExecRelaySettings
    from execrelay.backend.store.redis import RedisConnectionStore, RedisTokenStore
    from execrelay.backend.store.sql import SqlExecutionRepository

    settings = ExecRelaySettings()
    setup_logging(settings.log_level)
    if not settings.database_url or not settings.ecs_cluster:
        raise click.ClickException("EXECRELAY_DATABASE_URL and EXECRELAY_ECS_CLUSTER must be set.")

    async def _run() -> int:
        import redis.asyncio as aioredis

        engine = create_engine(settings.database_url)
        redis_client = aioredis.from_url(settings.redis_url) if settings.redis_url else None
        try:
            repo = SqlExecutionRepository(create_session_factory(engine))
            # Subscriptions are only shared across processes through Redis.
            websocket = None
            if redis_client is not None:
                websocket = build_websocket_manager(
                    settings, RedisTokenStore(redis_client), RedisConnectionStore(redis_client)
                )
            orchestrator = build_orchestrator(settings, repo, websocket)
            return await orchestrator.reconcile()
        finally:
            if redis_client is not None:
                await redis_client.aclose()
            await engine.dispose()

    changed = anyio.run(_run)
    click.echo(f"Reconciled {changed} execution(s).")


# ---------------------------------------------------------------------------
# Schema migrations
# ---------------------------------------------------------------------------


def _alembic(action: str, **kwargs) -> None:
    """Run an ``alembic.command`` against the migrations bundled with the package."""
    from pathlib import Path

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(Path(__file__).parent / "backend" / "alembic.ini"))
    getattr(command, action)(cfg, **kwargs)


@main.group()
def db() -> None:
    """Manage the executions schema (needs EXECRELAY_DATABASE_URL)."""


@db.command()
@click.option("--revision", default="head", show_default=True, help="Revision to migrate to.")
def upgrade(revision: str) -> None:
    """Apply migrations up to REVISION."""
    _alembic("upgrade", revision=revision)
    click.echo(f"Schema at {revision}.")


@db.command()
@click.option("--revision", default="-1", show_default=True, help="Revision to roll back to.")
def downgrade(revision: str) -> None:
    """Roll migrations back to REVISION."""
    _alembic("downgrade", revision=revision)
    click.echo(f"Schema rolled back to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a revision from the table definitions."""
    _alembic("revision", message=message, autogenerate=True)
    click.echo(f"New revision: {message}")


@db.command()
def current() -> None:
    """Print the revision the database is at."""
    _alembic("current", verbose=True)


@db.command()
def history() -> None:
    """List known revisions."""
    _alembic("history", verbose=True)


if __name__ == "__main__":
    main()
