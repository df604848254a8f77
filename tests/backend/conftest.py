"""Shared fixtures for backend unit tests (in-memory collaborators)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fakes import WS_ENDPOINT, FakePusher, FakeSecretsResolver, FakeTaskRunner
from httpx import ASGITransport, AsyncClient

from execrelay.backend.events.processor import EventProcessor
from execrelay.backend.managers.orchestrator import Orchestrator
from execrelay.backend.store.memory import InMemoryConnectionStore, InMemoryExecutionRepository, InMemoryTokenStore
from execrelay.backend.websocket.manager import WebSocketManager

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def runner() -> FakeTaskRunner:
    return FakeTaskRunner()


@pytest.fixture
def secrets_resolver() -> FakeSecretsResolver:
    return FakeSecretsResolver({"db-password": "s3cret", "api-key": "k"})


@pytest.fixture
def pusher() -> FakePusher:
    return FakePusher()


@pytest.fixture
def tokens() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def connections() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest.fixture
def ws_manager(tokens: InMemoryTokenStore, connections: InMemoryConnectionStore, pusher: FakePusher) -> WebSocketManager:
    return WebSocketManager(
        endpoint=WS_ENDPOINT,
        tokens=tokens,
        connections=connections,
        pusher=pusher,
        token_ttl_seconds=300,
        push_timeout=0.2,
    )


@pytest.fixture
def orchestrator(
    repo: InMemoryExecutionRepository,
    runner: FakeTaskRunner,
    secrets_resolver: FakeSecretsResolver,
    ws_manager: WebSocketManager,
) -> Orchestrator:
    return Orchestrator(repo=repo, runner=runner, secrets=secrets_resolver, websocket=ws_manager)


@pytest.fixture
def processor(repo: InMemoryExecutionRepository, ws_manager: WebSocketManager) -> EventProcessor:
    return EventProcessor(repo=repo, websocket=ws_manager)


@pytest.fixture
async def client(orchestrator: Orchestrator, processor: EventProcessor) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with in-memory collaborators.

    The app lifespan does NOT run under ``ASGITransport``, so state fields
    are pre-set here.
    """
    from execrelay.backend.app import app

    app.state.auth_token = "test-token"
    app.state.db_engine = None
    app.state.redis = None
    app.state.orchestrator = orchestrator
    app.state.event_processor = processor

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": "Bearer test-token", "X-User-Email": "alice@example.com"},
    ) as ac:
        yield ac
