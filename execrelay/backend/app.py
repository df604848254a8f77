from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI
from fastapi.routing import APIRouter
from loguru import logger

from execrelay.backend.db.engine import create_engine, create_session_factory
from execrelay.backend.deps import require_auth
from execrelay.backend.errors import register_error_handlers
from execrelay.backend.events.processor import EventProcessor
from execrelay.backend.log import (
    EventRequestIdExtractor,
    LambdaContextExtractor,
    RequestIdHeaderExtractor,
    RequestLogger,
    setup_logging,
)
from execrelay.backend.managers.orchestrator import Orchestrator
from execrelay.backend.providers.apigateway import ApiGatewayPusher
from execrelay.backend.providers.ecs import EcsTaskRunner
from execrelay.backend.providers.ssm import SsmSecretsResolver
from execrelay.backend.settings import ExecRelaySettings, get_settings
from execrelay.backend.store.base import ConnectionStore, ExecutionRepository, TokenStore
from execrelay.backend.store.memory import InMemoryConnectionStore, InMemoryExecutionRepository, InMemoryTokenStore
from execrelay.backend.store.redis import RedisConnectionStore, RedisTokenStore
from execrelay.backend.store.sql import SqlExecutionRepository
from execrelay.backend.websocket.manager import WebSocketManager

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_websocket_manager(
    settings: ExecRelaySettings,
    tokens: TokenStore,
    connections: ConnectionStore,
) -> WebSocketManager | None:
    if not settings.websocket_api_endpoint:
        return None
    pusher = ApiGatewayPusher(settings.websocket_endpoint_url, region=settings.aws_region)
    return WebSocketManager(
        endpoint=settings.websocket_api_endpoint,
        tokens=tokens,
        connections=connections,
        pusher=pusher,
        token_ttl_seconds=settings.websocket_token_ttl_seconds,
        single_use_tokens=settings.websocket_token_single_use,
        push_timeout=settings.push_timeout_seconds,
        max_concurrency=settings.broadcast_concurrency,
    )


def build_orchestrator(
    settings: ExecRelaySettings,
    repo: ExecutionRepository,
    websocket: WebSocketManager | None,
) -> Orchestrator | None:
    if not settings.ecs_cluster:
        return None
    runner = EcsTaskRunner(
        cluster=settings.ecs_cluster,
        task_definition=settings.ecs_task_definition,
        subnets=settings.ecs_subnets,
        security_groups=settings.ecs_security_groups,
        log_group=settings.log_group,
        container_name=settings.runner_container_name,
        assign_public_ip=settings.ecs_assign_public_ip,
        image_task_definitions=settings.image_task_definitions,
        region=settings.aws_region,
    )
    secrets = SsmSecretsResolver(settings.secrets_prefix, region=settings.aws_region)
    return Orchestrator(
        repo=repo,
        runner=runner,
        secrets=secrets,
        websocket=websocket,
        runner_container=settings.runner_container_name,
    )


def build_event_processor(
    settings: ExecRelaySettings,
    repo: ExecutionRepository,
    websocket: WebSocketManager | None,
) -> EventProcessor:
    request_logger = RequestLogger([RequestIdHeaderExtractor(), LambdaContextExtractor(), EventRequestIdExtractor()])
    return EventProcessor(
        repo=repo,
        websocket=websocket,
        runner_container=settings.runner_container_name,
        request_logger=request_logger,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    auth_token = settings.resolve_auth_token()
    if not settings.auth_token:
        logger.warning("No EXECRELAY_AUTH_TOKEN set -- generated token: {}", auth_token)

    logger.info("execrelay starting (host={}, port={})", settings.host, settings.port)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.auth_token = auth_token
    _app.state.db_engine = None
    _app.state.redis = None
    _app.state.orchestrator = None
    _app.state.event_processor = None

    # -- Execution repository --------------------------------------------------
    repo: ExecutionRepository
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        repo = SqlExecutionRepository(create_session_factory(engine))
        logger.info("PostgreSQL: connected (pool_size=5, max_overflow=10)")
    else:
        repo = InMemoryExecutionRepository()
        logger.warning("EXECRELAY_DATABASE_URL not set -- executions kept in memory only")

    # -- Token / connection stores ---------------------------------------------
    tokens: TokenStore
    connections: ConnectionStore
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        tokens = RedisTokenStore(_app.state.redis)
        connections = RedisConnectionStore(_app.state.redis)
        logger.info("Redis: connected")
    else:
        tokens = InMemoryTokenStore()
        connections = InMemoryConnectionStore()
        logger.warning("EXECRELAY_REDIS_URL not set -- WebSocket tokens kept in memory only")

    # -- Services --------------------------------------------------------------
    websocket = build_websocket_manager(settings, tokens, connections)
    if websocket is None:
        logger.warning("EXECRELAY_WEBSOCKET_API_ENDPOINT not set -- log streaming disabled")

    _app.state.orchestrator = build_orchestrator(settings, repo, websocket)
    if _app.state.orchestrator is None:
        logger.warning("EXECRELAY_ECS_CLUSTER not set -- execution endpoints disabled")
    else:
        logger.info("Orchestrator: initialised (cluster={})", settings.ecs_cluster)

    _app.state.event_processor = build_event_processor(settings, repo, websocket)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("execrelay shutting down")

    # Close Redis client (returns pooled connections).
    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    # Dispose DB engine (closes all pooled connections).
    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="execrelay", lifespan=lifespan)
register_error_handlers(app)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


from execrelay.backend.routers.events import router as events_router  # noqa: E402
from execrelay.backend.routers.executions import router as executions_router  # noqa: E402

api.include_router(executions_router, dependencies=[Depends(require_auth)])
api.include_router(events_router, dependencies=[Depends(require_auth)])

app.include_router(api)
