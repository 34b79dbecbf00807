"""
FastAPI application factory for the ScoreFusion API service.

Creates the app with:
- REST routes (matches, leagues, ops)
- Middleware stack and error mapping
- Health check endpoint
- Lifespan management: database, Redis, provider clients and the live
  refresh scheduler are created, injected and shut down here
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Callable, Optional

import httpx
from fastapi import FastAPI

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import init_dependencies
from api.facade import QueryFacade
from api.middleware import setup_middleware
from api.routes.leagues import router as leagues_router
from api.routes.matches import router as matches_router
from api.routes.ops import router as ops_router
from ingest.aggregator import MatchAggregator
from ingest.health import ProviderHealthMonitor
from ingest.providers.registry import ProviderRegistry, build_registry
from ingest.repository import SqlMatchRepository
from scheduler.service import LiveUpdateScheduler

logger = get_logger(__name__)

_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


@dataclass
class Components:
    """Everything the lifespan owns, in construction order."""

    registry: ProviderRegistry
    aggregator: MatchAggregator
    scheduler: LiveUpdateScheduler
    facade: QueryFacade


def build_components(
    db: DatabaseManager,
    redis: Optional[RedisManager] = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Components:
    """Wire registry -> health -> aggregator -> scheduler -> facade."""
    settings = settings or get_settings()
    registry = build_registry(settings, transport)
    health = ProviderHealthMonitor(registry.names, settings)
    aggregator = MatchAggregator(registry, health, settings=settings)
    repository = SqlMatchRepository(db)
    scheduler = LiveUpdateScheduler(aggregator, repository, redis, settings)
    facade = QueryFacade(aggregator, repository, scheduler, redis, settings)
    return Components(registry=registry, aggregator=aggregator, scheduler=scheduler, facade=facade)


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing with pre-built components."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Startup connects infrastructure and starts provider clients and the
    live refresh; shutdown stops them in reverse order.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()

    db = DatabaseManager(settings)
    await _connect_with_retry(db.connect, "Database")
    if settings.db_create_all:
        await db.create_all()

    redis: Optional[RedisManager] = None
    if settings.redis_enabled:
        redis = RedisManager(settings)
        await _connect_with_retry(redis.connect, "Redis")

    components = build_components(db, redis, settings)
    await components.registry.start_all()
    init_dependencies(components.facade, db)
    if settings.refresh_autostart:
        await components.scheduler.start()

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        providers=[n.value for n in components.registry.names],
    )

    yield

    await components.scheduler.stop()
    await components.registry.close_all()
    if redis is not None:
        await redis.disconnect()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True, facade: QueryFacade | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Pass use_lifespan=False together with a pre-built facade to serve
    without connecting to the database, Redis or providers (tests).
    """
    app = FastAPI(
        title="ScoreFusion API",
        description="Multi-provider sports match aggregation",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if facade is not None:
        init_dependencies(facade)

    setup_middleware(app)

    app.include_router(matches_router)
    app.include_router(leagues_router)
    app.include_router(ops_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    return app
