"""FastAPI application factory"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .. import __version__
from ..shared.database import DatabaseManager, PoolConfig
from ..shared.errors import CooldownActiveError, QueueError, StoreUnavailableError
from ..shared.lifecycle import LifecycleStateMachine
from ..shared.migrations import MigrationRunner
from ..shared.models import RequestKind
from ..shared.notifier import ChangeNotifier
from ..shared.repositories import (
    MemoryModuleConfigRepository,
    MemoryRequestRepository,
    ModuleConfigRepository,
    PgRequestRepository,
)
from .core.config import Settings, get_settings
from .core.dependencies import (
    close_track_catalog,
    get_database_manager,
    get_track_catalog,
    init_queue_service,
    set_database_manager,
)
from .core.logging import setup_logging
from .routers import config_router, realtime_router, requests_router
from .services.queue_service import QueueService

logger = logging.getLogger(__name__)


async def _build_service(settings: Settings) -> QueueService:
    """Wire the store backend, notifier and lifecycle into a QueueService."""
    lifecycle = LifecycleStateMachine.from_overrides(
        {
            RequestKind.SONG: settings.song_transitions,
            RequestKind.KARAOKE: settings.karaoke_transitions,
        }
    )

    if settings.store_backend == "postgres":
        db_manager = DatabaseManager(
            settings.database_url,
            PoolConfig(
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                ssl="require" if settings.database_ssl else None,
            ),
        )
        await db_manager.connect()
        set_database_manager(db_manager)
        if settings.run_migrations:
            await MigrationRunner(db_manager.pool).run_pending()
        store = PgRequestRepository(db_manager.pool)
        configs = ModuleConfigRepository(
            db_manager.pool,
            default_cooldown_seconds=settings.default_cooldown_seconds,
            default_max_per_guest=settings.default_max_per_guest,
            cache_ttl=settings.config_cache_ttl,
        )
    else:
        logger.warning("Using the in-memory store, requests are lost on restart")
        store = MemoryRequestRepository()
        configs = MemoryModuleConfigRepository(
            default_cooldown_seconds=settings.default_cooldown_seconds,
            default_max_per_guest=settings.default_max_per_guest,
        )

    catalog = get_track_catalog(settings)
    if not catalog.enabled:
        logger.info("YouTube lookup disabled (no API key)")
    return QueueService(
        store,
        configs,
        ChangeNotifier(settings.subscriber_queue_size),
        lifecycle=lifecycle,
        catalog=catalog if catalog.enabled else None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    settings: Settings = app.state.settings
    app.state.started_at = time.time()

    logger.info("Starting Encore API server")
    logger.info(f"Environment: {settings.environment} | Store: {settings.store_backend}")

    service = await _build_service(settings)
    init_queue_service(service)

    yield

    logger.info("Shutting down Encore API server")
    init_queue_service(None)
    try:
        await service.notifier.aclose()
        await close_track_catalog()
        db_manager = get_database_manager()
        if db_manager is not None:
            await db_manager.disconnect()
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")
    finally:
        set_database_manager(None)


async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    """Render engine rejections as ``{"detail", "code", ...context}``"""
    if isinstance(exc, StoreUnavailableError):
        logger.error(f"{request.method} {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": "Service temporarily unavailable", "code": exc.code},
        )
    headers = None
    if isinstance(exc, CooldownActiveError):
        headers = {"Retry-After": str(exc.remaining_seconds)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="Encore API",
        description="Song and karaoke request queues for live events",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(QueueError, queue_error_handler)

    app.include_router(requests_router.router)
    app.include_router(config_router.router)
    app.include_router(realtime_router.router)

    # Liveness probe, no external dependency
    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - app.state.started_at),
        }

    @app.get("/status")
    async def status():
        """Readiness endpoint, includes a DB health check"""
        db_manager = get_database_manager()
        db_ok = await db_manager.check_health() if db_manager is not None else None
        return {
            "service": "encore-api",
            "version": __version__,
            "uptime_seconds": int(time.time() - app.state.started_at),
            "store_backend": settings.store_backend,
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        return "pong"

    logger.info("FastAPI application configured")

    return app
