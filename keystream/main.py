"""
keystream Application Factory
=============================

This is the main entry point for the live-typing chat service.

Architecture:
    Browser tabs ⇄ WebSocket (/ws) ⇄ Room Fanout
    External feeds → /api/relay/ingest → Relay Scheduler → Room Fanout

Routers:
    - /ws                 : WebSocket connections for live typing
    - /api/messages/*     : Recent room history
    - /api/relay/ingest   : External item ingestion (relay typing)
    - /realtime/status    : Connection and relay statistics
    - /health             : Health check endpoint

Environment Variables (all optional):
    - LOG_LEVEL: Logging level (default: INFO)
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - RELAY_SHARED_SECRET: Secret required in X-Relay-Secret for ingestion
    - See keystream/config.py for rate limits, retention and relay tuning

Running the Service:
    Development:
        uvicorn keystream.main:app --reload --host 0.0.0.0 --port 8080

    Production (single worker; all state lives in process memory):
        uvicorn keystream.main:app --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn keystream.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, get_settings
from .models import ErrorResponse, HealthResponse
from .realtime import history_router, realtime_router, status_router
from .realtime.guard import FrameGuard
from .realtime.manager import RoomFanout
from .relay import RelayScheduler, relay_router
from .sessions import SessionRegistry
from .storage import InMemoryMessageStore


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_components(app: FastAPI, settings: Settings) -> None:
    """
    Create the service components and attach them to app.state.

    Each component owns its own lock and periodic task; nothing is started
    until the lifespan runs.
    """
    store = InMemoryMessageStore(
        ttl_minutes=settings.MESSAGE_TTL_MINUTES,
        sweep_interval=settings.MESSAGE_SWEEP_SECONDS,
    )
    fanout = RoomFanout(queue_size=settings.OUTBOUND_QUEUE_SIZE)

    app.state.settings = settings
    app.state.store = store
    app.state.fanout = fanout
    app.state.registry = SessionRegistry(
        timeout=settings.SESSION_TIMEOUT_SECONDS,
        sweep_interval=settings.SESSION_SWEEP_SECONDS,
    )
    app.state.guard = FrameGuard(
        min_interval_ms=settings.RATE_MIN_INTERVAL_MS,
        window_seconds=settings.RATE_WINDOW_SECONDS,
        max_messages=settings.RATE_MAX_MESSAGES,
        max_length=settings.CONTENT_MAX_LENGTH,
        max_repeat=settings.CONTENT_MAX_REPEAT,
        max_symbol_ratio=settings.CONTENT_MAX_SYMBOL_RATIO,
    )
    app.state.scheduler = RelayScheduler(
        store=store,
        fanout=fanout,
        tick_interval=settings.relay_tick_seconds,
        max_frames_per_tick=settings.RELAY_MAX_FRAMES_PER_TICK,
        max_frames_per_job=settings.RELAY_MAX_FRAMES_PER_JOB,
        dedup_capacity=settings.RELAY_DEDUP_CAPACITY,
        default_username=settings.RELAY_DEFAULT_USERNAME,
        max_content_length=settings.RELAY_MAX_CONTENT_LENGTH,
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Start the message retention sweep, session expiry sweep and relay tick loop

    Shutdown tasks:
        - Stop the relay tick loop
        - Close active WebSocket connections
        - Stop the sweeps
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("keystream.main")

    await app.state.store.start()
    await app.state.registry.start()
    await app.state.scheduler.start()

    logger.info(
        "keystream service started",
        extra={
            "service": "keystream",
            "version": __version__,
            "relay_secret_configured": bool(settings.RELAY_SHARED_SECRET),
        }
    )

    yield

    logger.info("Shutting down keystream service")

    await app.state.scheduler.stop()

    try:
        await app.state.fanout.close_all()
    except Exception as e:
        logger.error(f"Error closing WebSocket connections: {e}")

    await app.state.registry.stop()
    await app.state.store.stop()

    logger.info("keystream service shutdown complete")


# Create FastAPI application
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use instead of the environment (tests)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="keystream",
        description="Live-typing chat rooms with relay typing playback",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    build_components(app, settings)

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # Mount routers
    app.include_router(realtime_router, tags=["Real-time Communications"])
    app.include_router(history_router)
    app.include_router(status_router)
    app.include_router(relay_router)

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            HealthResponse: Service health information
        """
        return HealthResponse(status="ok", service="keystream", version=__version__)

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root() -> Dict[str, object]:
        """
        Root endpoint with service information.

        Returns:
            dict: Service metadata and available endpoints
        """
        return {
            "service": "keystream",
            "version": __version__,
            "description": "Live-typing chat rooms with relay typing playback",
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "websocket": "/ws",
                "history": "/api/messages/{room}",
                "relay": "/api/relay/ingest",
                "status": "/realtime/status"
            }
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("keystream.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
                detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
            ).model_dump(),
        )

    return app


# Create app instance for uvicorn
app = create_app()


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = get_settings()

    uvicorn.run(
        "keystream.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
