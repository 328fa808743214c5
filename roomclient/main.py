"""Room Client - FastAPI Application Entry Point.

Local control surface for one room session client: a UI process sends
intents over HTTP and polls the room snapshot.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from roomclient import __version__
from roomclient.api.routes import health
from roomclient.api.routes import room
from roomclient.config.settings import get_settings
from roomclient.exceptions import RoomClientError
from roomclient.observability.logging import init_logging
from roomclient.observability.metrics import set_build_info

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds the room client on startup and leaves the room on shutdown.
    """
    settings = get_settings()
    init_logging(
        json_format=settings.environment == "production",
        level=settings.log_level,
    )
    logger.info(
        "roomclient_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
    )

    try:
        client = room.get_room_client()
        health.set_component_health("media_engine", True)
        health.set_component_health("room_client", True)
        set_build_info(__version__, settings.media_engine)

        # Signaling health follows the room state
        client.subscribe(
            lambda snapshot: health.set_component_health(
                "signaling", snapshot.state == "joined"
            )
        )

        health.set_ready(True)
        logger.info("roomclient_ready", components=health.get_component_health())

    except Exception as e:
        logger.error("roomclient_startup_failed", error=str(e))
        raise

    yield  # Application runs here

    logger.info("roomclient_shutting_down")
    health.set_ready(False)

    await room.get_room_client().exit_room()
    logger.info("roomclient_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Room Client",
        description="Multi-party audio/video room session client",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(room.router)

    if settings.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    @app.exception_handler(RoomClientError)
    async def room_error_handler(request: Request, exc: RoomClientError) -> JSONResponse:
        logger.warning(
            "room_request_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return JSONResponse(status_code=500, content={"detail": exc.to_dict()})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level),
    )

    uvicorn.run(
        "roomclient.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
