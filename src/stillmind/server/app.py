"""FastAPI application factory for the reference entry service."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stillmind import __version__
from stillmind.server.config import ServerConfig
from stillmind.server.database import ServerDatabase
from stillmind.server.dependencies import (
    RateLimiter,
    get_database,
    get_magic_link_sender,
    get_rate_limiter,
    get_server_config,
)
from stillmind.server.email import LoggingMagicLinkSender, MagicLinkSender
from stillmind.server.models import HealthResponse
from stillmind.server.routes import auth_router, entries_router

logger = logging.getLogger(__name__)


def create_app(
    config: ServerConfig | None = None,
    *,
    sender: MagicLinkSender | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Server settings (default: read from the environment)
        sender: Magic link delivery (default: log the link)

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = ServerConfig.from_env()
    link_sender: MagicLinkSender = sender or LoggingMagicLinkSender()
    limiter = RateLimiter(config.rate_limit_max_requests, config.rate_limit_window_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        db = ServerDatabase(config.db_path)
        await db.initialize()
        removed = await db.cleanup_expired_tokens()
        if removed:
            logger.info("Removed %d expired auth tokens", removed)
        app.state.db = db
        yield
        await db.close()

    app = FastAPI(
        title="StillMind",
        description="Journal entry service with magic-link sign-in",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def database() -> ServerDatabase:
        db: ServerDatabase = app.state.db
        return db

    async def server_config() -> ServerConfig:
        return config

    async def magic_link_sender() -> MagicLinkSender:
        return link_sender

    async def rate_limiter() -> RateLimiter:
        return limiter

    app.dependency_overrides[get_database] = database
    app.dependency_overrides[get_server_config] = server_config
    app.dependency_overrides[get_magic_link_sender] = magic_link_sender
    app.dependency_overrides[get_rate_limiter] = rate_limiter

    # Error bodies are {"error": message}
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    api = APIRouter(prefix="/api")
    api.include_router(auth_router)
    api.include_router(entries_router)
    app.include_router(api)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=__version__)

    @app.head("/manifest.json", tags=["health"])
    async def probe() -> None:
        """Lightweight target for client connectivity probes."""

    return app


# Create default app instance for uvicorn
app = create_app()
