"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from runebook.api.auth import router as auth_router
from runebook.api.health import router as health_router
from runebook.config import Settings
from runebook.database import create_engine
from runebook.exceptions import (
    BadRequestError,
    ConflictError,
    InternalServerError,
    RateLimitedError,
    UnauthorizedError,
)
from runebook.models.base import Base
from runebook.services.auth_service import AuthService
from runebook.services.hashing_service import BcryptHasher
from runebook.services.id_service import SnowflakeGenerator
from runebook.services.rate_limit_service import RateLimitRegistry
from runebook.services.session_store import SqlSessionStore
from runebook.services.sweeper import PeriodicSweeper

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def init_services(app: FastAPI) -> None:
    """Build the store and auth service on top of the app's session factory."""
    settings: Settings = app.state.settings
    store = SqlSessionStore(
        app.state.session_factory,
        timeout=settings.store_timeout_seconds,
        bind_address=settings.session_bind_address,
    )
    app.state.session_store = store
    app.state.auth_service = AuthService(
        store=store,
        rate_limiter=app.state.rate_limiter,
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
        id_generator=SnowflakeGenerator(node_id=settings.node_id),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting Runebook (debug=%s)", settings.debug)

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    init_services(app)

    sweeper = PeriodicSweeper(
        settings.sweep_interval_seconds,
        app.state.auth_service.cleanup,
        name="session-sweeper",
    ).start()
    app.state.sweeper = sweeper

    yield

    try:
        await sweeper.stop()
    except Exception as exc:
        logger.error("Error during sweeper shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Runebook stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Runebook",
        description="Account and session service for rune page management",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.rate_limiter = RateLimitRegistry(max_entries=settings.rate_limit_max_entries)

    app.include_router(health_router)
    app.include_router(auth_router)

    # Error kinds raised by the auth core map to fixed statuses here only.

    @app.exception_handler(BadRequestError)
    async def bad_request_handler(request: Request, exc: BadRequestError) -> JSONResponse:
        logger.debug("BadRequestError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
        logger.debug("UnauthorizedError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        logger.info("RateLimitedError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=429,
            content={"detail": str(exc)},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        logger.debug("ConflictError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "runebook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
