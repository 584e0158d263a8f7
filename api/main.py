"""
api/main.py -- FastAPI application factory for the auth service.

Exposes the AuthEngine over HTTP: cookie-based sessions for browsers, Bearer
access tokens for API clients.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- only when ALLOWED_ORIGINS is set; credentials allowed
                       so the session cookies travel cross-origin
  2. log_requests   -- one access-log line per request

Lifespan builds the store, the hasher pool and the engine on startup and
tears them down in reverse order on shutdown. A store passed in by the caller
(tests) is left open; the caller owns it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.engine import AuthEngine
from auth.errors import (
    AuthError,
    AuthUnavailable,
    InvalidCredentials,
    InvalidToken,
    NotVerified,
    UserAlreadyExists,
    UserNotFound,
)
from auth.mailer import Mailer
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.config import Settings

API_VERSION = "1.0.0"

logger = logging.getLogger("authservice.api")

# Order matters: subclasses before their bases (OperationTimeout and
# EntropyUnavailable resolve through AuthUnavailable).
_STATUS_BY_ERROR: tuple[tuple[type[AuthError], int], ...] = (
    (InvalidCredentials, 401),
    (InvalidToken, 401),
    (NotVerified, 403),
    (UserNotFound, 404),
    (UserAlreadyExists, 409),
    (AuthUnavailable, 503),
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(settings: Settings) -> None:
    """Install the process-wide log format. Called by entry points only, never on import."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired refresh tokens every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and ends the loop. A failed sweep is logged and retried on
    the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await app.state.engine.purge_expired()
        except AuthUnavailable:
            logger.warning("Expired token sweep failed; retrying in %ds", interval)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings,
    store: Optional[AuthStore] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    """Build the ASGI app for `settings`.

    Pass `store` to share one AuthStore with the caller (tests seed and
    inspect it directly); otherwise one is opened on DATABASE_URL.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        logger.info("Auth service starting up")
        owns_store = store is None
        app.state.store = store if store is not None else AuthStore(settings.database_url)
        app.state.hasher = PasswordHasher(cost=settings.bcrypt_cost, max_workers=settings.hash_workers)
        app.state.engine = AuthEngine(
            app.state.store,
            app.state.store,
            app.state.hasher,
            settings,
            mailer=mailer,
        )
        logger.info(
            "Auth engine ready (bcrypt_cost=%d, access_ttl=%ds, refresh_ttl=%ds)",
            settings.bcrypt_cost,
            settings.access_token_ttl_seconds,
            settings.refresh_token_ttl_seconds,
        )
        sweep_task = None
        if settings.token_sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(_sweep_loop(app, settings.token_sweep_interval_seconds))

        yield

        # Shutdown
        if sweep_task is not None:
            sweep_task.cancel()
        app.state.hasher.close()
        if owns_store:
            app.state.store.close()
        logger.info("Auth service shutdown complete")

    app = FastAPI(
        title="Auth Service API",
        description="Password login with short-lived access tokens and rotating refresh tokens.",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------

    if settings.origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
            max_age=3600,
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
    app.include_router(users_router, prefix="/api/v1", tags=["Users"])

    # -----------------------------------------------------------------------
    # Exception handlers
    #
    # All handlers return the same ErrorResponse envelope so API clients can
    # parse errors uniformly.
    # -----------------------------------------------------------------------

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Map engine failures to status codes. The message is the class default.

        Security note: for AuthUnavailable the cause was logged by the engine;
        the client only learns that the service is unavailable.
        """
        status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
        response = JSONResponse(
            status_code=status,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 422 with structured error when request body or query params fail validation."""
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="validation_error",
                    message="Request validation failed.",
                    detail=str(exc.errors()),
                )
            ).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Return a structured error for all FastAPI/Starlette HTTP exceptions.

        Registered on the Starlette base class so router 404/405s are covered too.

        When detail is already a structured dict, use it directly as the error
        field rather than stringifying it.
        """
        if isinstance(exc.detail, dict):
            content = {"error": exc.detail}
        else:
            content = ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump()
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler for unexpected server errors.

        Security note: the raw exception is written to the log only, never to
        the response body.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="internal_error",
                    message="An unexpected error occurred.",
                )
            ).model_dump(),
        )

    # -----------------------------------------------------------------------
    # Health endpoint
    #
    # Defined here (not in a router) so it is always reachable regardless of
    # router registration state.
    # -----------------------------------------------------------------------

    @app.get("/api/v1/health", tags=["Health"])
    async def health(request: Request) -> JSONResponse:
        """Return liveness plus a database round trip. 503 if the store is down."""
        try:
            db_ok = await asyncio.to_thread(request.app.state.store.ping)
        except SQLAlchemyError:
            logger.exception("Health check could not reach the database")
            db_ok = False
        body = HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=API_VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )
        return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())

    return app
