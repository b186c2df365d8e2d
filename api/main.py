"""
api/main.py -- FastAPI application entry point for Gatehouse.

Exposes AuthService over HTTP. Routers stay thin: they translate HTTP into
service calls and service results into JSON, cookies and headers.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one log line per request with latency

Rate limiting is not a middleware here: AuthService applies the login and
registration limits itself, so in-process callers are limited the same way.

Lifespan builds the store, repositories, limiter and service, and starts the
expired-session purge task; shutdown cancels the task and disposes the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, FieldErrorItem, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.profile import router as profile_router
from auth.credentials import CredentialStore
from auth.db import Database
from auth.errors import AuthError, RateLimitExceeded
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.sessions import SessionManager
from core.config import get_settings

__version__ = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every `interval` seconds.

    Expired rows are already inert (every lookup filters on expires_at); this
    only reclaims space. The purge runs in a worker thread so the blocking
    DELETE never stalls the event loop. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.session_manager.purge_expired)
        except SQLAlchemyError as exc:
            logger.warning("Session purge failed (%s); retrying next cycle", exc.__class__.__name__)
            continue
        if removed:
            logger.info("Purged %d expired session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database -- creates the schema; everything else sits on top of it.
      2. Repositories and limiter -- depend only on the database / settings.
      3. AuthService -- composes the three.
      4. Purge task last -- references app.state.session_manager.
    """
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    db = Database(settings.database_url, timeout=settings.store_timeout_seconds)
    app.state.db = db
    app.state.credential_store = CredentialStore(
        db,
        max_attempts=settings.max_login_attempts,
        lockout=timedelta(seconds=settings.lockout_seconds),
    )
    app.state.session_manager = SessionManager(db)
    app.state.rate_limiter = RateLimiter(settings.rate_limit_storage_uri)
    app.state.auth_service = AuthService(
        db,
        app.state.credential_store,
        app.state.session_manager,
        app.state.rate_limiter,
        settings,
    )
    logger.info("Auth initialized (rate limit storage=%s)", settings.rate_limit_storage_uri.split(":", 1)[0])
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    db.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Session-based authentication: registration, login, lockout, sessions and profile management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map every AuthError to its status code and the error envelope.

    The message and context are safe to return verbatim; see auth/errors.py.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, **exc.context()),
        ).model_dump(exclude_none=True),
    )
    if isinstance(exc, RateLimitExceeded):
        response.headers["Retry-After"] = str(exc.retry_after)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body is not the expected JSON shape."""
    errors = [
        FieldErrorItem(
            field=".".join(str(part) for part in err["loc"] if part != "body") or "body",
            message=err["msg"],
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="request_validation_error",
                message="Request validation failed.",
                errors=errors,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness, version, and the reachability of the user/session store."""
    try:
        request.app.state.db.ping()
        database = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable (%s)", exc.__class__.__name__)
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    body = HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body.model_dump())
