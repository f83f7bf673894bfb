"""
api/main.py -- FastAPI application entry point for rtest.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests     -- one log line per request with latency
  2. CORSMiddleware   -- adds CORS headers for allowed browser origins

Middleware added later wraps middleware added earlier, so log_requests
(registered after CORS) sees every request first, preflights included.

Lifespan builds the process-wide objects once and tears them down
symmetrically: the UserStore (database engine), the SessionStore (in-memory
token table) and the three handlers that share them. Nothing is a module
global; routes reach the handlers through request.app.state.

Error envelope:
  Handlers raise core.errors.ServiceError subclasses. A single exception
  handler turns them into {"success": false, "reason": ...} with HTTP 200,
  the same status a success gets. Only unknown routes (404) and unexpected
  crashes (500) change the status code.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import Envelope, HealthResponse
from api.routes.me import router as me_router
from api.routes.session import router as session_router
from api.routes.users import router as users_router
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from core.errors import INTERNAL_ERROR, ServiceError
from handlers.auth import AuthHandler
from handlers.directory import DirectoryHandler
from handlers.profile import ProfileHandler

__version__ = "0.3.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.effective_log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rtest.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, users: UserStore, sessions: SessionStore) -> None:
    """Attach the stores and the handlers built on them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the
    handlers identically.
    """
    app.state.user_store = users
    app.state.sessions = sessions
    app.state.auth_handler = AuthHandler(sessions, users)
    app.state.profile_handler = ProfileHandler(sessions, users)
    app.state.directory_handler = DirectoryHandler(sessions, users)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Sessions live only as long as this context: dropping them at
    shutdown is the whole persistence story.
    """
    logger.info("rtest API starting up")
    install_services(app, UserStore(_settings.database_url), SessionStore())
    logger.info("User store ready")

    yield

    dropped = app.state.sessions.clear()
    app.state.user_store.close()
    logger.info("rtest API shutdown complete (%d session(s) dropped)", dropped)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="rtest API",
    description="Session authentication and user directory for the rtest school testing platform.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; wall-clock time around call_next is the reported latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s -> %s %s %d %.1fms",
        request.client.host if request.client else "unknown",
        request.method,
        request.url.path,
        response.status_code,
        ms,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(session_router, tags=["Session"])
app.include_router(me_router, tags=["Profile"])
app.include_router(users_router, tags=["Directory"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same Envelope so clients can parse every answer
# with one schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Convert a request-level failure into {"success": false, "reason": ...}."""
    return JSONResponse(status_code=200, content=Envelope.fail(exc.reason).to_content())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query parameters that fail FastAPI's own validation (e.g. an oversized grade)."""
    logger.debug("Request validation failed on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=200, content=Envelope.fail("Malformed request").to_content())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown paths and unsupported methods both mean "no such method".

    Registered for Starlette's HTTPException so router-level 404/405 responses
    are caught too, not only FastAPI-raised ones.
    """
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content=Envelope.fail("No such method found").to_content())
    return JSONResponse(status_code=exc.status_code, content=Envelope.fail(str(exc.detail)).to_content())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=Envelope.fail(INTERNAL_ERROR).to_content())


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/health/", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, user store status and the number of active sessions."""
    try:
        database_ok = await asyncio.to_thread(request.app.state.user_store.ping)
    except SQLAlchemyError:
        logger.exception("Health check could not reach the user store")
        database_ok = False
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        database="ok" if database_ok else "unavailable",
        sessions=len(request.app.state.sessions),
    )
