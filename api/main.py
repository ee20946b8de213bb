"""
api/main.py -- FastAPI application entry point for CloudScan.

Exposes the auth flow, connection lifecycle, and scan orchestration over
HTTP so a UI or external tooling can drive them.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the component graph (registry, sessions, lifecycle manager,
controller, scan store, orchestrator) into app.state and tears it down in
reverse order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.connections import callback_router
from api.routes.v1.connections import router as connections_router
from api.routes.v1.providers import router as providers_router
from api.routes.v1.scans import router as scans_router
from auth.controller import AuthFlowController
from auth.lifecycle import CredentialLifecycleManager
from auth.registry import ProviderRegistry
from auth.sessions import PkceSessionStore
from core.config import get_settings
from core.errors import (
    InvalidOrExpiredState,
    NoActiveConnection,
    TokenExchangeFailure,
    UnknownProvider,
    UnsupportedScanType,
)
from core.events import EventBus, log_event
from core.scheduler import AsyncioRefreshScheduler
from scans.orchestrator import ScanOrchestrator
from scans.store import ScanStore

API_VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cloudscan.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 5 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired PKCE sessions and old scan records every 5 minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        app.state.controller.purge_expired_sessions()
        removed = app.state.scan_store.purge_older_than(app.state.settings.scan_retention_seconds)
        if removed:
            logger.info("Purged %d scan records past retention", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the component graph on startup; tear it down on shutdown.

    Startup order follows the dependencies: registry before flows, one shared
    httpx client before the lifecycle manager, lifecycle manager before the
    controller and orchestrator. Scan records left "running" by a previous
    process can never finish, so they are failed before the first request.
    """
    settings = get_settings()
    logger.info("CloudScan API starting up")
    app.state.settings = settings

    app.state.events = EventBus()
    app.state.events.subscribe(log_event)
    app.state.registry = ProviderRegistry(settings)
    configured = [pid for pid in app.state.registry.ids() if app.state.registry.is_configured(pid)]
    logger.info("Providers configured: %s", ", ".join(configured) or "none")

    app.state.http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.lifecycle = CredentialLifecycleManager(
        app.state.registry,
        events=app.state.events,
        scheduler=AsyncioRefreshScheduler(),
        http=app.state.http,
    )
    app.state.controller = AuthFlowController(
        app.state.registry,
        PkceSessionStore(ttl=settings.session_ttl_seconds),
        app.state.lifecycle,
    )

    app.state.scan_store = ScanStore(settings.scan_db_url)
    orphaned = app.state.scan_store.fail_running("Interrupted by server restart")
    if orphaned:
        logger.warning("Marked %d orphaned running scans as failed", orphaned)
    app.state.orchestrator = ScanOrchestrator(app.state.registry, app.state.lifecycle, app.state.scan_store)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    await app.state.orchestrator.shutdown()
    await app.state.lifecycle.close()
    app.state.scan_store.close()
    logger.info("CloudScan API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CloudScan API",
    description="Multi-provider OAuth connections and cloud security scans for Azure, AWS, Google Cloud, and GitHub.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and latency. Query strings are never logged:
    the OAuth callback carries the authorization code in its query."""
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

app.include_router(providers_router, prefix="/api/v1", tags=["Providers"])
app.include_router(connections_router, prefix="/api/v1", tags=["Connections"])
app.include_router(scans_router, prefix="/api/v1", tags=["Scans"])
# The callback path is fixed by the redirect URI registered with providers.
app.include_router(callback_router, tags=["Connections"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(UnknownProvider)
async def unknown_provider_handler(request: Request, exc: UnknownProvider) -> JSONResponse:
    return _error(404, "unknown_provider", str(exc))


@app.exception_handler(UnsupportedScanType)
async def unsupported_scan_type_handler(request: Request, exc: UnsupportedScanType) -> JSONResponse:
    return _error(400, "unsupported_scan_type", str(exc))


@app.exception_handler(InvalidOrExpiredState)
async def invalid_state_handler(request: Request, exc: InvalidOrExpiredState) -> JSONResponse:
    return _error(400, "invalid_state", str(exc))


@app.exception_handler(TokenExchangeFailure)
async def token_exchange_handler(request: Request, exc: TokenExchangeFailure) -> JSONResponse:
    """Return 502: the upstream token endpoint refused the code.

    The provider's response body is logged but not echoed; it can contain
    client configuration details.
    """
    logger.warning("Token exchange failed for %s (status=%s)", exc.provider_id, exc.status_code)
    return _error(502, "token_exchange_failed", f"Token exchange with {exc.provider_id} failed.")


@app.exception_handler(NoActiveConnection)
async def no_connection_handler(request: Request, exc: NoActiveConnection) -> JSONResponse:
    return _error(409, "no_active_connection", str(exc))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump().
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit:
# health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and component status."""
    components = {"app": "ok"}
    try:
        request.app.state.scan_store.list_records(limit=1)
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: scan store unavailable")
        components["database"] = "error"
    components["connections"] = str(len(request.app.state.lifecycle.connections()))
    return HealthResponse(version=API_VERSION, components=components)
