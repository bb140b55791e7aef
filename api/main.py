"""
api/main.py -- FastAPI application entry point for SitePosture.

Exposes the posture engine over HTTP: the in-page collector pushes passive
scans, the dashboard reads Reports and triggers active scans.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- latency log for every response, rejected ones included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. public_ingest_cors    -- open CORS for the collector endpoint only
  4. CORSMiddleware        -- dashboard origins for every other route
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Starlette wraps each newly added middleware around the existing stack, so the
registration below runs from innermost to outermost.

Lifespan builds the stores and engine objects once and tears them down
symmetrically. Route handlers reach them through request.app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.security import router as security_router
from auth.store import UserStore
from core.access import ReportAccess
from core.aggregator import ReportAggregator
from core.config import get_settings
from core.errors import ScanError
from core.gateways import ActiveGateway, PassiveGateway
from reports.store import ReportStore
from scanner.browser import BrowserScanner
from tenants.policy import RoleAccessPolicy
from tenants.store import TenantStore

API_VERSION = "0.3.0"
PUBLIC_INGEST_PATH = "/api/v1/security/ingest"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("siteposture.api")

_settings = get_settings()


def _store_kwargs() -> dict:
    """Empty DATABASE_URL keeps each store on its own SQLite file."""
    return {"db_url": _settings.database_url} if _settings.database_url else {}


def build_engine(app: FastAPI, user_store, tenant_store, report_store, scanner) -> None:
    """Wire the engine objects onto app.state.

    Shared by the real lifespan and the test fixtures so both run the same
    object graph.
    """
    policy = RoleAccessPolicy(_settings.privileged_roles)
    aggregator = ReportAggregator(
        report_store,
        tenant_store,
        max_attempts=_settings.storage_retry_attempts,
    )
    app.state.user_store = user_store
    app.state.tenant_store = tenant_store
    app.state.report_store = report_store
    app.state.policy = policy
    app.state.aggregator = aggregator
    app.state.passive_gateway = PassiveGateway(aggregator, report_store, tenant_store, user_store, policy)
    app.state.active_gateway = ActiveGateway(
        aggregator,
        tenant_store,
        scanner,
        policy,
        retry_attempts=_settings.scan_retry_attempts,
    )
    app.state.report_access = ReportAccess(report_store, tenant_store, policy)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores on startup, close them on shutdown.

    The browser is not started here: BrowserScanner launches Chromium per
    scan, so an idle API holds no browser process.
    """
    logger.info("SitePosture API starting up")
    kwargs = _store_kwargs()
    user_store = UserStore(**kwargs)
    tenant_store = TenantStore(**kwargs)
    report_store = ReportStore(**kwargs)
    scanner = BrowserScanner(
        timeout_seconds=_settings.scan_timeout_seconds,
        user_agent=_settings.browser_user_agent,
    )
    build_engine(app, user_store, tenant_store, report_store, scanner)
    logger.info(
        "Engine ready (scan timeout %ss, %d scan attempt(s), %d storage attempt(s))",
        _settings.scan_timeout_seconds,
        _settings.scan_retry_attempts,
        _settings.storage_retry_attempts,
    )

    yield

    report_store.close()
    tenant_store.close()
    user_store.close()
    logger.info("SitePosture API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SitePosture API",
    description="Website security posture: passive and active scan ingestion, scoring, and reports.",
    version=API_VERSION,
    lifespan=lifespan,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Public CORS for the collector endpoint
#
# The collector script runs on every tenant's own domain, so the ingest
# route must answer any origin. It carries no credentials, which makes a
# wildcard origin safe. Preflights are answered here and never reach
# CORSMiddleware, which would reject unknown origins.
# ---------------------------------------------------------------------------

_PUBLIC_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


@app.middleware("http")
async def public_ingest_cors(request: Request, call_next):
    if request.url.path != PUBLIC_INGEST_PATH:
        return await call_next(request)
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=_PUBLIC_CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(_PUBLIC_CORS_HEADERS)
    return response


app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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

app.include_router(security_router, prefix="/api/v1", tags=["Security"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ScanError)
async def scan_error_handler(request: Request, exc: ScanError) -> JSONResponse:
    """Map engine errors onto their HTTP status.

    5xx details stay in the log; the client only learns the error code and
    whether retrying may help.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s (%s)", exc.code, request.method, request.url.path, exc.message, exc.detail)
        detail = None
    else:
        detail = exc.detail
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, detail=detail)).model_dump(),
    )
    if exc.retryable:
        response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
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
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit applied -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the report database answers."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.report_store.count_scans("", "")
    except ScanError:
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
