"""FastAPI surface for the weather client core."""

import re
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest
from slowapi.errors import RateLimitExceeded

from weather_app.core.config import settings
from weather_app.core.logging import configure_logging, get_logger
from weather_app.middleware.rate_limit import (
    WEATHER_RATE_LIMIT,
    limiter,
    rate_limit_exceeded_handler,
)
from weather_app.models.errors import ErrorKind, ErrorLogRecord, ErrorResponse, ErrorResult
from weather_app.models.weather import (
    CacheStats,
    DebugModeRequest,
    HealthResponse,
    LastLocationResponse,
    WeatherSnapshot,
)
from weather_app.services.client import ClientSessions, SearchOutcome, WeatherClient
from weather_app.services.coordinator import RequestCoordinator
from weather_app.services.errors import ErrorReporter
from weather_app.services.storage import DebugFlag, ErrorLogStore, KeyValueStore
from weather_app.services.weather import WeatherProvider

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter(
    "weather_client_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status"],
)
REQUEST_DURATION = Histogram(
    "weather_client_request_duration_seconds",
    "Request duration in seconds",
    ["method", "endpoint"],
)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.NETWORK: 502,
    ErrorKind.UNAUTHORIZED: 502,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.UNKNOWN: 500,
}

_CLIENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

router = APIRouter()


def build_sessions(store: KeyValueStore) -> ClientSessions:
    """Wire the shared coordinator and the per-caller sessions from settings."""
    reporter = ErrorReporter(error_log=ErrorLogStore(store), debug_flag=DebugFlag(store))
    coordinator = RequestCoordinator(WeatherProvider(), reporter=reporter)
    return ClientSessions(coordinator, store=store)


def get_sessions(request: Request) -> ClientSessions:
    sessions = request.app.state.sessions
    if sessions is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return sessions


def get_client(request: Request) -> WeatherClient:
    """Facade for the calling client, identified by assign_client_id."""
    return get_sessions(request).get(request.state.client_id)


def _outcome_response(outcome: SearchOutcome):
    if outcome.validation_message is not None:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="Invalid location", detail=outcome.validation_message
            ).model_dump(),
        )
    if outcome.error is not None:
        return JSONResponse(
            status_code=STATUS_BY_KIND[outcome.error.kind],
            content=outcome.error.model_dump(mode="json"),
        )
    return outcome.snapshot


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    logger.info("application_starting", version=settings.app_version)

    store: KeyValueStore = app.state.store
    # A store handed in already connected stays owned by its caller
    owns_connection = store.redis is None
    if owns_connection:
        await store.connect()

    if app.state.sessions is None:
        app.state.sessions = build_sessions(store)
    await app.state.sessions.reporter.refresh_debug_mode()

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    await app.state.sessions.aclose()
    if owns_connection:
        await store.disconnect()
    logger.info("application_stopped")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    tags=["Health"],
)
async def health_check(request: Request):
    """Service health including the persistent store connection.

    The service stays usable without the store, so a missing
    connection only degrades the status.
    """
    storage_connected = await request.app.state.store.is_connected()

    logger.info("health_check", storage_connected=storage_connected)

    return HealthResponse(
        status="healthy" if storage_connected else "degraded",
        version=settings.app_version,
        storage_connected=storage_connected,
    )


@router.get(
    "/weather",
    response_model=WeatherSnapshot,
    summary="Get weather for a location",
    description="""Current conditions and up to five days of forecast.

    Results are cached for 10 minutes per location and concurrent
    requests for the same location share a single upstream fetch.

    **Rate Limit**: 100 requests per minute per IP address
    """,
    tags=["Weather"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid location query"},
        404: {"model": ErrorResult, "description": "Location not found"},
        429: {"model": ErrorResult, "description": "Rate limit exceeded"},
        502: {"model": ErrorResult, "description": "Network or configuration failure"},
        503: {"model": ErrorResult, "description": "Weather service unavailable"},
        504: {"model": ErrorResult, "description": "Weather service timed out"},
    },
)
@limiter.limit(WEATHER_RATE_LIMIT)
async def get_weather(request: Request, q: str = Query("", description="Location name")):
    """Get weather data for a location.

    Args:
        request: FastAPI request object (for rate limiting)
        q: Location name (e.g., "London", "St Louis")
    """
    outcome = await get_client(request).search(q)
    return _outcome_response(outcome)


@router.post(
    "/weather/retry",
    response_model=WeatherSnapshot,
    summary="Retry the last search",
    tags=["Weather"],
)
async def retry_weather(request: Request):
    outcome = await get_client(request).retry()
    return _outcome_response(outcome)


@router.get(
    "/location/last",
    response_model=LastLocationResponse,
    summary="Last searched location",
    tags=["Weather"],
)
async def last_location(request: Request):
    return LastLocationResponse(name=await get_client(request).last_location())


@router.get("/cache/stats", response_model=CacheStats, tags=["Cache"])
async def cache_stats(request: Request):
    return get_sessions(request).cache_stats()


@router.delete("/cache", status_code=204, tags=["Cache"])
async def clear_cache(request: Request):
    get_sessions(request).clear_cache()


@router.get("/errors", response_model=list[ErrorLogRecord], tags=["Diagnostics"])
async def error_log(request: Request):
    """Recently classified errors, most recent first."""
    error_store = get_sessions(request).reporter.error_log
    return await error_store.entries() if error_store is not None else []


@router.delete("/errors", status_code=204, tags=["Diagnostics"])
async def clear_error_log(request: Request):
    error_store = get_sessions(request).reporter.error_log
    if error_store is not None:
        await error_store.clear()


@router.put("/debug", response_model=DebugModeRequest, tags=["Diagnostics"])
async def set_debug_mode(request: Request, body: DebugModeRequest):
    """Toggle verbose error logging."""
    reporter = get_sessions(request).reporter
    await reporter.set_debug_mode(body.enabled)
    return DebugModeRequest(enabled=reporter.debug_mode)


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus metrics",
    tags=["Monitoring"],
)
async def metrics():
    """Prometheus metrics endpoint."""
    return generate_latest()


async def add_correlation_id(request: Request, call_next):
    """Add correlation ID to each request for tracing."""
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

    # Bind correlation ID to structlog context
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id

    return response


async def assign_client_id(request: Request, call_next):
    """Identify the caller so retry and last location stay per client.

    The id comes from the client id header, then the cookie; a caller
    presenting neither (or a malformed id) is issued a new one as a cookie.
    """
    client_id = request.headers.get(settings.client_id_header) or request.cookies.get(
        settings.client_id_cookie
    )
    issued = client_id is None or not _CLIENT_ID.match(client_id)
    if issued:
        client_id = uuid.uuid4().hex

    request.state.client_id = client_id
    structlog.contextvars.bind_contextvars(client_id=client_id)

    response = await call_next(request)
    response.headers[settings.client_id_header] = client_id
    if issued:
        response.set_cookie(settings.client_id_cookie, client_id, httponly=True, samesite="lax")

    return response


async def metrics_middleware(request: Request, call_next):
    """Track request metrics."""
    method = request.method
    path = request.url.path

    with REQUEST_DURATION.labels(method=method, endpoint=path).time():
        response = await call_next(request)

    REQUEST_COUNT.labels(method=method, endpoint=path, status=response.status_code).inc()

    return response


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)},
    )


def create_app(
    sessions: ClientSessions | None = None, store: KeyValueStore | None = None
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        sessions: Prebuilt client sessions; built from settings at startup when omitted
        store: Persistent store; a Redis-backed store when omitted
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Weather lookups with caching, request deduplication and classified errors",
        lifespan=lifespan,
    )
    app.state.store = store if store is not None else KeyValueStore()
    app.state.sessions = sessions

    # Add rate limiter state and exception handler
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.middleware("http")(assign_client_id)
    app.middleware("http")(add_correlation_id)
    app.middleware("http")(metrics_middleware)
    app.include_router(router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "weather_app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
