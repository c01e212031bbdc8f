"""Inbound rate limiting for the weather endpoints."""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from weather_app.models.errors import ErrorKind, ErrorResult
from weather_app.services.errors import RATE_LIMIT_MESSAGE

WEATHER_RATE_LIMIT = "100/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Answer throttled clients with the same shape as any other classified error."""
    result = ErrorResult(
        kind=ErrorKind.SERVICE_UNAVAILABLE,
        message=RATE_LIMIT_MESSAGE,
        retryable=True,
        status_code=429,
    )
    return JSONResponse(
        status_code=429,
        content=result.model_dump(mode="json"),
        headers={"Retry-After": "60", "X-RateLimit-Limit": str(exc.detail)},
    )
