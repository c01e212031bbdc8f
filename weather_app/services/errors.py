"""Error classification and reporting."""

import asyncio
import traceback
from datetime import datetime, timezone
from typing import Callable

import httpx

from weather_app.core.config import settings
from weather_app.core.logging import get_logger
from weather_app.models.errors import ErrorKind, ErrorLogRecord, ErrorResult
from weather_app.services.storage import BackgroundWrites, DebugFlag, ErrorLogStore
from weather_app.services.weather import WeatherNetworkError, WeatherTimeoutError

logger = get_logger(__name__)

MESSAGES = {
    ErrorKind.NETWORK: "Connection error. Please check your internet connection and try again.",
    ErrorKind.TIMEOUT: "Request timed out. Please try again.",
    ErrorKind.NOT_FOUND: "Location not found. Please check the spelling and try again.",
    ErrorKind.SERVICE_UNAVAILABLE: "Weather service is currently unavailable. Please try again later.",
    ErrorKind.UNAUTHORIZED: "Authentication error. Please check API configuration.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}
RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."

SERVER_ERRORS = frozenset({500, 502, 503, 504})

ErrorListener = Callable[[ErrorResult], None]


def status_code_of(error: BaseException) -> int | None:
    """HTTP status carried by an error, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_timeout(error: BaseException) -> bool:
    return isinstance(
        error, (WeatherTimeoutError, asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)
    )


def _is_network(error: BaseException) -> bool:
    if _is_timeout(error):
        return False
    return isinstance(error, (WeatherNetworkError, httpx.TransportError, ConnectionError))


def classify(error: BaseException) -> ErrorResult:
    """Map any failure to an ErrorResult.

    First match wins: network, timeout, not found, unauthorized,
    service unavailable, rate limited, unknown. Message heuristics only
    apply when the error carries no HTTP status.
    """
    status = status_code_of(error)
    text = str(error).lower() if status is None else ""

    if _is_network(error):
        kind, retryable, message = ErrorKind.NETWORK, True, MESSAGES[ErrorKind.NETWORK]
    elif _is_timeout(error):
        kind, retryable, message = ErrorKind.TIMEOUT, True, MESSAGES[ErrorKind.TIMEOUT]
    elif status == 404 or "not found" in text:
        kind, retryable, message = ErrorKind.NOT_FOUND, True, MESSAGES[ErrorKind.NOT_FOUND]
    elif status == 401 or "unauthorized" in text:
        kind, retryable, message = ErrorKind.UNAUTHORIZED, False, MESSAGES[ErrorKind.UNAUTHORIZED]
    elif status in SERVER_ERRORS or "service unavailable" in text:
        kind, retryable, message = (
            ErrorKind.SERVICE_UNAVAILABLE,
            True,
            MESSAGES[ErrorKind.SERVICE_UNAVAILABLE],
        )
    elif status == 429:
        kind, retryable, message = ErrorKind.SERVICE_UNAVAILABLE, True, RATE_LIMIT_MESSAGE
    else:
        kind, retryable, message = ErrorKind.UNKNOWN, True, MESSAGES[ErrorKind.UNKNOWN]

    return ErrorResult(
        kind=kind,
        message=message,
        retryable=retryable,
        status_code=status,
        auto_dismiss_seconds=(
            settings.unauthorized_dismiss_seconds if kind is ErrorKind.UNAUTHORIZED else None
        ),
    )


class ErrorReporter:
    """Classifies errors, logs them and notifies subscribers.

    Subscribers replace a global "current error" slot: the presentation
    layer registers a callback and decides how to show each ErrorResult.
    """

    def __init__(self, error_log: ErrorLogStore | None = None, debug_flag: DebugFlag | None = None):
        self.error_log = error_log
        self.debug_flag = debug_flag
        self.debug_mode = settings.debug
        self._listeners: list[ErrorListener] = []
        self._writes = BackgroundWrites()

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def refresh_debug_mode(self) -> bool:
        """Reload the persisted debug flag."""
        if self.debug_flag is not None:
            self.debug_mode = await self.debug_flag.enabled() or settings.debug
        return self.debug_mode

    async def set_debug_mode(self, enabled: bool) -> None:
        self.debug_mode = enabled
        if self.debug_flag is not None:
            await self.debug_flag.set(enabled)

    def report(self, error: BaseException, context: str) -> ErrorResult:
        """Classify an error, log it and notify listeners.

        Never raises: logging, persistence and listener failures are
        swallowed after a warning.
        """
        result = classify(error)
        record = self._record(error, context, result)

        try:
            if self.debug_mode:
                logger.error("weather_error", **record.model_dump(mode="json", exclude={"timestamp"}))
            else:
                logger.error(
                    "weather_error",
                    context=context,
                    kind=result.kind.value,
                    error=record.message,
                    status_code=result.status_code,
                )
        except Exception as e:
            logger.warning("error_logging_failed", error=str(e))

        if self.error_log is not None:
            try:
                self._writes.spawn(self.error_log.append(record))
            except RuntimeError as e:
                logger.warning("error_log_schedule_failed", error=str(e))

        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.warning("error_listener_failed", listener=repr(listener), error=str(e))

        return result

    def _record(self, error: BaseException, context: str, result: ErrorResult) -> ErrorLogRecord:
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return ErrorLogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            context=context or "Unknown context",
            kind=result.kind,
            message=str(error) or "No error message",
            error_type=type(error).__name__,
            stack=stack,
            status_code=result.status_code,
            debug_mode=self.debug_mode,
        )

    async def flush(self) -> None:
        """Wait for pending error-log writes."""
        await self._writes.flush()
