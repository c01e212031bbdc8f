"""Weather provider for current conditions and 5-day forecasts."""

import asyncio
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any

import httpx

from weather_app.core.config import settings
from weather_app.core.logging import get_logger
from weather_app.models.weather import (
    MAX_FORECAST_DAYS,
    CurrentConditions,
    ForecastDay,
    Location,
)

logger = get_logger(__name__)

MS_TO_KMH = 3.6


class WeatherServiceError(Exception):
    """Weather service error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WeatherNetworkError(WeatherServiceError):
    """The provider could not be reached."""


class WeatherTimeoutError(WeatherServiceError):
    """The provider did not answer within the request timeout."""


class WeatherAPIError(WeatherServiceError):
    """The provider answered with a non-success HTTP status."""


class ProviderConfigurationError(ValueError):
    """Caller error: missing API key or empty location name."""


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return math.floor(value + 0.5)


def most_frequent(values: list[str]) -> str:
    """Most common value; ties go to the value seen first."""
    if not values:
        return ""
    return Counter(values).most_common(1)[0][0]


def icon_url(icon: str) -> str:
    """Resolve an icon identifier to an image URL."""
    return settings.weather_icon_url.format(icon=icon)


def transform_current(payload: dict[str, Any]) -> tuple[Location, CurrentConditions]:
    """Map a raw current-weather payload to the application model.

    Raises:
        WeatherServiceError: If the payload is malformed
    """
    try:
        weather = payload["weather"][0]
        main = payload["main"]
        wind_speed = (payload.get("wind") or {}).get("speed")

        location = Location(
            name=payload["name"],
            country=(payload.get("sys") or {}).get("country", ""),
        )
        current = CurrentConditions(
            temperature_c=round_half_up(main["temp"]),
            condition=weather["main"],
            description=weather.get("description", ""),
            icon=weather.get("icon", ""),
            humidity_pct=round_half_up(main["humidity"]),
            wind_speed_kmh=round_half_up(wind_speed * MS_TO_KMH) if wind_speed is not None else 0,
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise WeatherServiceError(f"Failed to parse current weather: {e!s}") from e

    return location, current


def transform_forecast(payload: dict[str, Any]) -> tuple[Location, list[ForecastDay]]:
    """Aggregate 3-hour forecast samples into daily forecasts.

    Samples are grouped by the UTC date of their timestamp. Each day gets
    the rounded max/min temperature and its most frequent condition and
    icon. Only the first five dates are kept.

    Raises:
        WeatherServiceError: If the payload is malformed
    """
    try:
        city = payload["city"]
        location = Location(name=city["name"], country=city.get("country", ""))

        buckets: dict[Any, dict[str, list]] = {}
        for sample in payload["list"]:
            day = datetime.fromtimestamp(sample["dt"], tz=timezone.utc).date()
            bucket = buckets.setdefault(day, {"temps": [], "conditions": [], "icons": []})
            weather = sample["weather"][0]
            bucket["temps"].append(sample["main"]["temp"])
            bucket["conditions"].append(weather["main"])
            bucket["icons"].append(weather.get("icon", ""))

        forecast = [
            ForecastDay(
                date=day,
                high_temp_c=round_half_up(max(bucket["temps"])),
                low_temp_c=round_half_up(min(bucket["temps"])),
                condition=most_frequent(bucket["conditions"]),
                icon=most_frequent(bucket["icons"]),
            )
            for day, bucket in sorted(buckets.items())[:MAX_FORECAST_DAYS]
        ]
    except (KeyError, IndexError, TypeError, ValueError, OverflowError, OSError) as e:
        raise WeatherServiceError(f"Failed to parse forecast: {e!s}") from e

    return location, forecast


class WeatherProvider:
    """OpenWeather client for current conditions and forecasts."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize provider with a pooled HTTP client.

        Args:
            api_key: OpenWeather API key, defaults to settings.weather_api_key
            base_url: API base URL, defaults to settings.weather_api_url
            timeout: Per-request timeout in seconds, defaults to settings.request_timeout
            client: Preconfigured HTTP client (used by tests)
        """
        self.api_key = api_key if api_key is not None else settings.weather_api_key
        self.base_url = (base_url or settings.weather_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30.0,
            ),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    def _check_request(self, location_name: str) -> str:
        if not self.api_key:
            raise ProviderConfigurationError("API key not configured")
        if not location_name or not isinstance(location_name, str) or not location_name.strip():
            raise ProviderConfigurationError("Valid city name is required")
        return location_name.strip()

    async def _request(self, endpoint: str, location_name: str) -> dict[str, Any]:
        """Issue a GET bounded by the request timeout.

        Raises:
            WeatherTimeoutError: If the call exceeds the timeout
            WeatherNetworkError: If the provider cannot be reached
            WeatherAPIError: If the provider returns an error status
        """
        url = f"{self.base_url}/{endpoint}"
        params = {"q": location_name, "appid": self.api_key, "units": "metric"}

        try:
            response = await asyncio.wait_for(
                self.client.get(url, params=params), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning("weather_api_timeout", endpoint=endpoint, timeout=self.timeout)
            raise WeatherTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.TimeoutException as e:
            logger.warning("weather_api_timeout", endpoint=endpoint, timeout=self.timeout)
            raise WeatherTimeoutError(f"Request timed out: {e!s}") from e
        except httpx.TransportError as e:
            logger.error("weather_api_unreachable", endpoint=endpoint, error=str(e))
            raise WeatherNetworkError(f"Connection failed: {e!s}") from e

        if response.is_error:
            message = self._error_message(response)
            logger.error(
                "weather_api_failed",
                endpoint=endpoint,
                status_code=response.status_code,
                error=message,
            )
            raise WeatherAPIError(
                f"API request failed: {response.status_code} {message}".strip(),
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise WeatherServiceError(f"Invalid JSON from {endpoint}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return str(response.json().get("message", ""))
        except (ValueError, AttributeError):
            return ""

    async def fetch_current(self, location_name: str) -> tuple[Location, CurrentConditions]:
        """Fetch current weather for a location.

        Args:
            location_name: Location name as sent to the provider

        Returns:
            Tuple of (location, current conditions)

        Raises:
            ProviderConfigurationError: If the API key or name is missing
            WeatherServiceError: If the data cannot be retrieved
        """
        name = self._check_request(location_name)
        payload = await self._request("weather", name)
        location, current = transform_current(payload)
        logger.info("current_weather_fetched", city=name, temperature=current.temperature_c)
        return location, current

    async def fetch_forecast(self, location_name: str) -> tuple[Location, list[ForecastDay]]:
        """Fetch and aggregate the multi-day forecast for a location.

        Args:
            location_name: Location name as sent to the provider

        Returns:
            Tuple of (location, up to five daily forecasts)

        Raises:
            ProviderConfigurationError: If the API key or name is missing
            WeatherServiceError: If the data cannot be retrieved
        """
        name = self._check_request(location_name)
        payload = await self._request("forecast", name)
        location, forecast = transform_forecast(payload)
        logger.info("forecast_fetched", city=name, days=len(forecast))
        return location, forecast
