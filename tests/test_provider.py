"""Tests for the OpenWeather provider against a mocked transport."""

import asyncio

import httpx
import pytest

from weather_app.services.weather import (
    ProviderConfigurationError,
    WeatherAPIError,
    WeatherNetworkError,
    WeatherProvider,
    WeatherTimeoutError,
)


def _provider(handler, api_key="test-key", timeout=5.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WeatherProvider(
        api_key=api_key,
        base_url="https://api.example.test/data/2.5",
        timeout=timeout,
        client=client,
    )


@pytest.mark.asyncio
async def test_fetch_current_success(current_weather_response):
    """Test request parameters and transformed result."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=current_weather_response)

    provider = _provider(handler)
    location, current = await provider.fetch_current("  London ")
    await provider.close()

    assert location.name == "London"
    assert current.temperature_c == 18
    assert current.wind_speed_kmh == 18

    request = seen[0]
    assert request.url.path == "/data/2.5/weather"
    assert request.url.params["q"] == "London"
    assert request.url.params["appid"] == "test-key"
    assert request.url.params["units"] == "metric"


@pytest.mark.asyncio
async def test_fetch_forecast_success(forecast_response):
    def handler(request):
        assert request.url.path == "/data/2.5/forecast"
        return httpx.Response(200, json=forecast_response)

    provider = _provider(handler)
    location, forecast = await provider.fetch_forecast("London")

    assert location.country == "GB"
    assert [day.high_temp_c for day in forecast] == [15, 22]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 404, 429, 503])
async def test_error_status_raises_api_error(status):
    """Test non-2xx responses carry their status and provider message."""

    def handler(request):
        return httpx.Response(status, json={"cod": str(status), "message": "city not found"})

    provider = _provider(handler)

    with pytest.raises(WeatherAPIError) as exc_info:
        await provider.fetch_current("Atlantis")

    assert exc_info.value.status_code == status
    assert "city not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_error_status_without_json_body():
    provider = _provider(lambda request: httpx.Response(502, text="<html>Bad Gateway</html>"))

    with pytest.raises(WeatherAPIError) as exc_info:
        await provider.fetch_forecast("London")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_timeout_aborts_call():
    """Test a slow upstream is cut off at the request timeout."""

    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    provider = _provider(handler, timeout=0.01)

    with pytest.raises(WeatherTimeoutError):
        await provider.fetch_current("London")


@pytest.mark.asyncio
async def test_transport_timeout_is_timeout():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    provider = _provider(handler)

    with pytest.raises(WeatherTimeoutError):
        await provider.fetch_current("London")


@pytest.mark.asyncio
async def test_connection_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    provider = _provider(handler)

    with pytest.raises(WeatherNetworkError):
        await provider.fetch_forecast("London")


@pytest.mark.asyncio
async def test_missing_api_key_is_caller_error():
    """Test configuration problems raise before any request is made."""
    calls = []
    provider = _provider(lambda request: calls.append(request), api_key="")

    with pytest.raises(ProviderConfigurationError, match="API key not configured"):
        await provider.fetch_current("London")

    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   "])
async def test_empty_name_is_caller_error(name):
    provider = _provider(lambda request: httpx.Response(200, json={}))

    with pytest.raises(ProviderConfigurationError, match="Valid city name is required"):
        await provider.fetch_forecast(name)
