"""Test configuration and fixtures."""

import asyncio
from datetime import datetime, timezone

import pytest
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient

from weather_app.main import create_app
from weather_app.middleware.rate_limit import limiter
from weather_app.models.weather import CurrentConditions, ForecastDay, Location
from weather_app.services.cache import SnapshotCache
from weather_app.services.client import ClientSessions
from weather_app.services.coordinator import RequestCoordinator
from weather_app.services.errors import ErrorReporter
from weather_app.services.storage import DebugFlag, ErrorLogStore, KeyValueStore


def _ts(year, month, day, hour):
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp())


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Provider double counting calls; optionally blocks until released."""

    def __init__(self, temperature: int = 18, error: Exception | None = None):
        self.temperature = temperature
        self.error = error
        self.current_calls: list[str] = []
        self.forecast_calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error

    async def fetch_current(self, location_name):
        self.current_calls.append(location_name)
        await self._wait()
        return (
            Location(name=location_name, country="GB"),
            CurrentConditions(
                temperature_c=self.temperature,
                condition="Clouds",
                description="broken clouds",
                icon="04d",
                humidity_pct=71,
                wind_speed_kmh=18,
            ),
        )

    async def fetch_forecast(self, location_name):
        self.forecast_calls.append(location_name)
        await self._wait()
        return (
            Location(name=location_name, country="GB"),
            [
                ForecastDay(
                    date=datetime(2024, 1, 13).date(),
                    high_temp_c=15,
                    low_temp_c=9,
                    condition="Rain",
                    icon="10d",
                )
            ],
        )

    async def close(self):
        self.closed = True


@pytest.fixture
async def mock_redis():
    """Mock Redis with fakeredis."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()


@pytest.fixture
def store(mock_redis):
    """Key-value store backed by fakeredis."""
    return KeyValueStore(redis=mock_redis, namespace="test")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def reporter(store):
    return ErrorReporter(error_log=ErrorLogStore(store), debug_flag=DebugFlag(store))


@pytest.fixture
def coordinator(provider, reporter, clock):
    """Fresh coordinator per test."""
    return RequestCoordinator(provider, reporter=reporter, cache=SnapshotCache(ttl=600, clock=clock))


@pytest.fixture
def current_weather_response():
    """Raw current weather payload."""
    return {
        "name": "London",
        "sys": {"country": "GB"},
        "main": {"temp": 18.4, "humidity": 71},
        "weather": [{"main": "Clouds", "description": "broken clouds", "icon": "04d"}],
        "wind": {"speed": 5},
    }


@pytest.fixture
def forecast_response():
    """Raw forecast payload: 8 three-hour samples over two UTC dates."""
    temps = [10, 12, 15, 9, 20, 22, 18, 16]
    hours = [0, 6, 12, 18]
    samples = []
    for index, temp in enumerate(temps):
        day = 13 if index < 4 else 14
        condition = "Rain" if index in (0, 1, 4) else "Clouds"
        samples.append(
            {
                "dt": _ts(2024, 1, day, hours[index % 4]),
                "main": {"temp": temp},
                "weather": [{"main": condition, "icon": "10d" if condition == "Rain" else "04d"}],
            }
        )
    return {"city": {"name": "London", "country": "GB"}, "list": samples}


CLIENT_ID = "test-client"


@pytest.fixture
def sessions(coordinator, store):
    return ClientSessions(coordinator, store=store)


@pytest.fixture
def app(sessions, store):
    """Application wired to the test doubles, with a fresh rate-limit window."""
    limiter.reset()
    return create_app(sessions=sessions, store=store)


@pytest.fixture
async def http(app):
    """Async HTTP client talking to the app in-process."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Client-ID": CLIENT_ID},
    ) as client:
        yield client
