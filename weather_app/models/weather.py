"""Pydantic models for weather snapshots and API responses."""

import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_FORECAST_DAYS = 5


class Location(BaseModel):
    """Resolved location as reported by the weather provider."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Location name")
    country: str = Field(default="", description="Country code")


class CurrentConditions(BaseModel):
    """Current weather conditions."""

    model_config = ConfigDict(frozen=True)

    temperature_c: int = Field(..., description="Current temperature in Celsius")
    condition: str = Field(..., description="Weather condition group, e.g. 'Clouds'")
    description: str = Field(default="", description="Detailed weather description")
    icon: str = Field(default="", description="Opaque icon identifier")
    humidity_pct: int = Field(..., ge=0, le=100, description="Relative humidity in percent")
    wind_speed_kmh: int = Field(default=0, ge=0, description="Wind speed in km/h")


class ForecastDay(BaseModel):
    """Aggregated forecast for one calendar day."""

    model_config = ConfigDict(frozen=True)

    date: datetime.date = Field(..., description="Calendar date (UTC)")
    high_temp_c: int = Field(..., description="Highest sample temperature in Celsius")
    low_temp_c: int = Field(..., description="Lowest sample temperature in Celsius")
    condition: str = Field(..., description="Most frequent condition of the day")
    icon: str = Field(default="", description="Most frequent icon of the day")


class WeatherSnapshot(BaseModel):
    """Current conditions plus short-range forecast for one location."""

    model_config = ConfigDict(frozen=True)

    location: Location
    current: CurrentConditions
    forecast: tuple[ForecastDay, ...] = Field(default=(), max_length=MAX_FORECAST_DAYS)

    @field_validator("forecast")
    @classmethod
    def _chronological(cls, days: tuple[ForecastDay, ...]) -> tuple[ForecastDay, ...]:
        for previous, current in zip(days, days[1:]):
            if current.date <= previous.date:
                raise ValueError("forecast days must be strictly chronological")
        return days


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    storage_connected: bool = Field(..., description="Persistent store connection status")


class LastLocationResponse(BaseModel):
    """Last successfully searched location."""

    name: str | None = Field(None, description="Display name of the last searched location")


class CacheStats(BaseModel):
    """Snapshot cache statistics."""

    total_entries: int
    valid_entries: int
    expired_entries: int
    ttl_seconds: float
    inflight: int = 0


class DebugModeRequest(BaseModel):
    """Toggle for verbose error logging."""

    enabled: bool
