"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Weather Client API"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # Redis (client-scoped persistent key-value store)
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None
    storage_namespace: str = "weather_app"

    # Snapshot cache
    cache_ttl: float = 600.0  # 10 minutes

    # Weather API
    weather_api_key: str | None = None
    weather_api_url: str = "https://api.openweathermap.org/data/2.5"
    weather_icon_url: str = "https://openweathermap.org/img/wn/{icon}@2x.png"
    request_timeout: float = 5.0

    # Client sessions (per-caller retry and last location)
    client_id_header: str = "X-Client-ID"
    client_id_cookie: str = "weather_client_id"
    max_sessions: int = 10000

    # Error log
    error_log_max: int = 10
    error_log_max_debug: int = 20
    unauthorized_dismiss_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


settings = Settings()
