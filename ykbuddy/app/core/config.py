import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw.strip("[]")):
        part = part.strip("\"' ")
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Durations are in seconds.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional shared store for limiter and cache)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_strategy: str = "fixed_window"  # fixed_window | sliding_window
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )
    rate_limit_cleanup_interval: float = 60.0

    # Per-policy limits (max requests per window)
    rate_limit_auth_max_requests: int = 5
    rate_limit_auth_window_seconds: float = 15 * 60
    rate_limit_api_max_requests: int = 100
    rate_limit_api_window_seconds: float = 60
    rate_limit_read_max_requests: int = 200
    rate_limit_read_window_seconds: float = 60
    rate_limit_write_max_requests: int = 30
    rate_limit_write_window_seconds: float = 60
    rate_limit_sensitive_max_requests: int = 3
    rate_limit_sensitive_window_seconds: float = 60

    # Cache settings
    cache_enabled: bool = True
    cache_default_ttl: float = 300  # 5 minutes
    cache_cleanup_interval: float = 600  # 10 minutes
    cache_dedupe_fetches: bool = False

    # Retry settings for upstream calls
    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff_multiplier: float = 2.0
    retry_max_delay: float = 30.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 5.0
    httpx_read_timeout: float = 10.0
    httpx_write_timeout: float = 5.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 50
    httpx_max_keepalive_connections: int = 10

    # Weather upstream (Yellowknife)
    weather_api_url: str = "https://api.open-meteo.com/v1/forecast"
    weather_latitude: float = 62.454
    weather_longitude: float = -114.3718

    # Admin endpoints are disabled while this is empty
    admin_token: str = ""

    # Use NoDecode so plain comma separated values don't go through JSON parsing.
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("admin_token", mode="before")
    @classmethod
    def strip_admin_token(cls, v: Any) -> Any:
        # Secret stores tend to append a trailing newline
        return v.strip() if isinstance(v, str) else v

    @field_validator(
        "rate_limit_auth_max_requests",
        "rate_limit_api_max_requests",
        "rate_limit_read_max_requests",
        "rate_limit_write_max_requests",
        "rate_limit_sensitive_max_requests",
        "retry_max_retries",
    )
    @classmethod
    def validate_non_negative_count(cls, v: int, info) -> int:
        """Validate request counts are positive and retry counts non-negative."""
        minimum = 0 if info.field_name == "retry_max_retries" else 1
        if v < minimum:
            raise ValueError(f"{info.field_name} must be at least {minimum}")
        return v

    @field_validator(
        "rate_limit_auth_window_seconds",
        "rate_limit_api_window_seconds",
        "rate_limit_read_window_seconds",
        "rate_limit_write_window_seconds",
        "rate_limit_sensitive_window_seconds",
        "rate_limit_cleanup_interval",
        "cache_default_ttl",
        "cache_cleanup_interval",
        "retry_initial_delay",
        "retry_max_delay",
        "httpx_connect_timeout",
        "httpx_read_timeout",
    )
    @classmethod
    def validate_positive_duration(cls, v: float, info) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("retry_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("retry_backoff_multiplier must be at least 1")
        return v

    @field_validator("rate_limit_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("fixed_window", "sliding_window"):
            raise ValueError("rate_limit_strategy must be fixed_window or sliding_window")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
