from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    app_name: str = "Popup Discount Issuer"
    app_version: str = "0.1.0"
    environment: str = "local"
    log_json: bool = False

    database_url: str = "sqlite+aiosqlite:///./discounts.db"
    redis_url: str | None = None
    cors_origins: list[str] = ["*"]

    app_proxy_secret: str = ""
    app_proxy_max_skew_seconds: int = 300

    rate_limit_bypass: bool = False
    discount_rate_limit_max: int = 5
    discount_rate_limit_window_seconds: int = 3600

    idempotency_ttl_seconds: int = 30 * 60
    idempotency_max_entries: int = 10_000

    provisioning_base_url: str | None = None
    provisioning_api_key: str | None = None
    provisioning_timeout_seconds: float = 5.0

    bot_min_dwell_ms: int = 0

    # "database" stores popup_events rows; "log" only writes a log line.
    analytics_sink: str = "database"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
