"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/ticketsync"

    # Zendesk API
    zendesk_subdomain: str = "example"
    zendesk_email: str = ""
    zendesk_api_token: str = ""

    # Rate limiting (Zendesk allows ~700 req/min on most plans; stay well under)
    request_delay_seconds: float = 7.0
    max_retries: int = 3
    default_retry_after_seconds: int = 60
    request_timeout_seconds: float = 30.0

    # Paging
    page_size: int = 100
    ticket_max_pages: int = 50
    snapshot_max_pages: int = 500
    initial_lookback_days: int = 90

    # Schedules (UTC)
    tickets_poll_interval_minutes: int = 5
    entities_poll_interval_minutes: int = 60
    daily_aggregation_hour: int = 2
    weekly_aggregation_hour: int = 3
    monthly_aggregation_hour: int = 4
    startup_jitter_min_seconds: float = 10.0
    startup_jitter_max_seconds: float = 20.0
    scheduler_enabled: bool = True

    # Analytics cache (owned by the query layer; we only invalidate it)
    redis_url: str | None = None
    analytics_cache_pattern: str = "analytics:*"

    # API settings
    api_v1_prefix: str = "/api/v1"
    cors_origins: list[str] = ["*"]  # Restrict in production
    manual_trigger_rate_limit: str = "10/minute"

    # Environment
    log_level: str = "INFO"
    debug: bool = False

    @property
    def zendesk_base_url(self) -> str:
        return f"https://{self.zendesk_subdomain}.zendesk.com/api/v2"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
