"""
Application Settings for Subscribe & Save

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Scheduling values (timezone, lead hours, dedup window) are shop-wide
    defaults; per-frequency plan rows in the database override discount
    and lead hours when present.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Business calendar
    shop_timezone: str = "America/Los_Angeles"

    # Billing schedule
    default_billing_lead_hours: int = 85
    min_billing_lead_hours: int = 1
    max_billing_lead_hours: int = 168  # 7 days
    max_billing_failures: int = 3

    # Ingestion / reconciliation
    dedup_window_seconds: int = 300
    default_preferred_day: int = 2  # Tuesday
    default_time_slot: str = "12:00 PM - 2:00 PM"

    # Rollover worker
    rollover_hour: int = 2
    rollover_minute: int = 0

    # Commerce platform credentials
    shopify_api_key: Optional[str] = None
    shopify_api_secret: Optional[str] = None

    # Auth for action endpoints and cron trigger
    session_token_secret: Optional[str] = None
    cron_secret: Optional[str] = None

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_schedule_settings(self) -> "Settings":
        """Reject a bad timezone or inconsistent scheduling bounds."""
        try:
            ZoneInfo(self.shop_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown SHOP_TIMEZONE: {self.shop_timezone}")

        if self.min_billing_lead_hours < 1:
            raise ValueError("MIN_BILLING_LEAD_HOURS must be at least 1")
        if self.min_billing_lead_hours > self.max_billing_lead_hours:
            raise ValueError(
                "MIN_BILLING_LEAD_HOURS cannot exceed MAX_BILLING_LEAD_HOURS"
            )

        if not 0 <= self.default_preferred_day <= 6:
            raise ValueError("DEFAULT_PREFERRED_DAY must be between 0 and 6")

        if self.dedup_window_seconds < 0:
            raise ValueError("DEDUP_WINDOW_SECONDS cannot be negative")

        return self

    @property
    def session_secret(self) -> Optional[str]:
        """Secret used to verify session tokens (falls back to the API secret)."""
        return self.session_token_secret or self.shopify_api_secret

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
