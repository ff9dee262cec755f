"""Configuration settings for the recurring-transaction scheduler."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger API (the finance app's REST backend)
    ledger_api_url: str = Field(
        default="http://localhost:4321", validation_alias="LEDGER_API_URL"
    )
    ledger_api_key: SecretStr = Field(..., validation_alias="LEDGER_API_KEY")
    ledger_timeout: float = Field(default=30.0, validation_alias="LEDGER_TIMEOUT")
    ledger_max_retries: int = Field(default=3, validation_alias="LEDGER_MAX_RETRIES")

    # Persistence
    database_url: str = Field(
        default="sqlite:///recurring_schedules.db", validation_alias="DATABASE_URL"
    )

    # Scheduling
    scheduler_timezone: str = Field(default="UTC", validation_alias="SCHEDULER_TIMEZONE")
    tick_interval_seconds: float = Field(
        default=3600.0, validation_alias="TICK_INTERVAL_SECONDS"
    )
    reminder_days_ahead: int = Field(default=3, validation_alias="REMINDER_DAYS_AHEAD")
    max_catch_up: int = Field(default=366, validation_alias="MAX_CATCH_UP")

    # WebSocket event feed
    ws_host: str = Field(default="0.0.0.0", validation_alias="WS_HOST")
    ws_port: int = Field(default=8766, validation_alias="WS_PORT")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
