"""Application settings loaded from the environment with pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "testing", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("structured", "plain")


def _choice(value: str, choices: tuple, name: str) -> str:
    if value not in choices:
        raise ValueError(f"{name} must be one of: {', '.join(choices)}")
    return value


class Settings(BaseSettings):
    """Monitor configuration. Every field can be set from an environment variable."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"
    debug: bool = False

    # Polling cadence per instrument
    active_interval_seconds: int = Field(30, ge=1, le=86400)
    idle_interval_seconds: int = Field(300, ge=1, le=86400)
    max_monitored_symbols: int = Field(50, ge=1)
    alert_refresh_interval_seconds: int = Field(60, ge=1)
    shutdown_grace_seconds: float = Field(10.0, ge=0)

    activity_timeout_seconds: int = Field(1800, ge=1)
    activity_queue_size: int = Field(1000, ge=1)
    activity_sweep_interval_seconds: int = Field(60, ge=1)

    market_data_base_url: str = "https://api.binance.com"
    market_data_ttl_seconds: float = Field(20.0, ge=0)
    market_data_timeout_seconds: float = Field(10.0, gt=0)
    ohlcv_interval: str = "1m"
    ohlcv_window_length: int = Field(200, ge=2, le=1000)
    volume_lookback: int = Field(20, ge=1)

    # UTC window applied to alerts restricted to trading hours
    trading_hours_start: int = Field(0, ge=0, le=24)
    trading_hours_end: int = Field(24, ge=0, le=24)
    trading_weekdays_only: bool = False

    notification_timeout_seconds: float = Field(10.0, gt=0)
    telegram_bot_token: Optional[str] = None
    line_channel_access_token: Optional[str] = None
    webhook_timeout_seconds: float = Field(5.0, gt=0)

    persistence_retry_attempts: int = Field(3, ge=1, le=10)
    persistence_retry_wait_seconds: float = Field(0.5, ge=0)

    endpoint_host: str = "0.0.0.0"
    endpoint_port: int = Field(8000, ge=1, le=65535)
    api_log_level: str = "INFO"

    database_url: Optional[str] = None
    data_directory: str = "data"
    database_echo_sql: bool = False

    log_level: str = "INFO"
    log_format: str = "structured"
    log_file_enabled: bool = True
    log_file_path: str = "data/vigil.log"
    log_max_file_size: str = "10MB"
    log_backup_count: int = Field(5, ge=0)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        return _choice(v.lower(), ENVIRONMENTS, "environment")

    @field_validator("log_level", "api_log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return _choice(v.upper(), LOG_LEVELS, "log level")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        return _choice(v.lower(), LOG_FORMATS, "log format")

    @model_validator(mode="after")
    def validate_windows(self):
        """Idle cadence must be slower than active; trading window must be ordered."""
        if self.idle_interval_seconds <= self.active_interval_seconds:
            raise ValueError("idle_interval_seconds must be greater than active_interval_seconds")
        if self.trading_hours_start >= self.trading_hours_end:
            raise ValueError("trading_hours_start must be before trading_hours_end")
        return self

    def get_database_url(self) -> str:
        """Configured database URL, or a SQLite file in the data directory."""
        if self.database_url:
            return self.database_url

        data_dir = Path(self.data_directory)
        data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{data_dir / 'vigil.db'}"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings for the running process."""
    return Settings()


def validate_required_settings() -> bool:
    """
    Check that settings load and a database URL can be resolved.

    Returns:
        bool: True if settings are valid, False otherwise
    """
    try:
        get_settings().get_database_url()
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        return False
    return True
