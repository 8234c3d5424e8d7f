"""
Application configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file = ".env",
        env_file_encoding = "utf-8",
        populate_by_name = True
    )

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./audit.db", alias="DATABASE_URL")

    # Ledger gateway
    ledger_base_url: str = Field(default="http://localhost:8100", alias="LEDGER_BASE_URL")
    ledger_api_key: Optional[str] = Field(default=None, alias="LEDGER_API_KEY")
    anchor_timeout: float = Field(default=20.0, gt=0, alias="ANCHOR_TIMEOUT")

    # Batching
    batch_interval: float = Field(default=4 * 60 * 60, gt=0, alias="BATCH_INTERVAL")
    max_batch_size: int = Field(default=1000, ge=1, alias="MAX_BATCH_SIZE")
    poll_interval: float = Field(default=30.0, gt=0, alias="POLL_INTERVAL")
    reconcile_max_retries: int = Field(default=2, ge=0, alias="RECONCILE_MAX_RETRIES")
    reconcile_backoff_base: float = Field(default=0.5, ge=0, alias="RECONCILE_BACKOFF_BASE")

    # Verification and recovery
    verify_on_ledger: bool = Field(default=True, alias="VERIFY_ON_LEDGER")
    recovery_on_startup: bool = Field(default=True, alias="RECOVERY_ON_STARTUP")
    recovery_min_age: float = Field(default=0.0, ge=0, alias="RECOVERY_MIN_AGE")
    flush_on_shutdown: bool = Field(default=True, alias="FLUSH_ON_SHUTDOWN")

    # Application
    app_name: str = Field(default="Audit Anchor Service", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
