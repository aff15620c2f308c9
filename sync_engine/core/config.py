"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="SYNC_",
    )

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    log_level: Literal["debug", "info", "warning", "error"] = "info"

    # Application settings
    app_name: str = "Fuel Network Sync Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # CORS settings
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Database
    database_url: str | None = None

    # Scheduler settings
    scheduler_enabled: bool = True
    scheduler_tick_seconds: float = 1.0

    # Execution history
    max_execution_records_per_workflow: int = 500

    # Statistics and alerting
    stats_window_size: int = 50
    stats_period_days: int = 30
    critical_failure_threshold: int = 3
    error_status_threshold: int = 5

    # External collaborators
    template_catalog_url: str = "http://localhost:8100"
    inventory_url: str = "http://localhost:8200"
    collaborator_timeout_seconds: float = 10.0

    # Notification transport (SMTP); notices are only logged when smtp_host is unset
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "sync-engine@localhost"
    smtp_start_tls: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
