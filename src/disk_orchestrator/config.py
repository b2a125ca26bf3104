"""
Configuration settings for Disk Orchestrator.

All settings are loaded from environment variables with sensible defaults.
Use .env file for local development.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "Disk Orchestrator"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # === Control Plane ===
    ARM_BASE_URL: str = "https://management.azure.com"
    ARM_API_VERSION: str = "2025-04-01"
    ARM_TOKEN_RESOURCE: str = "https://management.azure.com"

    # === Transport ===
    REQUEST_TIMEOUT: float = 60.0  # seconds, whole request
    CONNECT_TIMEOUT: float = 60.0  # seconds
    HTTP_MAX_CONNECTIONS: int = 20

    # === Retry ===
    MAX_ATTEMPTS: int = 7  # first try + 6 retries
    RETRY_BACKOFF_BASE: float = 1.5  # seconds, doubled per attempt
    RETRY_BACKOFF_CAP: float = 60.0  # seconds
    HONOR_RETRY_AFTER: bool = True

    # === Polling ===
    POLL_INTERVAL: float = 10.0  # seconds
    POLL_TIMEOUT: float = 1800.0  # seconds

    # === Fan-out ===
    CONCURRENCY_LIMIT: Optional[int] = None  # None = unbounded

    # === Monitoring ===
    PROMETHEUS_ENABLED: bool = True


# Global settings instance
settings = Settings()
