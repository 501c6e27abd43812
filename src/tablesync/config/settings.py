"""Application configuration settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Scheduler and sync engine configuration."""

    max_concurrency: int = Field(default=10, ge=1, description="Fetch tasks running at once")
    max_pending: int = Field(default=100, ge=1, description="Fetch tasks queued before submission blocks")
    batch_size: int = Field(default=500, ge=1, description="Rows per record batch")
    queue_size: int = Field(default=64, ge=1, description="Messages buffered between scheduler and transport")
    sync_timeout_seconds: Optional[float] = Field(default=None, description="Cancel the sync after this long")

    multiplex_max_retries: int = Field(default=3, ge=0)
    multiplex_retry_delay: float = Field(default=1.0, ge=0)

    rate_limit_calls: Optional[int] = Field(default=None, ge=1, description="Resolver invocations per window")
    rate_limit_window: Optional[float] = Field(default=None, gt=0, description="Rate limit window in seconds")

    model_config = SettingsConfigDict(env_prefix="TABLESYNC_ENGINE_")


class StateSettings(BaseSettings):
    """Incremental state store configuration."""

    backend: str = Field(default="memory", description="memory, file or sql")
    path: str = Field(default="./data/state.json")
    url: str = Field(default="sqlite:///./data/state.db")

    model_config = SettingsConfigDict(env_prefix="TABLESYNC_STATE_")


class TransportSettings(BaseSettings):
    """Plugin transport configuration."""

    endpoint: Optional[str] = Field(default=None, description="Plugin URL; in-process when unset")
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=7777)

    model_config = SettingsConfigDict(env_prefix="TABLESYNC_TRANSPORT_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file_path: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="TABLESYNC_LOG_")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="tablesync")
    version: str = Field(default="0.1.0")
    environment: str = Field(default="development")

    # Sub-settings
    engine: EngineSettings = EngineSettings()
    state: StateSettings = StateSettings()
    transport: TransportSettings = TransportSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_prefix="TABLESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings
