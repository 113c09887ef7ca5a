"""
Application configuration management using Pydantic settings.
"""
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


ENV_PREFIX = "CARACOL_"


def normalize_database_url(url: str) -> str:
    """Accept plain postgres URLs and point them at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "caracol"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "local"  # local, staging, production

    # Database
    # A full URL takes precedence over the individual connection fields.
    DBURL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "caracol"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_SSL_MODE: str = "prefer"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_TRACE: bool = False

    # Logging
    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "json"  # json or text

    # Query collector
    COLLECTOR_POLL_INTERVAL: float = 600.0
    COLLECTOR_POLL_JITTER: float = 0.1

    # Query monitors
    MONITOR_INITIAL_DELAY: float = 10.0
    MONITOR_POLL_INTERVAL: float = 600.0
    MONITOR_POLL_JITTER: float = 0.5
    DISPATCH_DELAY: float = 3.0
    DISPATCH_JITTER: float = 0.1

    # Backends
    BACKEND_TIMEOUT: float = 30.0

    # Diagnostics server, as HOST:PORT
    DIAG_ADDR: Optional[str] = None

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @field_validator("DBURL", mode="before")
    @classmethod
    def normalize_dburl(cls, v):
        if not v:
            return None
        return normalize_database_url(v)

    @property
    def database_url(self) -> str:
        if self.DBURL:
            return self.DBURL
        return (
            f"postgresql+asyncpg://{quote_plus(self.DB_USER)}:{quote_plus(self.DB_PASSWORD)}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?ssl={self.DB_SSL_MODE}"
        )


settings = Settings()
