"""
Configuration settings for rowkit.

Uses Pydantic Settings to load environment variables for the default database
connection, pool limits, logging, and the cache layer. `DatabaseConfig` is the
per-handle configuration surface; `Settings.database_config()` builds one from
the environment.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rowkit.dialects import DialectType, parse_dialect

DEFAULT_MAX_OPEN = 10
DEFAULT_MAX_LIFETIME_SECONDS = 3600.0
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 30.0
DEFAULT_CACHE_TTL_SECONDS = 60.0


class DatabaseConfig(BaseModel):
    """
    Connection and pool configuration for one database handle.

    `max_idle` defaults to half of `max_open` (at least one connection).
    """

    dialect: DialectType
    dsn: str
    max_open: int = Field(DEFAULT_MAX_OPEN, ge=1)
    max_idle: Optional[int] = Field(None, ge=0)
    max_lifetime: float = Field(DEFAULT_MAX_LIFETIME_SECONDS, gt=0)
    acquire_timeout: float = Field(DEFAULT_ACQUIRE_TIMEOUT_SECONDS, gt=0)
    query_timeout: Optional[float] = Field(None, gt=0)
    server_version: Optional[int] = None
    connect_attempts: int = Field(1, ge=1)

    model_config = {
        "frozen": True,
    }

    @field_validator("dialect", mode="before")
    @classmethod
    def _resolve_dialect_alias(cls, value: object) -> object:
        return parse_dialect(value) if isinstance(value, str) else value

    @model_validator(mode="after")
    def _default_max_idle(self) -> "DatabaseConfig":
        if self.max_idle is None:
            object.__setattr__(self, "max_idle", max(1, self.max_open // 2))
        elif self.max_idle > self.max_open:
            object.__setattr__(self, "max_idle", self.max_open)
        return self


class Settings(BaseSettings):
    # Default database
    dialect: DialectType = Field(DialectType.SQLITE, alias="ROWKIT_DIALECT")
    dsn: str = Field("rowkit.db", alias="ROWKIT_DSN")
    max_open: int = Field(DEFAULT_MAX_OPEN, alias="ROWKIT_MAX_OPEN")
    max_idle: Optional[int] = Field(None, alias="ROWKIT_MAX_IDLE")
    max_lifetime_seconds: float = Field(
        DEFAULT_MAX_LIFETIME_SECONDS, alias="ROWKIT_MAX_LIFETIME_SECONDS"
    )
    acquire_timeout_seconds: float = Field(
        DEFAULT_ACQUIRE_TIMEOUT_SECONDS, alias="ROWKIT_ACQUIRE_TIMEOUT_SECONDS"
    )
    query_timeout_seconds: Optional[float] = Field(None, alias="ROWKIT_QUERY_TIMEOUT_SECONDS")
    server_version: Optional[int] = Field(None, alias="ROWKIT_SERVER_VERSION")
    connect_attempts: int = Field(1, alias="ROWKIT_CONNECT_ATTEMPTS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Cache
    cache_ttl_seconds: float = Field(DEFAULT_CACHE_TTL_SECONDS, alias="ROWKIT_CACHE_TTL_SECONDS")
    cache_sweep_seconds: float = Field(0.0, alias="ROWKIT_CACHE_SWEEP_SECONDS")
    redis_url: Optional[str] = Field(None, alias="ROWKIT_REDIS_URL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("dialect", mode="before")
    @classmethod
    def _resolve_dialect_alias(cls, value: object) -> object:
        return parse_dialect(value) if isinstance(value, str) else value

    def database_config(self) -> DatabaseConfig:
        """Build the default handle's configuration from these settings."""
        return DatabaseConfig(
            dialect=self.dialect,
            dsn=self.dsn,
            max_open=self.max_open,
            max_idle=self.max_idle,
            max_lifetime=self.max_lifetime_seconds,
            acquire_timeout=self.acquire_timeout_seconds,
            query_timeout=self.query_timeout_seconds,
            server_version=self.server_version,
            connect_attempts=self.connect_attempts,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["DatabaseConfig", "Settings", "get_settings"]
