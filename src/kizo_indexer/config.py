"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Kizo indexer, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, TypeVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

SectionT = TypeVar("SectionT", bound=BaseSettings)

DEFAULT_CONTRACT_ADDRESS = "0x66c4ec614f237de2470e107a17329e17d2e9d04bd6f609bdb7f7b52ae24c957c"
DEFAULT_MODULE_NAME = "kizo_prediction_market"
DEFAULT_BACKEND_SYNC_URL = "http://localhost:3002/api/sync/trigger-full-sync"

# asyncpg sends bind parameters with 16-bit signed counts, so at most 32767 per statement.
ASYNCPG_MAX_BIND_PARAMS = 32767


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DB_POOL_SIZE",
        ge=1,
        description="Connection pool size",
    )
    max_overflow: int = Field(
        default=10,
        alias="DB_MAX_OVERFLOW",
        ge=0,
        description="Connections allowed beyond pool_size under load",
    )
    echo: bool = Field(
        default=False,
        alias="DB_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
        return v


class ContractSettings(BaseSettings):
    """On-chain contract whose events are indexed."""

    model_config = SettingsConfigDict(env_prefix="KIZO_", extra="ignore")

    address: str = Field(
        default=DEFAULT_CONTRACT_ADDRESS,
        alias="KIZO_CONTRACT_ADDRESS",
        description="Account address the prediction market module is published under",
    )
    module_name: str = Field(
        default=DEFAULT_MODULE_NAME,
        alias="KIZO_MODULE_NAME",
        description="Move module that emits the market events",
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate the contract address is a hex account address."""
        body = v.lower().removeprefix("0x")
        if not body or len(body) > 64:
            raise ValueError("KIZO_CONTRACT_ADDRESS must be a 0x-prefixed hex address")
        try:
            int(body, 16)
        except ValueError as e:
            raise ValueError("KIZO_CONTRACT_ADDRESS must be a 0x-prefixed hex address") from e
        return v


class ProcessorSettings(BaseSettings):
    """Batch processing settings."""

    model_config = SettingsConfigDict(env_prefix="PROCESSOR_", extra="ignore")

    max_db_params: int = Field(
        default=ASYNCPG_MAX_BIND_PARAMS,
        alias="PROCESSOR_MAX_DB_PARAMS",
        ge=1,
        description="Maximum bind parameters per INSERT statement (sizes write chunks)",
    )
    max_workers: int = Field(
        default=4,
        alias="PROCESSOR_MAX_WORKERS",
        ge=1,
        le=64,
        description="Worker threads used to fan out transactions within a batch",
    )
    batch_size: int = Field(
        default=500,
        alias="PROCESSOR_BATCH_SIZE",
        ge=1,
        description="Transactions per batch when replaying from a file",
    )


class BackendSyncSettings(BaseSettings):
    """Downstream backend sync hook settings."""

    model_config = SettingsConfigDict(env_prefix="BACKEND_SYNC_", extra="ignore")

    url: str = Field(
        default=DEFAULT_BACKEND_SYNC_URL,
        alias="BACKEND_SYNC_URL",
        description="Endpoint notified after new rows are indexed",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="BACKEND_SYNC_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout for the sync notification request",
    )
    enabled: bool = Field(
        default=True,
        alias="BACKEND_SYNC_ENABLED",
        description="Send sync notifications after each batch with new rows",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate sync URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("BACKEND_SYNC_URL must be an HTTP(S) endpoint")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from kizo_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    contract: ContractSettings = Field(
        default_factory=lambda: ContractSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    processor: ProcessorSettings = Field(
        default_factory=lambda: ProcessorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backend_sync: BackendSyncSettings = Field(
        default_factory=lambda: BackendSyncSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "database_pool": {
                "pool_size": str(self.database.pool_size),
                "max_overflow": str(self.database.max_overflow),
            },
            "contract": {
                "address": self.contract.address,
                "module_name": self.contract.module_name,
            },
            "processor": {
                "max_db_params": str(self.processor.max_db_params),
                "max_workers": str(self.processor.max_workers),
                "batch_size": str(self.processor.batch_size),
            },
            "backend_sync": {
                "url": self._redact_url(self.backend_sync.url),
                "timeout_seconds": str(self.backend_sync.timeout_seconds),
                "enabled": str(self.backend_sync.enabled),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()


def load_section(section: type[SectionT]) -> SectionT:
    """Load one settings section on its own, from the environment and .env.

    Lets commands that never touch the database run without DATABASE_URL.

    Raises:
        ValidationError: If the section's variables have invalid values.
    """
    return section(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)
