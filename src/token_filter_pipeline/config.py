"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Token Filter Pipeline, loading and validating environment variables at
startup. Anything wrong here is a configuration error: it is raised before
the first pipeline stage runs.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Upstream market-data service rejects more than this many concurrent filters.
DEFAULT_MAX_FILTERS = 5


class ConfigurationError(ValueError):
    """Raised for fatal configuration problems detected before a run starts."""


class DatabaseSettings(BaseSettings):
    """Document store connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (metadata cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    enabled: bool = Field(
        default=True,
        alias="REDIS_ENABLED",
        description="Cache token metadata in Redis",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class BirdeyeSettings(BaseSettings):
    """BirdEye market-data API settings."""

    model_config = SettingsConfigDict(env_prefix="BIRDEYE_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="BIRDEYE_API_KEY",
        description="BirdEye API key (sent as X-API-KEY)",
    )
    api_url: str = Field(
        default="https://public-api.birdeye.so",
        alias="BIRDEYE_API_URL",
        description="BirdEye public API host",
    )
    chain: str = Field(
        default="solana",
        alias="BIRDEYE_CHAIN",
        description="Chain sent in the x-chain header",
    )
    page_size: int = Field(
        default=100,
        alias="BIRDEYE_PAGE_SIZE",
        ge=1,
        le=100,
        description="Records per token-list page",
    )
    max_offset: int = Field(
        default=1000,
        alias="BIRDEYE_MAX_OFFSET",
        ge=0,
        le=100_000,
        description="Stop paginating once the offset reaches this value",
    )
    request_delay_ms: int = Field(
        default=500,
        alias="BIRDEYE_REQUEST_DELAY_MS",
        ge=0,
        le=60_000,
        description="Minimum delay between consecutive BirdEye requests",
    )
    max_retries: int = Field(
        default=3,
        alias="BIRDEYE_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries per request on transient errors",
    )
    retry_base_delay: float = Field(
        default=1.0,
        alias="BIRDEYE_RETRY_BASE_DELAY",
        ge=0.0,
        le=60.0,
        description="Base backoff delay in seconds (doubles per retry)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="BIRDEYE_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Per-request timeout",
    )
    metadata_cache_ttl_seconds: int = Field(
        default=3600,
        alias="BIRDEYE_METADATA_CACHE_TTL_SECONDS",
        ge=0,
        le=7 * 24 * 3600,
        description="Redis TTL for cached token metadata",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("BIRDEYE_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class LLMSettings(BaseSettings):
    """Decision-function (chat completion) settings."""

    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="OPENAI_API_KEY",
        description="API key for the OpenAI-compatible completion endpoint",
    )
    base_url: str = Field(
        default="https://api.openai.com",
        alias="LLM_BASE_URL",
        description="OpenAI-compatible API host",
    )
    model: str = Field(
        default="gpt-4o",
        alias="LLM_MODEL",
        description="Model used for every decision call",
    )
    temperature: float = Field(
        default=0.2,
        alias="LLM_TEMPERATURE",
        ge=0.0,
        le=2.0,
    )
    max_tokens: int = Field(
        default=4096,
        alias="LLM_MAX_TOKENS",
        ge=64,
        le=128_000,
    )
    timeout_seconds: float = Field(
        default=60.0,
        alias="LLM_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
    )
    max_retries: int = Field(
        default=3,
        alias="LLM_MAX_RETRIES",
        ge=0,
        le=10,
    )
    retry_base_delay: float = Field(
        default=1.0,
        alias="LLM_RETRY_BASE_DELAY",
        ge=0.0,
        le=60.0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("LLM_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class FilterSettings(BaseSettings):
    """Filter parameter selection: mandatory floors and fixed directives."""

    model_config = SettingsConfigDict(env_prefix="FILTER_", extra="ignore")

    min_liquidity: float = Field(
        default=10_000.0,
        alias="FILTER_MIN_LIQUIDITY",
        description="Floor: minimum liquidity (USD)",
    )
    min_market_cap: float = Field(
        default=100_000.0,
        alias="FILTER_MIN_MARKET_CAP",
        description="Floor: minimum market cap (USD)",
    )
    min_holder: float = Field(
        default=100.0,
        alias="FILTER_MIN_HOLDER",
        description="Floor: minimum holder count",
    )
    min_trade_24h_count: float = Field(
        default=100.0,
        alias="FILTER_MIN_TRADE_24H_COUNT",
        description="Floor: minimum 24h trade count",
    )
    min_volume_24h_usd: float = Field(
        default=10_000.0,
        alias="FILTER_MIN_VOLUME_24H_USD",
        description="Floor: minimum 24h volume (USD)",
    )
    max_filters: int = Field(
        default=DEFAULT_MAX_FILTERS,
        alias="FILTER_MAX_FILTERS",
        ge=1,
        le=20,
        description="Maximum narrowing parameters accepted by the market-data API",
    )
    selector_max_retries: int = Field(
        default=2,
        alias="FILTER_SELECTOR_MAX_RETRIES",
        ge=0,
        le=10,
        description="Extra decision attempts before falling back to default filters",
    )
    sort_by: str = Field(
        default="volume_24h_usd",
        alias="FILTER_SORT_BY",
    )
    sort_type: Literal["asc", "desc"] = Field(
        default="desc",
        alias="FILTER_SORT_TYPE",
    )

    def floors(self) -> dict[str, float]:
        """Return the mandatory floor values keyed by API parameter name."""
        return {
            "min_liquidity": self.min_liquidity,
            "min_market_cap": self.min_market_cap,
            "min_holder": self.min_holder,
            "min_trade_24h_count": self.min_trade_24h_count,
            "min_volume_24h_usd": self.min_volume_24h_usd,
        }


class AnalysisSettings(BaseSettings):
    """Scoring stage thresholds, batching and fan-out."""

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_", extra="ignore")

    market_threshold: float = Field(
        default=0.5,
        alias="ANALYSIS_MARKET_THRESHOLD",
        ge=0.0,
        le=1.0,
    )
    metadata_threshold: float = Field(
        default=0.5,
        alias="ANALYSIS_METADATA_THRESHOLD",
        ge=0.0,
        le=1.0,
    )
    market_batch_size: int = Field(
        default=20,
        alias="ANALYSIS_MARKET_BATCH_SIZE",
        ge=1,
        le=50,
        description="Candidates per market-analysis decision call",
    )
    metadata_batch_size: int = Field(
        default=10,
        alias="ANALYSIS_METADATA_BATCH_SIZE",
        ge=1,
        le=50,
        description="Candidates per metadata-analysis decision call",
    )
    concurrency: int = Field(
        default=4,
        alias="ANALYSIS_CONCURRENCY",
        ge=1,
        le=64,
        description="Maximum outstanding external calls within one stage",
    )


class PersistenceSettings(BaseSettings):
    """Timeout and retry policy for document store calls."""

    model_config = SettingsConfigDict(env_prefix="PERSIST_", extra="ignore")

    max_retries: int = Field(
        default=3,
        alias="PERSIST_MAX_RETRIES",
        ge=0,
        le=10,
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="PERSIST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
    )
    retry_base_delay: float = Field(
        default=0.5,
        alias="PERSIST_RETRY_BASE_DELAY",
        ge=0.0,
        le=60.0,
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from token_filter_pipeline.config import get_settings

        settings = get_settings()
        settings.validate_requirements(command="run")
        print(settings.filter.floors())
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
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    birdeye: BirdeyeSettings = Field(
        default_factory=lambda: BirdeyeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    llm: LLMSettings = Field(
        default_factory=lambda: LLMSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    filter: FilterSettings = Field(
        default_factory=lambda: FilterSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    analysis: AnalysisSettings = Field(
        default_factory=lambda: AnalysisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    persistence: PersistenceSettings = Field(
        default_factory=lambda: PersistenceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run the pipeline without writing to the document store",
    )
    run_interval_seconds: int = Field(
        default=180,
        alias="RUN_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Pause between runs in continuous mode",
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
            "redis_url": self._redact_url(self.redis.url),
            "redis_enabled": str(self.redis.enabled),
            "birdeye": {
                "api_url": self.birdeye.api_url,
                "chain": self.birdeye.chain,
                "api_key": "(set)" if self.birdeye.api_key else "(not set)",
                "page_size": str(self.birdeye.page_size),
                "max_offset": str(self.birdeye.max_offset),
                "request_delay_ms": str(self.birdeye.request_delay_ms),
            },
            "llm": {
                "base_url": self.llm.base_url,
                "model": self.llm.model,
                "api_key": "(set)" if self.llm.api_key else "(not set)",
            },
            "filter": {
                **{k: str(v) for k, v in self.filter.floors().items()},
                "max_filters": str(self.filter.max_filters),
                "sort_by": self.filter.sort_by,
                "sort_type": self.filter.sort_type,
            },
            "analysis": {
                "market_threshold": str(self.analysis.market_threshold),
                "metadata_threshold": str(self.analysis.metadata_threshold),
                "concurrency": str(self.analysis.concurrency),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(
        self, *, command: Literal["run", "last-results", "add-wallet"]
    ) -> None:
        """Validate command-specific requirements.

        A command refuses to run when a capability it requires is not
        configured.

        Raises:
            ConfigurationError: If a requirement is not met.
        """
        if command != "run":
            return

        if not self.birdeye.api_key or not self.birdeye.api_key.get_secret_value():
            raise ConfigurationError("BIRDEYE_API_KEY is required to run the pipeline")
        if not self.llm.api_key or not self.llm.api_key.get_secret_value():
            raise ConfigurationError("OPENAI_API_KEY is required to run the pipeline")

        floors = self.filter.floors()
        for name, value in floors.items():
            if value <= 0:
                raise ConfigurationError(f"Mandatory floor {name} must be > 0 (got {value})")
        if len(floors) > self.filter.max_filters:
            raise ConfigurationError(
                f"FILTER_MAX_FILTERS={self.filter.max_filters} cannot hold "
                f"{len(floors)} mandatory floors"
            )

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
