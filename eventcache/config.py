"""
Configuration settings for the event cache.

Uses Pydantic Settings to load environment variables for database connections,
logging, validation, ingestion and freshness defaults. Core components never read
the settings directly: they receive the frozen config objects built here.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ValidatorConfig:
    max_clock_skew_seconds: int = 900
    verify_signatures: bool = True


@dataclass(frozen=True)
class IngestionConfig:
    """
    Fan-out timeout per source, the caller-side retry policy, and how far
    before its high-water mark a resumed fetch starts for each source.
    """

    source_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_backoff_base_seconds: float = 1.0
    resume_overlap_seconds: int = 900


@dataclass(frozen=True)
class CacheConfig:
    default_freshness: timedelta = timedelta(seconds=60)
    refresh_wait_seconds: float = 15.0


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("event_cache", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(30_000, alias="DB_STATEMENT_TIMEOUT_MS")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Storage layout
    partitioning: Literal["timescale", "native"] = Field("timescale", alias="PARTITIONING")
    partition_interval_days: int = Field(7, alias="PARTITION_INTERVAL_DAYS")
    native_partition_months_back: int = Field(12, alias="NATIVE_PARTITION_MONTHS_BACK")
    native_partition_months_ahead: int = Field(3, alias="NATIVE_PARTITION_MONTHS_AHEAD")

    # Validation
    max_clock_skew_seconds: int = Field(900, alias="MAX_CLOCK_SKEW_SECONDS")
    verify_signatures: bool = Field(True, alias="VERIFY_SIGNATURES")

    # Ingestion
    source_timeout_seconds: float = Field(10.0, alias="SOURCE_TIMEOUT_SECONDS")
    retry_max_attempts: int = Field(3, alias="RETRY_MAX_ATTEMPTS")
    retry_backoff_base_seconds: float = Field(1.0, alias="RETRY_BACKOFF_BASE_SECONDS")
    resume_overlap_seconds: int = Field(900, alias="RESUME_OVERLAP_SECONDS")

    # Read path
    default_freshness_seconds: int = Field(60, alias="DEFAULT_FRESHNESS_SECONDS")
    refresh_wait_seconds: float = Field(15.0, alias="REFRESH_WAIT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def validator_config(self) -> ValidatorConfig:
        return ValidatorConfig(
            max_clock_skew_seconds=self.max_clock_skew_seconds,
            verify_signatures=self.verify_signatures,
        )

    def ingestion_config(self) -> IngestionConfig:
        return IngestionConfig(
            source_timeout_seconds=self.source_timeout_seconds,
            retry_max_attempts=self.retry_max_attempts,
            retry_backoff_base_seconds=self.retry_backoff_base_seconds,
            resume_overlap_seconds=self.resume_overlap_seconds,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            default_freshness=timedelta(seconds=self.default_freshness_seconds),
            refresh_wait_seconds=self.refresh_wait_seconds,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = [
    "CacheConfig",
    "IngestionConfig",
    "Settings",
    "ValidatorConfig",
    "get_settings",
]
