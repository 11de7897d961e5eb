"""Global settings loaded from environment variables via pydantic-settings."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FEEDSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backing store, selected once at startup
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_retry_attempts: int = 5
    # Read-traffic rate limiting
    rate_limit_max: int = 100
    rate_limit_window: int = 300  # seconds
    rate_limit_sweep_interval: float = 60.0
    rate_limit_cache_size: int = 10_000
    trusted_proxy_header: str = "cf-connecting-ip"
    # Per-operation deadline
    request_timeout: float = 30.0
    log_dir: str = "./data/logs"
    log_level: str = "INFO"
