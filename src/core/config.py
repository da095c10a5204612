"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """TaskStream settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "TaskStream"
    app_env: str = "development"
    log_level: str = "INFO"

    # ── Redis ────────────────────────────────────────────────────
    redis_scheme: Literal["redis", "rediss"] = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: SecretStr = SecretStr("")
    redis_url: str | None = None

    # ── Queue ────────────────────────────────────────────────────
    queue_stream_key: str = "taskstream:tasks"
    queue_lock_prefix: str = "taskstream:lock:"
    queue_dead_letter_stream: str = "taskstream:dead"
    queue_batch_count: int = Field(default=10, ge=1)
    queue_block_ms: int = Field(default=5000, ge=0)
    queue_lock_margin_seconds: int = Field(default=10, ge=0)
    queue_default_retry_count: int = Field(default=3, ge=0)
    queue_default_retry_delay: int = Field(default=60, ge=0)
    queue_default_timeout: int = Field(default=60, ge=0)
    queue_retry_mode: Literal["blocking", "scheduled"] = "blocking"
    queue_idle_sleep_seconds: float = Field(default=1.0, ge=0)
    queue_stream_max_len: int | None = None  # None disables trimming

    @model_validator(mode="after")
    def build_redis_url(self) -> Settings:
        """Build redis_url from components if not set."""
        if not self.redis_url:
            password = self.redis_password.get_secret_value()
            auth = f":{password}@" if password else ""
            self.redis_url = (
                f"{self.redis_scheme}://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"
            )
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
