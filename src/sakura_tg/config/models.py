"""Pydantic configuration models for the bot."""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, Field, SecretStr, field_validator

from sakura_tg.types import UpdateType

_TOKEN_PATTERN = re.compile(r"^\d+:[\w-]+$")


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RetryConfig(BaseModel):
    """Retry / backoff for individual Bot API requests."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    jitter: bool = True


class ApiConfig(BaseModel):
    """Bot API endpoint and HTTP client settings."""

    token: SecretStr
    base_url: str = "https://api.telegram.org"
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    user_agent: str = "sakura-tg"
    retry: RetryConfig = RetryConfig()

    @field_validator("token")
    @classmethod
    def validate_token_format(cls, v: SecretStr) -> SecretStr:
        if not _TOKEN_PATTERN.match(v.get_secret_value()):
            msg = "token must look like '<bot id>:<secret>' (as issued by BotFather)"
            raise ValueError(msg)
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class BackoffConfig(BaseModel):
    """Backoff applied by the poll loop after a failed ``getUpdates``."""

    enabled: bool = True
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=30.0, gt=0)
    # None = retry forever
    max_consecutive_failures: int | None = Field(default=None, ge=1)


class PollingConfig(BaseModel):
    """Long-poll loop settings."""

    timeout_seconds: int = Field(default=30, ge=0)
    limit: int | None = Field(default=None, ge=1, le=100)
    allowed_updates: list[UpdateType] | None = None
    max_concurrency: int = Field(default=10, ge=1)
    initial_offset: int = 0
    backoff: BackoffConfig = BackoffConfig()
    # how long a stopping loop waits for in-flight handlers; None = no limit
    shutdown_grace_seconds: float | None = Field(default=5.0, ge=0)


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: LogLevel = LogLevel.INFO
    json_output: bool = False
    # errors are also appended to <log_dir>/sakura.log when set
    log_dir: str | None = None


class BotConfig(BaseModel, extra="forbid"):
    """Top-level bot configuration."""

    api: ApiConfig
    polling: PollingConfig = PollingConfig()
    logging: LoggingConfig = LoggingConfig()
    admins: list[int] = Field(default_factory=list)
    config_dir: str = Field(default="configs", min_length=1)

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admins
