"""Bot runtime configuration.

Settings come from constructor kwargs, `TGDISPATCH_*` environment variables and
an optional `.env` file, in that order of precedence.
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class BotConfig(BaseSettings):
    """Settings for one bot instance.

    Invariant:
        `token` is never blank. `webhook_path`, when set, always starts with
        `/`; when unset the webhook server listens on `/<token>`.
    """

    model_config = SettingsConfigDict(
        env_prefix="TGDISPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    token: str
    api_base: str = "https://api.telegram.org"
    request_timeout_seconds: float = 35.0

    blocking_handlers: bool = False

    polling_interval_ms: int = 200
    polling_limit: int | None = None
    long_poll_timeout_seconds: int = 0

    webhook_host: str = "0.0.0.0"
    webhook_port: int = 3000
    webhook_path: str | None = None

    @field_validator("token")
    @classmethod
    def _validate_token(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise ValueError("Bot token required!")
        return token

    @field_validator("api_base")
    @classmethod
    def _strip_api_base(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("polling_interval_ms", "long_poll_timeout_seconds")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"must be >= 0; got {value}")
        return value

    @field_validator("webhook_path")
    @classmethod
    def _normalize_webhook_path(cls, value: str | None) -> str | None:
        if value is None:
            return None
        path = value.strip()
        if not path or path == "/":
            return None
        return path if path.startswith("/") else "/" + path

    @property
    def effective_webhook_path(self) -> str:
        return self.webhook_path or "/" + self.token


def require_token(token: str | None) -> str:
    """Return a stripped bot token or raise `ConfigurationError`."""

    if token is None or not str(token).strip():
        raise ConfigurationError("Bot token required!")
    return str(token).strip()
