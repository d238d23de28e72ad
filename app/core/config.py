"""
Application configuration models and helpers.

Centralizes settings management so the API routes, the token lifecycle manager
and the operational scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class QuickBooksSettings(BaseSettings):
    """Configuration required for interacting with Intuit QuickBooks Online."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    client_id: Optional[str] = Field(None, validation_alias="QUICKBOOKS_CLIENT_ID")
    client_secret: Optional[str] = Field(
        None, validation_alias="QUICKBOOKS_CLIENT_SECRET"
    )
    redirect_uri: AnyHttpUrl = Field(
        "http://localhost:8000/api/connect/callback",
        validation_alias="QUICKBOOKS_REDIRECT_URI",
    )
    environment: Literal["sandbox", "production"] = Field(
        "sandbox",
        validation_alias="QUICKBOOKS_ENVIRONMENT",
        description="Selects the sandbox or production accounting API host.",
    )
    http_timeout_seconds: float = Field(
        10.0,
        validation_alias="QUICKBOOKS_HTTP_TIMEOUT",
        description="Upper bound for every call to Intuit's token and accounting APIs.",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def api_base_url(self) -> str:
        if self.environment == "production":
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"


class OAuthSettings(BaseSettings):
    """OAuth handshake and token lifecycle configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    refresh_margin_seconds: int = Field(
        300,
        validation_alias="OAUTH_REFRESH_MARGIN",
        description="Refresh access tokens expiring within this many seconds.",
    )
    state_secret: Optional[str] = Field(
        None,
        validation_alias="OAUTH_STATE_SECRET",
        description="HMAC key for the state parameter; defaults to the client secret.",
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted for decryption during rotation.",
    )
    webhook_api_key: Optional[str] = Field(
        None,
        validation_alias="WEBHOOK_API_KEY",
        description="Shared key expected in the X-API-Key header of webhook calls.",
    )

    @field_validator("previous_token_encryption_secrets", mode="before")
    @classmethod
    def _split_secrets(
        cls, value: str | tuple[str, ...] | list[str] | None
    ) -> tuple[str, ...]:
        """Support providing retired secrets as a comma-separated string."""
        if value is None:
            return ()
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(secret.strip() for secret in value.split(",") if secret.strip())


class GeminiSettings(BaseSettings):
    """Configuration for Gemini model access."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    api_key: Optional[str] = Field(None, validation_alias="GEMINI_API_KEY")
    model_name: str = Field("gemini-1.5-pro", validation_alias="GEMINI_MODEL_NAME")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    database_path: str = Field(
        "data/connector.db",
        validation_alias="DATABASE_PATH",
        description="SQLite file holding tenant credentials and the estimate log.",
    )
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional origin allowed to receive the connect postMessage.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    quickbooks: QuickBooksSettings = Field(default_factory=QuickBooksSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GeminiSettings",
    "OAuthSettings",
    "QuickBooksSettings",
    "SecuritySettings",
    "get_settings",
]
