"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Optional

from app.clients import (
    GeminiClient,
    IntuitOAuthClient,
    OAuthStateEncoder,
    QuickBooksClient,
    SQLiteCredentialStore,
    SQLiteEstimateLog,
)
from app.core.config import QuickBooksSettings, get_settings
from app.core.errors import ConfigurationError
from app.services import (
    AuthorizationHandshake,
    EstimateService,
    TokenCipherService,
    TokenLifecycleManager,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


def get_quickbooks_settings() -> QuickBooksSettings:
    return _settings().quickbooks


@lru_cache()
def get_oauth_state_encoder() -> Optional[OAuthStateEncoder]:
    """Provide an OAuth state encoder, or ``None`` when no signing key is configured."""
    settings = _settings()
    secret = settings.oauth.state_secret or settings.quickbooks.client_secret
    if not secret:
        return None
    return OAuthStateEncoder(secret_key=secret)


@lru_cache()
def get_intuit_oauth_client() -> IntuitOAuthClient:
    """Create a singleton Intuit OAuth client."""
    return IntuitOAuthClient(_settings().quickbooks)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = (
        settings.security.token_encryption_secret
        or settings.quickbooks.client_secret
    )
    if not secret:
        raise ConfigurationError(
            "Token encryption is not configured. Set TOKEN_ENCRYPTION_SECRET."
        )
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


@lru_cache()
def get_credential_store() -> SQLiteCredentialStore:
    """Provide the shared credential store."""
    settings = _settings()
    return SQLiteCredentialStore(settings.database_path, get_token_cipher_service())


@lru_cache()
def get_estimate_log() -> SQLiteEstimateLog:
    """Provide the local log of estimates pushed to QuickBooks."""
    return SQLiteEstimateLog(_settings().database_path)


@lru_cache()
def get_token_lifecycle_manager() -> TokenLifecycleManager:
    """Provide the process-wide token manager so refresh locks are shared."""
    settings = _settings()
    return TokenLifecycleManager(
        store=get_credential_store(),
        oauth_client=get_intuit_oauth_client(),
        refresh_margin_seconds=settings.oauth.refresh_margin_seconds,
    )


def get_authorization_handshake() -> AuthorizationHandshake:
    """Build the authorization handshake controller."""
    settings = _settings()
    return AuthorizationHandshake(
        oauth_client=get_intuit_oauth_client(),
        state_encoder=get_oauth_state_encoder(),
        token_manager=get_token_lifecycle_manager(),
        state_ttl_seconds=settings.oauth.state_ttl_seconds,
    )


@lru_cache()
def get_quickbooks_client() -> QuickBooksClient:
    """Provide the tenant-scoped QuickBooks API client."""
    return QuickBooksClient(get_token_lifecycle_manager(), _settings().quickbooks)


@lru_cache()
def get_gemini_client() -> GeminiClient:
    """Provide Gemini client instance."""
    return GeminiClient(_settings().gemini)


def get_estimate_service() -> EstimateService:
    """Build an estimate service using Gemini."""
    return EstimateService(get_gemini_client())


__all__ = [
    "get_authorization_handshake",
    "get_credential_store",
    "get_estimate_log",
    "get_estimate_service",
    "get_gemini_client",
    "get_intuit_oauth_client",
    "get_oauth_state_encoder",
    "get_quickbooks_client",
    "get_quickbooks_settings",
    "get_token_cipher_service",
    "get_token_lifecycle_manager",
]
