"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_authorization_handshake,
    get_credential_store,
    get_estimate_log,
    get_estimate_service,
    get_gemini_client,
    get_intuit_oauth_client,
    get_oauth_state_encoder,
    get_quickbooks_client,
    get_quickbooks_settings,
    get_token_cipher_service,
    get_token_lifecycle_manager,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
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
