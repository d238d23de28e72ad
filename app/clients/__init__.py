"""Expose constructed client wrappers."""

from .gemini import GeminiClient, GeminiModelError
from .intuit_auth import IntuitOAuthClient, OAuthStateEncoder
from .quickbooks import QuickBooksClient
from .sqlite_store import CredentialStore, SQLiteCredentialStore, SQLiteEstimateLog

__all__ = [
    "CredentialStore",
    "GeminiClient",
    "GeminiModelError",
    "IntuitOAuthClient",
    "OAuthStateEncoder",
    "QuickBooksClient",
    "SQLiteCredentialStore",
    "SQLiteEstimateLog",
]
