"""Service layer exports."""

from .authorization import AuthorizationHandshake
from .estimates import EstimateService
from .token_cipher import TokenCipherService
from .token_lifecycle import TokenLifecycleManager

__all__ = [
    "AuthorizationHandshake",
    "EstimateService",
    "TokenCipherService",
    "TokenLifecycleManager",
]
