"""
Error taxonomy for the QuickBooks connector.

Every network or storage failure is translated into one of these classes at the
component boundary, so callers never see raw transport exceptions. Each class
carries the HTTP status used when it reaches the API surface.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional


class IntegrationError(Exception):
    """Base class for connector errors with a consistent response shape."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = "integration_error"

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ConfigurationError(IntegrationError):
    """Application client credentials are missing."""

    code = "configuration_error"


class MalformedCallbackError(IntegrationError):
    """The OAuth callback is missing required parameters."""

    status_code = HTTPStatus.BAD_REQUEST
    code = "malformed_callback"


class InvalidStateError(IntegrationError):
    """The OAuth state could not be decoded or trusted."""

    status_code = HTTPStatus.BAD_REQUEST
    code = "invalid_state"


class AuthorizationDeniedError(IntegrationError):
    """The user or Intuit declined the authorization request."""

    status_code = HTTPStatus.BAD_REQUEST
    code = "authorization_denied"


class AuthExchangeError(IntegrationError):
    """The token endpoint rejected an authorization code exchange."""

    code = "auth_exchange_failed"


class AuthRefreshError(IntegrationError):
    """The token endpoint rejected a refresh; the tenant must re-authorize."""

    status_code = HTTPStatus.UNAUTHORIZED
    code = "auth_refresh_failed"


class AuthRevokeError(IntegrationError):
    """Intuit did not accept a token revocation request."""

    status_code = HTTPStatus.BAD_GATEWAY
    code = "auth_revoke_failed"


class NotConnectedError(IntegrationError):
    """No valid credential exists for the tenant."""

    status_code = HTTPStatus.UNAUTHORIZED
    code = "not_connected"


class UpstreamAuthError(IntegrationError):
    """QuickBooks rejected a request despite a locally valid credential."""

    status_code = HTTPStatus.UNAUTHORIZED
    code = "upstream_auth_error"


class UpstreamRequestError(IntegrationError):
    """QuickBooks returned an error or could not be reached."""

    status_code = HTTPStatus.BAD_GATEWAY
    code = "upstream_request_failed"


class EstimateGenerationError(IntegrationError):
    """The estimate pipeline could not produce a priced estimate."""

    status_code = HTTPStatus.BAD_GATEWAY
    code = "estimate_generation_failed"


class StorageError(IntegrationError):
    """The local credential or estimate database could not be read or written."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = "storage_unavailable"


class WebhookAuthError(IntegrationError):
    """A webhook call presented a missing or wrong API key."""

    status_code = HTTPStatus.UNAUTHORIZED
    code = "invalid_api_key"


__all__ = [
    "AuthExchangeError",
    "AuthRefreshError",
    "AuthRevokeError",
    "AuthorizationDeniedError",
    "ConfigurationError",
    "EstimateGenerationError",
    "IntegrationError",
    "InvalidStateError",
    "MalformedCallbackError",
    "NotConnectedError",
    "StorageError",
    "UpstreamAuthError",
    "UpstreamRequestError",
    "WebhookAuthError",
]
