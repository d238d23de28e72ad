"""
Intuit OAuth utilities.

These helpers build the QuickBooks consent URL, protect the handshake state and
talk to Intuit's token endpoint on behalf of every tenant using the single
application-level client credential.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from hashlib import sha256
from typing import Any, Dict, Optional, Type
from urllib.parse import urlencode

import httpx

from app.core.config import QuickBooksSettings
from app.core.errors import (
    AuthExchangeError,
    AuthRefreshError,
    AuthRevokeError,
    ConfigurationError,
    IntegrationError,
    InvalidStateError,
)
from app.models.credential import TokenGrant

logger = logging.getLogger(__name__)

_SIGNATURE_LENGTH = 32


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("OAuth state secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise InvalidStateError("OAuth state is not valid base64.") from exc

        if len(decoded) <= _SIGNATURE_LENGTH:
            raise InvalidStateError("OAuth state is truncated.")

        signature, serialized = decoded[:_SIGNATURE_LENGTH], decoded[_SIGNATURE_LENGTH:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise InvalidStateError("Invalid OAuth state signature.")

        try:
            payload = json.loads(serialized)
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidStateError("OAuth state payload is not JSON.") from exc
        if not isinstance(payload, dict):
            raise InvalidStateError("OAuth state payload must be an object.")
        return payload


class IntuitOAuthClient:
    """Build QuickBooks authorization URLs and exchange or refresh tokens."""

    AUTH_BASE_URL = "https://appcenter.intuit.com/connect/oauth2"
    TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
    SCOPE = "com.intuit.quickbooks.accounting"

    def __init__(
        self,
        settings: QuickBooksSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self._settings.has_credentials

    @property
    def redirect_uri(self) -> str:
        return str(self._settings.redirect_uri)

    def build_authorization_url(self, state: str) -> str:
        """Construct the Intuit consent URL. No network call is made."""
        client_id, _ = self._require_credentials()
        params = {
            "client_id": client_id,
            "scope": self.SCOPE,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_authorization_code(
        self, code: str, redirect_uri: Optional[str] = None
    ) -> TokenGrant:
        """Exchange an authorization code for a full token set."""
        payload = await self._post_token_endpoint(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.redirect_uri,
            },
            error_cls=AuthExchangeError,
            action="Authorization code exchange",
        )
        grant = self._parse_grant(payload, error_cls=AuthExchangeError)
        if not grant.refresh_token:
            raise AuthExchangeError(
                "Incomplete token payload returned from Intuit.",
                details={"missing": ["refresh_token"]},
            )
        return grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Mint a new access token from a stored refresh token.

        Intuit may rotate the refresh token on every call; the returned grant
        carries whichever refresh token the server issued, or ``None`` when it
        did not send one.
        """
        payload = await self._post_token_endpoint(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            error_cls=AuthRefreshError,
            action="Token refresh",
        )
        return self._parse_grant(payload, error_cls=AuthRefreshError)

    async def revoke(self, token: str) -> None:
        """Revoke a refresh or access token at Intuit."""
        headers = {
            "Accept": "application/json",
            "Authorization": self._basic_auth_header(),
        }
        try:
            async with self._http_client() as client:
                response = await client.post(
                    self.REVOKE_URL, headers=headers, json={"token": token}
                )
        except httpx.HTTPError as exc:
            raise AuthRevokeError(f"Token revocation failed: {exc}") from exc

        if response.is_error:
            raise AuthRevokeError(
                "Intuit rejected the token revocation.",
                details=_response_details(response),
            )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.http_timeout_seconds, transport=self._transport
        )

    def _require_credentials(self) -> tuple[str, str]:
        client_id = self._settings.client_id
        client_secret = self._settings.client_secret
        if not client_id or not client_secret:
            raise ConfigurationError(
                "QuickBooks credentials not configured. Set QUICKBOOKS_CLIENT_ID "
                "and QUICKBOOKS_CLIENT_SECRET."
            )
        return client_id, client_secret

    def _basic_auth_header(self) -> str:
        client_id, client_secret = self._require_credentials()
        encoded = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8"))
        return f"Basic {encoded.decode('utf-8')}"

    async def _post_token_endpoint(
        self,
        form: Dict[str, str],
        *,
        error_cls: Type[IntegrationError],
        action: str,
    ) -> Dict[str, Any]:
        headers = {
            "Accept": "application/json",
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        try:
            async with self._http_client() as client:
                response = await client.post(self.TOKEN_URL, data=form, headers=headers)
        except httpx.TimeoutException as exc:
            raise error_cls(f"{action} timed out.") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{action} failed: {exc}") from exc

        if response.is_error:
            details = _response_details(response)
            logger.error(
                "%s rejected by Intuit (status %s): %s",
                action,
                response.status_code,
                details,
            )
            raise error_cls(f"{action} rejected by Intuit.", details=details)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise error_cls(f"{action} returned a non-JSON body.") from exc
        if not isinstance(token_payload, dict):
            raise error_cls(f"{action} returned an unexpected body.")
        return token_payload

    @staticmethod
    def _parse_grant(
        payload: Dict[str, Any], *, error_cls: Type[IntegrationError]
    ) -> TokenGrant:
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not access_token or expires_in is None:
            raise error_cls("Incomplete token payload returned from Intuit.")
        try:
            ttl_seconds = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise error_cls("Intuit returned a non-numeric expires_in.") from exc
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            expires_in=ttl_seconds,
        )


def _response_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["IntuitOAuthClient", "OAuthStateEncoder"]
