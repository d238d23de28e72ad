"""
QuickBooks authorization handshake.

The tenant identity travels through Intuit inside a signed ``state`` value, so
the callback can be tied back to the tenant that started the flow without any
server-side session. The state is untrusted client input until its signature,
shape and age have been checked.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.clients.intuit_auth import IntuitOAuthClient, OAuthStateEncoder
from app.core.errors import (
    AuthorizationDeniedError,
    ConfigurationError,
    InvalidStateError,
    MalformedCallbackError,
)
from app.models.credential import OAuthCredential, TenantId
from app.schemas.auth import OAuthCallbackQuery
from app.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


class AuthorizationHandshake:
    """Start the Intuit consent flow and complete it on callback."""

    def __init__(
        self,
        oauth_client: IntuitOAuthClient,
        state_encoder: Optional[OAuthStateEncoder],
        token_manager: TokenLifecycleManager,
        *,
        state_ttl_seconds: int = 900,
    ) -> None:
        self._oauth = oauth_client
        self._state_encoder = state_encoder
        self._tokens = token_manager
        self._state_ttl = timedelta(seconds=state_ttl_seconds)

    def build_authorization_url(self, tenant_id: TenantId) -> str:
        """Return the consent URL carrying the tenant in its state parameter."""
        encoder = self._require_configuration()
        state = encoder.encode(
            {
                "tenant_id": tenant_id,
                "issued_at": datetime.now(timezone.utc).isoformat(),
                "nonce": uuid.uuid4().hex,
            }
        )
        logger.info("QuickBooks authorization started for tenant %s.", tenant_id)
        return self._oauth.build_authorization_url(state=state)

    async def handle_callback(self, query: OAuthCallbackQuery) -> OAuthCredential:
        """Validate the callback, exchange the code and persist the credential."""
        if query.error:
            raise AuthorizationDeniedError(
                f"QuickBooks authorization failed: {query.error}",
                details={"error": query.error},
            )

        missing = [
            name
            for name, value in (
                ("code", query.code),
                ("realmId", query.external_account_id),
                ("state", query.state),
            )
            if not value
        ]
        if missing:
            raise MalformedCallbackError(
                "Missing required parameters", details={"missing": missing}
            )

        state_data = self.decode_state(query.state or "")
        tenant_id = state_data["tenant_id"]

        grant = await self._oauth.exchange_authorization_code(query.code or "")
        credential = self._tokens.persist_grant(
            tenant_id, query.external_account_id or "", grant
        )
        logger.info(
            "QuickBooks connected for tenant %s (realm %s).",
            credential.tenant_id,
            credential.external_account_id,
        )
        return credential

    def decode_state(self, state: str) -> Dict[str, Any]:
        """Decode and validate a state value issued by ``build_authorization_url``."""
        encoder = self._require_configuration()
        state_data = encoder.decode(state)

        tenant_id = state_data.get("tenant_id")
        if (
            isinstance(tenant_id, bool)
            or not isinstance(tenant_id, (str, int))
            or tenant_id == ""
        ):
            raise InvalidStateError("Tenant identifier not found in state.")

        issued_at_raw = state_data.get("issued_at")
        if not isinstance(issued_at_raw, str):
            raise InvalidStateError("Missing issued_at in state token.")
        try:
            issued_at = datetime.fromisoformat(issued_at_raw)
        except ValueError as exc:
            raise InvalidStateError("Invalid issued_at in state token.") from exc
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)

        if datetime.now(timezone.utc) - issued_at > self._state_ttl:
            raise InvalidStateError("OAuth state token has expired.")

        return state_data

    def _require_configuration(self) -> OAuthStateEncoder:
        if not self._oauth.is_configured or self._state_encoder is None:
            raise ConfigurationError(
                "QuickBooks credentials not configured. Set QUICKBOOKS_CLIENT_ID "
                "and QUICKBOOKS_CLIENT_SECRET."
            )
        return self._state_encoder


__all__ = ["AuthorizationHandshake"]
