"""
Retrieve, refresh and persist QuickBooks OAuth credentials per tenant.

A tenant is either connected (a credential row exists and its refresh token is
still accepted by Intuit) or disconnected. Whether the access token is fresh or
needs a refresh is hidden from callers: ``get_valid_credential`` either returns
a credential that is good for at least the refresh margin, or ``None``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from app.clients.intuit_auth import IntuitOAuthClient
from app.clients.sqlite_store import CredentialStore
from app.core.errors import (
    AuthRefreshError,
    AuthRevokeError,
    ConfigurationError,
    NotConnectedError,
    StorageError,
)
from app.models.credential import OAuthCredential, TenantId, TokenGrant

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Manages access to persisted QuickBooks OAuth credentials."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: IntuitOAuthClient,
        *,
        refresh_margin_seconds: int = 300,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._refresh_window = timedelta(seconds=refresh_margin_seconds)
        # Collapses concurrent refreshes for one tenant within this process.
        self._refresh_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def get_valid_credential(self, tenant_id: TenantId) -> Optional[OAuthCredential]:
        """Return a usable credential for the tenant, refreshing it when near expiry."""
        key = str(tenant_id)
        credential = self._store.get(key)
        if credential is None:
            return None
        if not credential.expires_within(self._refresh_window):
            return credential

        async with self._tenant_lock(key):
            # Another request may have refreshed while we waited for the lock.
            credential = self._store.get(key)
            if credential is None:
                return None
            if not credential.expires_within(self._refresh_window):
                return credential

            logger.info(
                "QuickBooks access token for tenant %s expired or expiring soon; refreshing.",
                key,
            )
            try:
                return await self._refresh(credential)
            except (AuthRefreshError, ConfigurationError, StorageError) as exc:
                logger.warning(
                    "Failed to refresh QuickBooks token for tenant %s: %s",
                    key,
                    exc.message,
                )
                return None

    async def force_refresh(self, tenant_id: TenantId) -> OAuthCredential:
        """Refresh regardless of expiry. The stored record is untouched on failure."""
        key = str(tenant_id)
        async with self._tenant_lock(key):
            credential = self._store.get(key)
            if credential is None:
                raise NotConnectedError("QuickBooks not connected for this account")
            return await self._refresh(credential)

    def persist_grant(
        self,
        tenant_id: TenantId,
        external_account_id: str,
        grant: TokenGrant,
        *,
        fallback_refresh_token: Optional[str] = None,
    ) -> OAuthCredential:
        """Store a freshly issued token set as the tenant's active credential."""
        refresh_token = grant.refresh_token or fallback_refresh_token
        if not refresh_token:
            raise ValueError("A refresh token is required to persist a credential.")
        return self._store.upsert(
            str(tenant_id),
            external_account_id,
            grant.access_token,
            refresh_token,
            grant.expires_in,
        )

    async def disconnect(self, tenant_id: TenantId) -> bool:
        """Revoke the tenant's refresh token at Intuit and drop the stored credential."""
        key = str(tenant_id)
        credential = self._store.get(key)
        if credential is None:
            return False

        try:
            await self._oauth.revoke(credential.refresh_token)
        except (AuthRevokeError, ConfigurationError) as exc:
            logger.warning(
                "Could not revoke QuickBooks token for tenant %s (%s); deleting locally.",
                key,
                exc.message,
            )

        self._store.delete(key)
        logger.info("QuickBooks disconnected for tenant %s.", key)
        return True

    @asynccontextmanager
    async def _tenant_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the tenant's refresh lock; it is dropped once nobody holds or awaits it."""
        lock = self._refresh_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._refresh_locks[key]

    async def _refresh(self, credential: OAuthCredential) -> OAuthCredential:
        grant = await self._oauth.refresh(credential.refresh_token)
        try:
            refreshed = self.persist_grant(
                credential.tenant_id,
                credential.external_account_id,
                grant,
                fallback_refresh_token=credential.refresh_token,
            )
        except StorageError:
            # Intuit may already have rotated the refresh token held in the store.
            logger.error(
                "Refreshed QuickBooks token for tenant %s could not be stored; "
                "the tenant may need to reconnect.",
                credential.tenant_id,
            )
            raise
        logger.info(
            "Refreshed QuickBooks token for tenant %s; valid for %ss.",
            credential.tenant_id,
            grant.expires_in,
        )
        return refreshed


__all__ = ["TokenLifecycleManager"]
