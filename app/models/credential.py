"""
Domain models for QuickBooks OAuth credentials.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

TenantId = Union[str, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthCredential(BaseModel):
    """The active QuickBooks connection of one tenant."""

    tenant_id: str = Field(..., description="Business account owning the connection.")
    external_account_id: str = Field(
        ..., description="QuickBooks realm (company) identifier."
    )
    access_token: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def expires_within(
        self, margin: timedelta, *, now: Optional[datetime] = None
    ) -> bool:
        """Return True when the access token expires before ``now + margin``."""
        current = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= current + margin


@dataclass(slots=True)
class TokenGrant:
    """Token set returned by Intuit's token endpoint."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int


__all__ = ["OAuthCredential", "TenantId", "TokenGrant"]
