"""Schemas related to the QuickBooks connect flow."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OAuthCallbackQuery(BaseModel):
    """Query parameters Intuit sends to the redirect URI."""

    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = Field(None, description="Authorization code returned by Intuit.")
    external_account_id: Optional[str] = Field(
        None,
        alias="realmId",
        description="QuickBooks company identifier chosen by the user.",
    )
    state: Optional[str] = Field(
        None, description="Opaque state token issued when starting OAuth."
    )
    error: Optional[str] = Field(
        None, description="Set by Intuit when the user declined or the request failed."
    )


class ConnectionStatus(BaseModel):
    """Connection summary for one tenant."""

    model_config = ConfigDict(populate_by_name=True)

    connected: bool
    external_account_id: Optional[str] = Field(None, alias="externalAccountId")
    token_expiry: Optional[datetime] = Field(None, alias="tokenExpiry")
    has_credentials: bool = Field(..., alias="hasCredentials")
    environment: str
    timestamp: datetime


class RefreshResult(BaseModel):
    """Outcome of an explicit token refresh."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    expires_in: int = Field(..., alias="expiresIn")


__all__ = ["ConnectionStatus", "OAuthCallbackQuery", "RefreshResult"]
