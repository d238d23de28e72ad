from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlparse

import pytest

from app.clients.intuit_auth import OAuthStateEncoder
from app.core.config import QuickBooksSettings
from app.core.errors import (
    AuthExchangeError,
    AuthorizationDeniedError,
    ConfigurationError,
    InvalidStateError,
    MalformedCallbackError,
)
from app.schemas.auth import OAuthCallbackQuery
from app.services.authorization import AuthorizationHandshake
from app.services.token_lifecycle import TokenLifecycleManager

from fakes import ExchangingOAuthClient, InMemoryCredentialStore


def _settings(**overrides) -> QuickBooksSettings:
    values = {"client_id": "client-id", "client_secret": "client-secret"}
    values.update(overrides)
    return QuickBooksSettings(**values)


def _handshake(
    *,
    error: Optional[Exception] = None,
    state_ttl_seconds: int = 900,
    settings: Optional[QuickBooksSettings] = None,
    encoder: Optional[OAuthStateEncoder] = OAuthStateEncoder("state-secret"),
):
    store = InMemoryCredentialStore()
    oauth = ExchangingOAuthClient(settings or _settings(), error=error)
    manager = TokenLifecycleManager(store, oauth)
    handshake = AuthorizationHandshake(
        oauth, encoder, manager, state_ttl_seconds=state_ttl_seconds
    )
    return handshake, store, oauth


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def _tamper(state: str) -> str:
    index = len(state) // 2
    replacement = "A" if state[index] != "A" else "B"
    return state[:index] + replacement + state[index + 1 :]


@pytest.mark.asyncio
async def test_callback_with_generated_state_persists_credential_for_tenant() -> None:
    handshake, store, oauth = _handshake()
    state = _state_from(handshake.build_authorization_url(42))

    credential = await handshake.handle_callback(
        OAuthCallbackQuery(code="abc", external_account_id="9001", state=state)
    )

    assert credential.tenant_id == "42"
    stored = store.get(42)
    assert stored is not None
    assert stored.external_account_id == "9001"
    assert stored.access_token == "access"
    assert oauth.codes == ["abc"]


@pytest.mark.asyncio
async def test_callback_stores_expiry_from_token_response() -> None:
    handshake, store, _ = _handshake()
    state = _state_from(handshake.build_authorization_url("acct-1"))

    await handshake.handle_callback(
        OAuthCallbackQuery(code="abc", external_account_id="9001", state=state)
    )

    stored = store.get("acct-1")
    expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
    assert stored.tenant_id == "acct-1"
    assert abs((stored.expires_at - expected).total_seconds()) < 5


@pytest.mark.asyncio
async def test_tampered_state_is_rejected_without_store_mutation() -> None:
    handshake, store, oauth = _handshake()
    state = _state_from(handshake.build_authorization_url(42))

    with pytest.raises(InvalidStateError):
        await handshake.handle_callback(
            OAuthCallbackQuery(code="abc", external_account_id="9001", state=_tamper(state))
        )

    assert store.records == {}
    assert oauth.codes == []


@pytest.mark.asyncio
async def test_expired_state_is_rejected() -> None:
    handshake, store, _ = _handshake(state_ttl_seconds=-1)
    state = _state_from(handshake.build_authorization_url("acct-1"))

    with pytest.raises(InvalidStateError):
        await handshake.handle_callback(
            OAuthCallbackQuery(code="abc", external_account_id="9001", state=state)
        )
    assert store.records == {}


@pytest.mark.asyncio
async def test_state_without_tenant_is_rejected() -> None:
    encoder = OAuthStateEncoder("state-secret")
    handshake, _, _ = _handshake(encoder=encoder)
    state = encoder.encode({"issued_at": datetime.now(timezone.utc).isoformat()})

    with pytest.raises(InvalidStateError):
        await handshake.handle_callback(
            OAuthCallbackQuery(code="abc", external_account_id="9001", state=state)
        )


@pytest.mark.asyncio
async def test_error_parameter_takes_precedence_over_missing_fields() -> None:
    handshake, _, oauth = _handshake()

    with pytest.raises(AuthorizationDeniedError):
        await handshake.handle_callback(OAuthCallbackQuery(error="access_denied"))
    assert oauth.codes == []


@pytest.mark.asyncio
async def test_missing_parameters_are_reported_before_state_is_checked() -> None:
    handshake, _, _ = _handshake()

    with pytest.raises(MalformedCallbackError) as exc_info:
        await handshake.handle_callback(OAuthCallbackQuery(code="abc", state="garbage"))

    assert exc_info.value.details == {"missing": ["realmId"]}


@pytest.mark.asyncio
async def test_exchange_failure_leaves_store_untouched() -> None:
    handshake, store, _ = _handshake(error=AuthExchangeError("rejected"))
    state = _state_from(handshake.build_authorization_url("acct-1"))

    with pytest.raises(AuthExchangeError):
        await handshake.handle_callback(
            OAuthCallbackQuery(code="abc", external_account_id="9001", state=state)
        )
    assert store.records == {}


def test_authorization_requires_configuration() -> None:
    handshake, _, _ = _handshake(settings=_settings(client_id=None, client_secret=None))
    with pytest.raises(ConfigurationError):
        handshake.build_authorization_url("acct-1")

    handshake, _, _ = _handshake(encoder=None)
    with pytest.raises(ConfigurationError):
        handshake.build_authorization_url("acct-1")
