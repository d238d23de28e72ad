try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.clients.intuit_auth import OAuthStateEncoder
from app.core.config import AppSettings, QuickBooksSettings
from app.core.errors import AuthExchangeError, AuthRefreshError
from app.main import app
from app.services.authorization import AuthorizationHandshake
from app.services.token_lifecycle import TokenLifecycleManager

from fakes import (
    ExchangingOAuthClient,
    InMemoryCredentialStore,
    StubOAuthClient,
    UnreadableCredentialStore,
)


class ConnectHarness:
    def __init__(self, *, configured: bool = True) -> None:
        quickbooks = QuickBooksSettings(
            client_id="client-id" if configured else None,
            client_secret="client-secret" if configured else None,
        )
        self.settings = AppSettings(quickbooks=quickbooks, frontend_base_url=None)
        self.store = InMemoryCredentialStore()
        self.refresher = StubOAuthClient()
        self.exchanger = ExchangingOAuthClient(quickbooks)
        self.manager = TokenLifecycleManager(self.store, self.refresher)
        self.handshake = AuthorizationHandshake(
            self.exchanger,
            OAuthStateEncoder("state-secret") if configured else None,
            TokenLifecycleManager(self.store, self.exchanger),
        )


@pytest.fixture()
def harness():
    from app import dependencies

    def _install(**kwargs) -> ConnectHarness:
        built = ConnectHarness(**kwargs)
        app.dependency_overrides.update(
            {
                dependencies.get_app_settings: lambda: built.settings,
                dependencies.get_token_lifecycle_manager: lambda: built.manager,
                dependencies.get_authorization_handshake: lambda: built.handshake,
            }
        )
        return built

    yield _install

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.mark.anyio
async def test_health() -> None:
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_authorize_redirects_to_intuit(harness) -> None:
    harness()
    async with _client() as client:
        response = await client.get("/api/connect/authorize", params={"tenant": "acct-1"})

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://appcenter.intuit.com/connect/oauth2?")
    assert parse_qs(urlparse(location).query)["state"]


@pytest.mark.anyio
async def test_authorize_can_return_json(harness) -> None:
    harness()
    async with _client() as client:
        response = await client.get(
            "/api/connect/authorize", params={"tenant": "acct-1", "redirect": "false"}
        )

    assert response.status_code == 200
    assert response.json()["authorization_url"].startswith("https://appcenter.intuit.com/")


@pytest.mark.anyio
async def test_authorize_without_credentials_returns_configuration_error(harness) -> None:
    harness(configured=False)
    async with _client() as client:
        response = await client.get("/api/connect/authorize", params={"tenant": "acct-1"})

    assert response.status_code == 500
    assert response.json()["code"] == "configuration_error"


@pytest.mark.anyio
async def test_authorize_requires_tenant(harness) -> None:
    harness()
    async with _client() as client:
        response = await client.get("/api/connect/authorize")

    assert response.status_code == 422


@pytest.mark.anyio
async def test_full_connect_flow_then_status(harness) -> None:
    built = harness()
    async with _client() as client:
        authorize = await client.get(
            "/api/connect/authorize", params={"tenant": "acct-1", "redirect": "false"}
        )
        state = parse_qs(urlparse(authorize.json()["authorization_url"]).query)["state"][0]

        callback = await client.get(
            "/api/connect/callback",
            params={"code": "abc", "realmId": "9001", "state": state},
        )
        status = await client.get("/api/connect/status", params={"tenant": "acct-1"})

    assert callback.status_code == 200
    assert "quickbooks-connected" in callback.text
    assert '"success": true' in callback.text
    assert "9001" in callback.text
    assert built.exchanger.codes == ["abc"]

    payload = status.json()
    assert payload["connected"] is True
    assert payload["externalAccountId"] == "9001"
    assert payload["hasCredentials"] is True
    assert payload["environment"] == "sandbox"


@pytest.mark.anyio
async def test_callback_failure_pages_use_mapped_status(harness) -> None:
    built = harness()
    async with _client() as client:
        denied = await client.get("/api/connect/callback", params={"error": "access_denied"})
        missing = await client.get("/api/connect/callback", params={"code": "abc"})
        forged = await client.get(
            "/api/connect/callback",
            params={"code": "abc", "realmId": "9001", "state": "bm90LXNpZ25lZA=="},
        )

    assert denied.status_code == 400
    assert missing.status_code == 400
    assert forged.status_code == 400
    assert '"success": false' in forged.text
    assert built.store.records == {}


@pytest.mark.anyio
async def test_callback_exchange_failure_returns_500(harness) -> None:
    built = harness()
    built.exchanger.error = AuthExchangeError("Authorization code exchange rejected by Intuit.")
    async with _client() as client:
        authorize = await client.get(
            "/api/connect/authorize", params={"tenant": "acct-1", "redirect": "false"}
        )
        state = parse_qs(urlparse(authorize.json()["authorization_url"]).query)["state"][0]
        response = await client.get(
            "/api/connect/callback",
            params={"code": "abc", "realmId": "9001", "state": state},
        )

    assert response.status_code == 500
    assert "Connection Failed" in response.text


@pytest.mark.anyio
async def test_callback_escapes_error_text(harness) -> None:
    harness()
    async with _client() as client:
        response = await client.get(
            "/api/connect/callback", params={"error": "<script>alert(1)</script>"}
        )

    assert "<script>alert(1)</script>" not in response.text


@pytest.mark.anyio
async def test_status_for_unknown_tenant(harness) -> None:
    harness()
    async with _client() as client:
        response = await client.get("/api/connect/status", params={"tenant": "nobody"})

    payload = response.json()
    assert payload["connected"] is False
    assert payload["externalAccountId"] is None
    assert payload["tokenExpiry"] is None


@pytest.mark.anyio
async def test_status_reports_disconnected_when_refresh_fails(harness) -> None:
    built = harness()
    built.store.seed("acct-1", expires_at=datetime.now(timezone.utc) - timedelta(hours=2))
    built.refresher.refresh_error = AuthRefreshError("Token refresh rejected by Intuit.")
    async with _client() as client:
        response = await client.get("/api/connect/status", params={"tenant": "acct-1"})

    payload = response.json()
    assert response.status_code == 200
    assert payload["connected"] is False
    assert payload["externalAccountId"] is None
    assert payload["tokenExpiry"] is None
    assert built.refresher.refresh_calls == ["refresh-old"]
    assert built.store.get("acct-1") is not None


@pytest.mark.anyio
async def test_status_refreshes_expiring_token(harness) -> None:
    built = harness()
    built.store.seed("acct-1", expires_at=datetime.now(timezone.utc) + timedelta(seconds=30))
    async with _client() as client:
        response = await client.get("/api/connect/status", params={"tenant": "acct-1"})

    payload = response.json()
    assert payload["connected"] is True
    assert built.refresher.refresh_calls == ["refresh-old"]
    assert built.store.get("acct-1").access_token == "access-new"


@pytest.mark.anyio
async def test_storage_failure_maps_to_503(harness) -> None:
    built = harness()
    built.manager = TokenLifecycleManager(UnreadableCredentialStore(), built.refresher)
    async with _client() as client:
        response = await client.get("/api/connect/status", params={"tenant": "acct-1"})

    assert response.status_code == 503
    assert response.json()["code"] == "storage_unavailable"


@pytest.mark.anyio
async def test_refresh_returns_expiry(harness) -> None:
    built = harness()
    built.store.seed("acct-1", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
    async with _client() as client:
        response = await client.post("/api/connect/refresh", params={"tenant": "acct-1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert 3590 <= payload["expiresIn"] <= 3600
    assert built.refresher.refresh_calls == ["refresh-old"]


@pytest.mark.anyio
async def test_refresh_maps_failures_to_401(harness) -> None:
    built = harness()
    async with _client() as client:
        not_connected = await client.post("/api/connect/refresh", params={"tenant": "acct-1"})

        built.store.seed("acct-1", expires_at=datetime.now(timezone.utc))
        built.refresher.refresh_error = AuthRefreshError("Token refresh rejected by Intuit.")
        rejected = await client.post("/api/connect/refresh", params={"tenant": "acct-1"})

    assert not_connected.status_code == 401
    assert not_connected.json()["code"] == "not_connected"
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "auth_refresh_failed"


@pytest.mark.anyio
async def test_disconnect_reports_previous_state(harness) -> None:
    built = harness()
    built.store.seed("acct-1", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
    async with _client() as client:
        first = await client.post("/api/connect/disconnect", params={"tenant": "acct-1"})
        second = await client.post("/api/connect/disconnect", params={"tenant": "acct-1"})

    assert first.json() == {"success": True, "wasConnected": True}
    assert second.json() == {"success": True, "wasConnected": False}
    assert built.refresher.revoke_calls == ["refresh-old"]
