try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from typing import Any, Optional

import httpx
import pytest

from app.clients.gemini import GeminiModelError
from app.core.config import AppSettings, SecuritySettings
from app.main import app
from app.services.estimates import EstimateService

ANALYSIS = {
    "projectSummary": "Replace front lawn with sod and mulch the beds",
    "services": ["sod installation", "mulch installation"],
    "materials": ["sod", "mulch"],
    "problemAreas": ["patchy lawn"],
    "projectScope": "medium",
    "estimatedDuration": "2 days",
    "notes": [],
}

PLAN = {
    "serviceItems": [
        {
            "service": "sod_installation",
            "description": "Sod installation",
            "quantity": 1000,
            "unit": "sq ft",
            "estimatedHours": 8,
        }
    ],
    "materialItems": [
        {"material": "sod", "description": "Sod", "quantity": 1000, "unit": "sq ft"}
    ],
    "projectComplexity": "medium",
    "recommendedMeasurements": ["front lawn area"],
    "assumptions": ["existing grass removed"],
}


class FakeGeminiClient:
    def __init__(
        self,
        *,
        analysis: Any = ANALYSIS,
        plan: Any = PLAN,
        analysis_error: Optional[Exception] = None,
        plan_error: Optional[Exception] = None,
    ) -> None:
        self.analysis = analysis
        self.plan = plan
        self.analysis_error = analysis_error
        self.plan_error = plan_error
        self.transcribed: list[tuple[str, str]] = []
        self.plan_requests: list[dict] = []

    async def analyze_conversation(self, transcription: str) -> Any:
        if self.analysis_error is not None:
            raise self.analysis_error
        return self.analysis

    async def plan_estimate(self, *, analysis, measurements, services, materials) -> Any:
        self.plan_requests.append({"analysis": analysis, "measurements": measurements})
        if self.plan_error is not None:
            raise self.plan_error
        return self.plan

    async def transcribe_audio(self, *, audio_base64: str, mime_type: str) -> Any:
        self.transcribed.append((audio_base64, mime_type))
        return {"text": "I want new sod in the front yard."}


@pytest.fixture()
def webhook_overrides():
    from app import dependencies

    def _install(gemini: FakeGeminiClient, api_key: Optional[str] = None) -> FakeGeminiClient:
        settings = AppSettings(security=SecuritySettings(webhook_api_key=api_key))
        app.dependency_overrides.update(
            {
                dependencies.get_app_settings: lambda: settings,
                dependencies.get_estimate_service: lambda: EstimateService(gemini),
            }
        )
        return gemini

    yield _install

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.mark.anyio
async def test_status_reports_version() -> None:
    async with _client() as client:
        response = await client.get("/api/webhook/status")

    payload = response.json()
    assert payload["status"] == "online"
    assert payload["version"] == "1.3"
    assert payload["timestamp"]


@pytest.mark.anyio
async def test_analyze_text_returns_priced_estimate(webhook_overrides) -> None:
    webhook_overrides(FakeGeminiClient())
    async with _client() as client:
        response = await client.post(
            "/api/webhook/analyze-text",
            json={"text": "We need new sod out front.", "customer_info": {"name": "Jane"}},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["customer_info"] == {"name": "Jane"}
    assert payload["transcription"] == "We need new sod out front."
    assert payload["analysis"]["projectScope"] == "medium"
    pricing = payload["estimate"]["pricing"]
    assert pricing["laborSubtotal"] == 1250
    assert pricing["materialSubtotal"] == 450
    assert pricing["total"] == pytest.approx((1250 + 450 * 1.25) * 1.08, abs=0.01)
    assert payload["estimate"]["projectInfo"]["summary"] == ANALYSIS["projectSummary"]


@pytest.mark.anyio
async def test_analyze_text_falls_back_when_analysis_fails(webhook_overrides) -> None:
    gemini = webhook_overrides(
        FakeGeminiClient(analysis_error=GeminiModelError("quota exceeded"))
    )
    async with _client() as client:
        response = await client.post("/api/webhook/analyze-text", json={"text": "hello"})

    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["services"] == ["Manual review needed"]
    assert analysis["projectScope"] == "unknown"
    assert "hello" in analysis["notes"][0]
    assert gemini.plan_requests


@pytest.mark.anyio
async def test_analyze_text_requires_text(webhook_overrides) -> None:
    webhook_overrides(FakeGeminiClient())
    async with _client() as client:
        response = await client.post("/api/webhook/analyze-text", json={"text": ""})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_estimate_failure_maps_to_bad_gateway(webhook_overrides) -> None:
    webhook_overrides(FakeGeminiClient(plan_error=GeminiModelError("model unavailable")))
    async with _client() as client:
        response = await client.post("/api/webhook/analyze-text", json={"text": "hello"})

    assert response.status_code == 502
    assert response.json()["code"] == "estimate_generation_failed"


@pytest.mark.anyio
async def test_analyze_audio_transcribes_first(webhook_overrides) -> None:
    gemini = webhook_overrides(FakeGeminiClient())
    async with _client() as client:
        response = await client.post(
            "/api/webhook/analyze-audio",
            json={"audio_b64": "UklGRg==", "mime_type": "audio/mp4"},
        )

    assert response.status_code == 200
    assert response.json()["transcription"] == "I want new sod in the front yard."
    assert gemini.transcribed == [("UklGRg==", "audio/mp4")]


@pytest.mark.anyio
async def test_estimate_only_passes_measurements(webhook_overrides) -> None:
    gemini = webhook_overrides(FakeGeminiClient())
    async with _client() as client:
        response = await client.post(
            "/api/webhook/estimate-only",
            json={"analysis": ANALYSIS, "measurements": {"lawn_sq_ft": 1000}},
        )

    assert response.status_code == 200
    assert "estimate" in response.json()
    assert gemini.plan_requests[0]["measurements"] == {"lawn_sq_ft": 1000}
    assert gemini.plan_requests[0]["analysis"]["projectSummary"] == ANALYSIS["projectSummary"]


@pytest.mark.anyio
async def test_api_key_is_enforced_when_configured(webhook_overrides) -> None:
    webhook_overrides(FakeGeminiClient(), api_key="hook-key")
    async with _client() as client:
        missing = await client.post("/api/webhook/analyze-text", json={"text": "hi"})
        wrong = await client.post(
            "/api/webhook/analyze-text",
            json={"text": "hi"},
            headers={"X-API-Key": "nope"},
        )
        accepted = await client.post(
            "/api/webhook/analyze-text",
            json={"text": "hi"},
            headers={"X-API-Key": "hook-key"},
        )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json()["code"] == "invalid_api_key"
    assert accepted.status_code == 200
