"""Turn customer conversations into priced landscaping estimates."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.clients.gemini import GeminiClient, GeminiModelError
from app.core.errors import EstimateGenerationError
from app.schemas.estimate import Estimate, ProjectAnalysis
from app.services.pricing import MATERIAL_COSTS, SERVICE_RATES, price_estimate

logger = logging.getLogger(__name__)


def fallback_analysis(transcription: str) -> ProjectAnalysis:
    """Analysis returned when the model output is unavailable or unusable."""
    return ProjectAnalysis(
        project_summary="Error analyzing project - please review transcription manually",
        services=["Manual review needed"],
        materials=[],
        problem_areas=[],
        project_scope="unknown",
        estimated_duration="TBD",
        notes=[f"AI analysis failed - transcription: {transcription}"],
    )


class EstimateService:
    """Coordinates transcription, analysis, quantity planning and pricing."""

    def __init__(self, gemini_client: GeminiClient) -> None:
        self._gemini = gemini_client

    async def transcribe(self, audio_b64: str, mime_type: str) -> str:
        try:
            payload = await self._gemini.transcribe_audio(
                audio_base64=audio_b64, mime_type=mime_type
            )
        except GeminiModelError as exc:
            raise EstimateGenerationError(f"Transcription failed: {exc}") from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if not text:
            text = payload.get("raw") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise EstimateGenerationError("Transcription returned no text.")
        return text.strip()

    async def analyze(self, text: str) -> ProjectAnalysis:
        """Analyze a conversation, degrading to a manual-review analysis on failure."""
        try:
            payload = await self._gemini.analyze_conversation(text)
        except GeminiModelError as exc:
            logger.error("Project analysis failed: %s", exc)
            return fallback_analysis(text)

        if not isinstance(payload, dict) or "raw" in payload or not payload:
            logger.error("Project analysis returned unusable output.")
            return fallback_analysis(text)
        try:
            return ProjectAnalysis.model_validate(payload)
        except ValidationError as exc:
            logger.error("Project analysis did not match the expected shape: %s", exc)
            return fallback_analysis(text)

    async def generate_estimate(
        self,
        analysis: ProjectAnalysis,
        measurements: Optional[Dict[str, Any]] = None,
    ) -> Estimate:
        try:
            plan = await self._gemini.plan_estimate(
                analysis=analysis.model_dump(by_alias=True),
                measurements=measurements or {},
                services=SERVICE_RATES.keys(),
                materials=MATERIAL_COSTS.keys(),
            )
        except GeminiModelError as exc:
            raise EstimateGenerationError(f"Failed to generate estimate: {exc}") from exc

        if not isinstance(plan, dict) or "raw" in plan:
            raise EstimateGenerationError("Failed to generate estimate: unreadable plan.")
        return price_estimate(plan, analysis)


__all__ = ["EstimateService", "fallback_analysis"]
