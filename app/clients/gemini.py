"""Client wrapper for interacting with Google Gemini models."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from textwrap import dedent
from typing import Any, Callable, Iterable

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPICallError, NotFound

from app.core.config import GeminiSettings


_TEXT_FALLBACKS: tuple[str, ...] = (
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-pro",
)
_AUDIO_FALLBACKS: tuple[str, ...] = (
    "gemini-1.5-flash",
    "gemini-1.5-pro",
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

logger = logging.getLogger(__name__)


class GeminiModelError(RuntimeError):
    """Raised when Gemini cannot fulfill a request due to configuration issues."""


class GeminiClient:
    """Provide the analysis, quantity planning and transcription calls."""

    def __init__(self, settings: GeminiSettings) -> None:
        self._settings = settings
        self._configured = bool(settings.api_key)
        if self._configured:
            # Configure the global client once per process.
            genai.configure(api_key=settings.api_key)

    async def analyze_conversation(self, transcription: str) -> dict[str, Any]:
        """Extract structured project information from a customer conversation."""
        prompt = _build_analysis_prompt(transcription)

        def _invoke() -> str:
            response = self._invoke_with_models(
                models=self._text_model_candidates(),
                env_var="GEMINI_MODEL_NAME",
                error_prefix="Gemini analysis generate_content failed",
                call=lambda model: model.generate_content(
                    prompt,
                    generation_config={"temperature": 0.3, "max_output_tokens": 800},
                ),
            )
            return response.text or ""

        raw = await asyncio.to_thread(_invoke)
        return _parse_json_response(raw)

    async def plan_estimate(
        self,
        *,
        analysis: dict[str, Any],
        measurements: dict[str, Any],
        services: Iterable[str],
        materials: Iterable[str],
    ) -> dict[str, Any]:
        """Ask Gemini to map an analysis onto priced service and material keys."""
        prompt = _build_plan_prompt(
            analysis=analysis,
            measurements=measurements,
            services=list(services),
            materials=list(materials),
        )

        def _invoke() -> str:
            response = self._invoke_with_models(
                models=self._text_model_candidates(),
                env_var="GEMINI_MODEL_NAME",
                error_prefix="Gemini estimate generate_content failed",
                call=lambda model: model.generate_content(
                    prompt,
                    generation_config={"temperature": 0.2, "max_output_tokens": 1000},
                ),
            )
            return response.text or ""

        raw = await asyncio.to_thread(_invoke)
        return _parse_json_response(raw)

    async def transcribe_audio(
        self,
        *,
        audio_base64: str,
        mime_type: str,
    ) -> dict[str, Any]:
        """Invoke Gemini to transcribe an audio clip."""
        prompt = (
            "Transcribe this recording of a conversation about landscaping work. "
            'Respond with JSON: {"text": string}.'
        )

        def _invoke() -> str:
            response = self._invoke_with_models(
                models=self._audio_model_candidates(),
                env_var="GEMINI_MODEL_NAME",
                error_prefix="Gemini audio generate_content failed",
                call=lambda model: model.generate_content(
                    [
                        {
                            "role": "user",
                            "parts": [
                                {"text": prompt},
                                {"mime_type": mime_type, "data": audio_base64},
                            ],
                        }
                    ],
                ),
            )
            return response.text or ""

        raw = await asyncio.to_thread(_invoke)
        return _parse_json_response(raw)

    def _invoke_with_models(
        self,
        *,
        models: Iterable[str],
        env_var: str,
        error_prefix: str,
        call: Callable[[genai.GenerativeModel], Any],
    ) -> Any:
        """Try the configured model followed by fallbacks when available."""
        if not self._configured:
            raise GeminiModelError("Gemini is not configured. Set GEMINI_API_KEY.")

        model_sequence = list(models)
        last_not_found: NotFound | None = None
        for index, model_name in enumerate(model_sequence):
            generative_model = genai.GenerativeModel(model_name)
            try:
                return call(generative_model)
            except NotFound as exc:  # pragma: no cover - network call
                last_not_found = exc
                logger.warning(
                    "Gemini model '%s' not found (attempt %d/%d); trying fallback.",
                    model_name,
                    index + 1,
                    len(model_sequence),
                )
                continue
            except GoogleAPICallError as exc:  # pragma: no cover - network call
                raise GeminiModelError(f"{error_prefix}: {exc.message}") from exc

        if last_not_found is not None:
            primary = model_sequence[0] if model_sequence else "unknown"
            raise GeminiModelError(
                "Gemini model '"
                f"{primary}"
                "' is not available. Update "
                f"{env_var} to a supported value."
            ) from last_not_found

        raise GeminiModelError(f"{error_prefix}: Unknown error invoking Gemini.")

    def _text_model_candidates(self) -> list[str]:
        return self._collect_candidates(self._settings.model_name, _TEXT_FALLBACKS)

    def _audio_model_candidates(self) -> list[str]:
        return self._collect_candidates(self._settings.model_name, _AUDIO_FALLBACKS)

    @staticmethod
    def _collect_candidates(
        configured: str | None,
        fallbacks: tuple[str, ...],
    ) -> list[str]:
        """Return distinct model names prioritizing the configured value."""
        seen: set[str] = set()
        candidates: list[str] = []
        for name in (configured, *fallbacks):
            if not name:
                continue
            cleaned = name.strip()
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            candidates.append(cleaned)
        return candidates


def _build_analysis_prompt(transcription: str) -> str:
    return dedent(
        f"""\
        You are an expert landscaping project analyzer. A customer had a
        conversation about their landscaping needs. Analyze it and extract the
        key project information.

        Customer conversation: "{transcription}"

        Respond strictly in JSON with the schema:
        {{
          "projectSummary": "Brief 1-2 sentence summary of what they want",
          "services": [string],
          "materials": [string],
          "problemAreas": [string],
          "projectScope": "small/medium/large",
          "estimatedDuration": "rough timeline estimate",
          "notes": [string]
        }}
        Focus on landscaping terminology and be practical about what is achievable.
        Do not include prose outside the JSON object.
        """
    )


def _build_plan_prompt(
    *,
    analysis: dict[str, Any],
    measurements: dict[str, Any],
    services: list[str],
    materials: list[str],
) -> str:
    return dedent(
        f"""\
        Based on this landscaping project analysis, provide quantity estimates
        and map services to pricing categories.

        Project analysis: {json.dumps(analysis)}
        Optional measurements: {json.dumps(measurements)}

        Available service categories: {", ".join(services)}
        Available materials: {", ".join(materials)}

        Respond strictly in JSON with the schema:
        {{
          "serviceItems": [{{"service": string, "description": string,
            "quantity": number, "unit": string, "estimatedHours": number,
            "notes": string}}],
          "materialItems": [{{"material": string, "description": string,
            "quantity": number, "unit": string}}],
          "projectComplexity": "low/medium/high",
          "recommendedMeasurements": [string],
          "assumptions": [string]
        }}
        Be conservative with quantities if measurements are not provided.
        """
    )


def _parse_json_response(payload: str) -> Any:
    payload = payload.strip()
    if not payload:
        return {}
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        pass
    # Models often wrap the object in a markdown fence.
    match = _JSON_OBJECT.search(payload)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass
    return {"raw": payload}


__all__ = ["GeminiClient", "GeminiModelError"]
