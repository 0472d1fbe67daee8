"""Gemini-backed analysis and image generation.

The google-genai client is synchronous, so every call runs in a worker
thread under an ``asyncio.timeout`` to keep a hung request from pinning
the flow. Library errors are translated into ``ServiceError`` with the
HTTP status when the API reported one.
"""

from __future__ import annotations

import asyncio
import io
from typing import Any

import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from hairvis.config import settings
from hairvis.models.contracts import AnalysisResult
from hairvis.services.base import ServiceError
from hairvis.services.phenotype import derive_phenotype_profile
from hairvis.services.prompts import (
    ANALYSIS_PROMPT,
    ANALYSIS_SCHEMA,
    VIEW_LABELS,
    plan_prompt,
    simulation_prompt,
)
from hairvis.utils.image import decode_image, draw_surgical_plan, to_data_url

logger = structlog.get_logger()

ANALYSIS_CONFIG = types.GenerateContentConfig(
    response_mime_type="application/json",
    response_schema=ANALYSIS_SCHEMA,
)

IMAGE_CONFIG = types.GenerateContentConfig(
    response_modalities=["TEXT", "IMAGE"],
)


def get_client() -> genai.Client:
    """Create a Gemini client using the configured API key."""
    return genai.Client(api_key=settings.google_ai_api_key)


def extract_image(response: types.GenerateContentResponse) -> Image.Image | None:
    """First inline image of a response, or None for a text-only reply."""
    if not response.candidates:
        return None
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return None
    for part in content.parts:
        if part.inline_data is None or part.inline_data.data is None:
            continue
        return Image.open(io.BytesIO(part.inline_data.data))
    return None


def plan_overlay(photo: str, analysis: AnalysisResult) -> Image.Image | None:
    """Draw the plan locally when the analysis carries usable geometry."""
    geometry = analysis.scalp_geometry
    if geometry is None or len(geometry.hairline_design_polygon) < 3:
        return None
    return draw_surgical_plan(
        decode_image(photo),
        [(p.x, p.y) for p in geometry.hairline_design_polygon],
        [(p.x, p.y) for p in geometry.high_density_zone_polygon],
    )


class GeminiClient:
    """Thin async wrapper shared by the analysis and generation services."""

    def __init__(self, client: genai.Client | None = None, timeout: float | None = None) -> None:
        self._client = client
        self._timeout = timeout or settings.service_timeout_seconds

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def generate(
        self, model: str, contents: list[Any], config: types.GenerateContentConfig
    ) -> types.GenerateContentResponse:
        try:
            async with asyncio.timeout(self._timeout):
                return await asyncio.to_thread(
                    self.client.models.generate_content,
                    model=model,
                    contents=contents,
                    config=config,
                )
        except genai_errors.APIError as exc:
            logger.warning("gemini_api_error", model=model, code=exc.code, error=str(exc)[:300])
            raise ServiceError(f"Gemini request failed: {exc}", status_code=exc.code) from exc


class GeminiAnalysisService:
    def __init__(self, gemini: GeminiClient | None = None, model: str | None = None) -> None:
        self._gemini = gemini or GeminiClient()
        self._model = model or settings.gemini_analysis_model

    async def analyze(self, images: dict[str, str]) -> AnalysisResult:
        if not images:
            raise ServiceError("no images provided for analysis")
        contents: list[Any] = [ANALYSIS_PROMPT]
        attached: set[str] = set()
        for role, label in VIEW_LABELS.items():
            payload = images.get(role)
            # Missing roles fall back to the first photo; send each photo once.
            if payload and payload not in attached:
                attached.add(payload)
                contents.extend([label, decode_image(payload)])

        logger.info("gemini_analysis_start", model=self._model, views=len(contents) // 2)
        response = await self._gemini.generate(self._model, contents, ANALYSIS_CONFIG)
        text = response.text
        if not text:
            raise ServiceError("Gemini returned an empty analysis response")
        return AnalysisResult.model_validate_json(text)


class GeminiGenerationService:
    def __init__(self, gemini: GeminiClient | None = None, model: str | None = None) -> None:
        self._gemini = gemini or GeminiClient()
        self._model = model or settings.gemini_image_model

    async def generate_plan_image(self, photo: str, analysis: AnalysisResult) -> str:
        overlay = plan_overlay(photo, analysis)
        if overlay is not None:
            logger.info("plan_drawn_from_geometry")
            return to_data_url(overlay)

        profile = derive_phenotype_profile(analysis)
        contents: list[Any] = [plan_prompt(profile), decode_image(photo)]
        return await self._generate_image(contents, "plan")

    async def generate_simulation_image(
        self, photo: str, plan_image: str | None, analysis: AnalysisResult
    ) -> str:
        profile = derive_phenotype_profile(analysis)
        contents: list[Any] = [simulation_prompt(profile, has_plan=plan_image is not None)]
        if plan_image is not None:
            contents.extend(["SURGICAL PLAN", decode_image(plan_image)])
        contents.extend(["PRIMARY IMAGE (apply simulation here)", decode_image(photo)])
        return await self._generate_image(contents, "simulation")

    async def _generate_image(self, contents: list[Any], artifact: str) -> str:
        logger.info("gemini_image_start", artifact=artifact, model=self._model, parts=len(contents))
        response = await self._gemini.generate(self._model, contents, IMAGE_CONFIG)
        image = extract_image(response)
        if image is None:
            text = response.text or ""
            raise ServiceError(f"Gemini returned no image for {artifact}: {text[:200]}")
        return to_data_url(image)
