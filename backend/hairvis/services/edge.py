"""Analysis and generation through the hosted edge functions.

The edge functions hold the model credentials server-side; this client
only needs the project URL and the public anon key. Non-2xx responses
carry ``{"error": "..."}`` and are raised as ``ServiceError`` with the
HTTP status so the flow can classify them (413, 5xx, ...).
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from hairvis.config import settings
from hairvis.models.contracts import AnalysisResult
from hairvis.services.base import ServiceError
from hairvis.services.gemini import plan_overlay
from hairvis.utils.image import to_data_url

logger = structlog.get_logger()

# Role names as the edge functions expect them
_EDGE_ROLES = {
    "front": "front",
    "left": "left",
    "right": "right",
    "crown": "top",
    "donor": "donor",
    "hairline_detail": "hairline_macro",
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


class EdgeFunctionClient:
    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.supabase_url).rstrip("/")
        self._anon_key = anon_key or settings.supabase_anon_key
        self._http = http_client
        self._timeout = timeout or settings.service_timeout_seconds

    async def call(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/functions/v1/{function}"
        headers = {"Authorization": f"Bearer {self._anon_key}"}
        if self._http is not None:
            response = await self._http.post(url, json=payload, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, headers=headers, timeout=self._timeout)

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "edge_function_error",
                function=function,
                status=response.status_code,
                error=message[:200],
            )
            raise ServiceError(f"{function} failed: {message}", status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise ServiceError(f"{function} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ServiceError(f"{function} returned an unexpected payload")
        return body


class EdgeAnalysisService:
    def __init__(self, client: EdgeFunctionClient | None = None) -> None:
        self._client = client or EdgeFunctionClient()

    async def analyze(self, images: dict[str, str]) -> AnalysisResult:
        payload = {_EDGE_ROLES.get(role, role): data for role, data in images.items()}
        body = await self._client.call("analyze-scalp", {"images": payload})
        return AnalysisResult.model_validate(body)


class EdgeGenerationService:
    def __init__(self, client: EdgeFunctionClient | None = None) -> None:
        self._client = client or EdgeFunctionClient()

    async def generate_plan_image(self, photo: str, analysis: AnalysisResult) -> str:
        overlay = plan_overlay(photo, analysis)
        if overlay is not None:
            return to_data_url(overlay)
        return await self._simulate(photo, analysis, mode="plan")

    async def generate_simulation_image(
        self, photo: str, plan_image: str | None, analysis: AnalysisResult
    ) -> str:
        context = {"plan": plan_image} if plan_image is not None else None
        return await self._simulate(photo, analysis, mode="simulation", context=context)

    async def _simulate(
        self,
        photo: str,
        analysis: AnalysisResult,
        *,
        mode: str,
        context: dict[str, str] | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "mainImage": photo,
            "analysisResult": analysis.model_dump(
                mode="json", exclude={"surgical_plan_image", "simulation_image"}
            ),
            "mode": mode,
        }
        if context:
            payload["contextImages"] = context
        body = await self._client.call("generate-simulation", payload)
        image_url = body.get("imageUrl")
        if not image_url:
            raise ServiceError("No image URL returned")
        return str(image_url)
