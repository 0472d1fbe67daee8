"""Health check endpoint with backend connectivity probes.

A backend reporting "disconnected" does not affect the overall status
("ok"); the endpoint always returns 200 so load balancers keep routing.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog
from fastapi import APIRouter

from hairvis.config import settings

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check


async def _check_supabase() -> str:
    """Hit the auth health endpoint of the configured Supabase project."""
    if not settings.supabase_url:
        return "not_configured"
    url = f"{settings.supabase_url.rstrip('/')}/auth/v1/health"
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                url, headers={"apikey": settings.supabase_anon_key}, timeout=_CHECK_TIMEOUT
            )
        return "connected" if response.status_code < 500 else "disconnected"
    except httpx.HTTPError as exc:
        logger.debug("health_supabase_failed", error=str(exc))
        return "disconnected"


async def _check_gemini() -> str:
    """Gemini is only probed for configuration; a live call costs quota."""
    if settings.service_backend != "gemini":
        return "not_used"
    return "configured" if settings.google_ai_api_key else "not_configured"


@router.get("/health")
async def health_check() -> dict:
    supabase, gemini = await asyncio.gather(_check_supabase(), _check_gemini())
    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "service_backend": settings.service_backend,
        "identity_backend": settings.identity_backend,
        "supabase": supabase,
        "gemini": gemini,
    }
