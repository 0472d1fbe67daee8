"""Tests verifying the application scaffold: health probe, error shape, request ids."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from hairvis.api.routes import health
from hairvis.config import settings
from hairvis.models.contracts import ErrorResponse


class TestHealthEndpoint:
    """Verify the health endpoint returns the expected shape."""

    @pytest.mark.asyncio
    async def test_health_returns_200(self, client):
        """Health endpoint returns 200 with status, version, backends and probes."""
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["version"] == "0.1.0"
        assert body["service_backend"] == settings.service_backend
        assert "supabase" in body
        assert "gemini" in body

    @pytest.mark.asyncio
    async def test_health_unconfigured_backends(self, client):
        """Without credentials nothing is probed over the network."""
        with (
            patch.object(settings, "supabase_url", ""),
            patch.object(settings, "service_backend", "mock"),
        ):
            resp = await client.get("/health")
        body = resp.json()
        assert body["supabase"] == "not_configured"
        assert body["gemini"] == "not_used"

    @pytest.mark.asyncio
    async def test_health_backend_down_is_still_ok(self, client):
        """One backend down does not fail the probe."""
        with (
            patch(
                "hairvis.api.routes.health._check_supabase",
                new_callable=AsyncMock,
                return_value="disconnected",
            ),
            patch(
                "hairvis.api.routes.health._check_gemini",
                new_callable=AsyncMock,
                return_value="configured",
            ),
        ):
            resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["supabase"] == "disconnected"
        assert body["gemini"] == "configured"


class TestHealthChecks:
    """Individual probes."""

    @pytest.mark.asyncio
    async def test_gemini_configured(self):
        with (
            patch.object(settings, "service_backend", "gemini"),
            patch.object(settings, "google_ai_api_key", "key"),
        ):
            assert await health._check_gemini() == "configured"

    @pytest.mark.asyncio
    async def test_gemini_missing_key(self):
        with (
            patch.object(settings, "service_backend", "gemini"),
            patch.object(settings, "google_ai_api_key", ""),
        ):
            assert await health._check_gemini() == "not_configured"

    @pytest.mark.asyncio
    async def test_supabase_unreachable(self):
        with (
            patch.object(settings, "supabase_url", "https://project.supabase.test"),
            patch(
                "hairvis.api.routes.health.httpx.AsyncClient.get",
                new_callable=AsyncMock,
                side_effect=httpx.ConnectError("refused"),
            ),
        ):
            assert await health._check_supabase() == "disconnected"

    @pytest.mark.asyncio
    async def test_supabase_connected(self):
        with (
            patch.object(settings, "supabase_url", "https://project.supabase.test"),
            patch(
                "hairvis.api.routes.health.httpx.AsyncClient.get",
                new_callable=AsyncMock,
                return_value=httpx.Response(200),
            ),
        ):
            assert await health._check_supabase() == "connected"


class TestErrorShape:
    """Every error body follows ErrorResponse."""

    @pytest.mark.asyncio
    async def test_validation_error(self, client):
        resp = await client.post("/api/v1/sessions/abc/photos", json={"photos": []})
        assert resp.status_code == 422
        body = ErrorResponse.model_validate(resp.json())
        assert body.error == "validation_error"
        assert body.retryable is False

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.get("/api/v1/sessions/does-not-exist")
        assert resp.status_code == 404
        assert ErrorResponse.model_validate(resp.json()).error == "session_not_found"


class TestRequestId:
    """X-Request-ID is echoed or generated."""

    @pytest.mark.asyncio
    async def test_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_generated(self, client):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 36
