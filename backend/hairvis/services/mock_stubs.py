"""In-process collaborators for local development and E2E runs.

Selected with ``SERVICE_BACKEND=mock`` / ``IDENTITY_BACKEND=mock``. They
return realistic stub data so the whole visitor flow can be exercised
without Gemini or Supabase credentials.
"""

from __future__ import annotations

import asyncio
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

from hairvis.models.contracts import (
    AnalysisResult,
    Diagnosis,
    DonorAssessment,
    IdentityRecord,
    LeadRecord,
    Point,
    ScalpGeometry,
    TechnicalMetrics,
)
from hairvis.services.base import DuplicateLeadError, ExchangeResult, ServiceError

logger = structlog.get_logger()

# Cross-process one-shot failure injection for E2E error-path testing.
FORCE_FAILURE_SENTINEL = Path(tempfile.gettempdir()) / "hairvis-force-failure"

# 1x1 transparent PNG
MOCK_IMAGE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def _check_injected_failure() -> None:
    if FORCE_FAILURE_SENTINEL.exists():
        FORCE_FAILURE_SENTINEL.unlink(missing_ok=True)
        raise ServiceError("Injected failure for E2E testing", status_code=503)


class MockAnalysisService:
    async def analyze(self, images: dict[str, str]) -> AnalysisResult:
        _check_injected_failure()
        await asyncio.sleep(0)
        return AnalysisResult(
            diagnosis=Diagnosis(norwood_scale="NW3", analysis_summary="Mock analysis"),
            technical_metrics=TechnicalMetrics(graft_count_min=2500, graft_count_max=3000),
            donor_assessment=DonorAssessment(density_rating="Good"),
            scalp_geometry=ScalpGeometry(
                hairline_design_polygon=[Point(x=0.3, y=0.25), Point(x=0.7, y=0.25), Point(x=0.5, y=0.4)],
            ),
        )


class MockGenerationService:
    async def generate_plan_image(self, photo: str, analysis: AnalysisResult) -> str:
        await asyncio.sleep(0)
        return MOCK_IMAGE

    async def generate_simulation_image(
        self, photo: str, plan_image: str | None, analysis: AnalysisResult
    ) -> str:
        await asyncio.sleep(0)
        return MOCK_IMAGE


class MockIdentityProvider:
    """Any code works except ones starting with ``bad``; OTP token is 123456."""

    OTP_TOKEN = "123456"

    def __init__(self, email: str = "visitor@example.com", verified: bool = True) -> None:
        self._email = email
        self._verified = verified
        self._listeners: list[Callable[[str, IdentityRecord | None], None]] = []

    def _identity(self, email: str | None = None) -> IdentityRecord:
        email = email or self._email
        return IdentityRecord(
            email=email,
            name="Mock Visitor",
            subject_id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email}")),
            verified=self._verified,
        )

    def _notify(self, event: str, identity: IdentityRecord | None) -> None:
        for listener in list(self._listeners):
            listener(event, identity)

    async def exchange_callback(self, code: str) -> ExchangeResult:
        await asyncio.sleep(0)
        if code.startswith("bad"):
            return ExchangeResult(error="invalid or expired authorization code")
        identity = self._identity()
        self._notify("SIGNED_IN", identity)
        return ExchangeResult(identity=identity)

    def on_session_change(
        self, callback: Callable[[str, IdentityRecord | None], None]
    ) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def send_otp(self, email: str) -> None:
        logger.info("mock_otp_sent", token=self.OTP_TOKEN)

    async def verify_otp(self, email: str, token: str) -> ExchangeResult:
        if token != self.OTP_TOKEN:
            return ExchangeResult(error="invalid login code")
        identity = self._identity(email)
        self._notify("SIGNED_IN", identity)
        return ExchangeResult(identity=identity)


class InMemoryLeadStore:
    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}

    async def insert(self, lead: LeadRecord) -> None:
        _check_injected_failure()
        if lead.id in self.rows:
            raise DuplicateLeadError(f"lead {lead.id} already exists")
        self.rows[lead.id] = lead.to_row()


class InMemoryActivityLogger:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    async def log_operation(
        self,
        *,
        type: str,
        input: dict[str, Any],
        output: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
    ) -> None:
        self.records.append(
            {"type": type, "input": input, "output": output, "duration_ms": duration_ms, "error": error}
        )
