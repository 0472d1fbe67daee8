"""Generation pipeline: surgical plan image, then visual simulation.

The two artifacts are generated in order because the simulation is
conditioned on the plan. Each step is individually failure-tolerant:
a failed artifact is recorded as ``ArtifactFailed`` and never aborts the
flow, since both images are optional enrichments of the lead.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from hairvis.flow.errors import classify_error
from hairvis.flow.telemetry import elapsed_ms, report_activity, type_name
from hairvis.models.contracts import (
    AnalysisResult,
    ArtifactFailed,
    ArtifactOk,
    ArtifactSet,
    PhotoSet,
)
from hairvis.services.base import ActivityLogger, GenerationService

logger = structlog.get_logger()

ArtifactResult = ArtifactOk | ArtifactFailed


class GenerationPipeline:
    def __init__(self, service: GenerationService, activity: ActivityLogger | None = None) -> None:
        self._service = service
        self._activity = activity
        self._in_flight = 0

    @property
    def is_generating(self) -> bool:
        return self._in_flight > 0

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    async def generate_plan(self, photo: str, analysis: AnalysisResult) -> ArtifactResult:
        """Draw the hairline/density plan over the primary photo."""
        started = time.monotonic()
        try:
            image = await self._service.generate_plan_image(photo, analysis)
        except Exception as exc:
            return await self._failed("plan", exc, started)
        await self._succeeded("plan", started)
        return ArtifactOk(image=image)

    async def generate_simulation(
        self,
        photo: str,
        plan: ArtifactResult | None,
        analysis: AnalysisResult,
    ) -> ArtifactResult:
        """Render the post-procedure look, guided by the plan when it exists."""
        plan_image = plan.image if isinstance(plan, ArtifactOk) else None
        started = time.monotonic()
        try:
            image = await self._service.generate_simulation_image(photo, plan_image, analysis)
        except Exception as exc:
            return await self._failed("simulation", exc, started)
        await self._succeeded("simulation", started, guided=plan_image is not None)
        return ArtifactOk(image=image)

    async def run(self, photo_set: PhotoSet | None, analysis: AnalysisResult) -> ArtifactSet:
        """Generate both artifacts; always returns a settled ``ArtifactSet``."""
        primary = photo_set.primary() if photo_set is not None else None
        if primary is None:
            logger.warning("generation_no_primary_photo")
            reason = "no primary photo"
            return ArtifactSet(
                plan=ArtifactFailed(reason=reason),
                simulation=ArtifactFailed(reason=reason),
            )

        with self._busy():
            plan = await self.generate_plan(primary.data, analysis)
            simulation = await self.generate_simulation(primary.data, plan, analysis)
        return ArtifactSet(plan=plan, simulation=simulation)

    async def _failed(self, artifact: str, exc: Exception, started: float) -> ArtifactFailed:
        kind = classify_error(exc)
        duration = elapsed_ms(started)
        logger.warning(
            "artifact_generation_failed",
            artifact=artifact,
            kind=kind.value,
            error_type=type_name(exc),
            error=str(exc)[:300],
            duration_ms=duration,
        )
        await report_activity(
            self._activity,
            type=f"generate_{artifact}",
            input={"artifact": artifact},
            duration_ms=duration,
            error=f"{kind.value}: {str(exc)[:300]}",
        )
        return ArtifactFailed(reason=kind.value)

    async def _succeeded(self, artifact: str, started: float, **fields: object) -> None:
        duration = elapsed_ms(started)
        logger.info("artifact_generated", artifact=artifact, duration_ms=duration, **fields)
        await report_activity(
            self._activity,
            type=f"generate_{artifact}",
            input={"artifact": artifact, **fields},
            output={"generated": True},
            duration_ms=duration,
        )
