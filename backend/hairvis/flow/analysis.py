"""Analysis pipeline: photo set -> structured scalp analysis.

Single attempt per call. Retries are driven by the caller (the
orchestrator's ``retry`` from the result screen), never internally, so a
user is never left waiting through a silent backoff loop.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from hairvis.flow.errors import AnalysisFailure, classify_error
from hairvis.flow.telemetry import elapsed_ms, report_activity, type_name
from hairvis.models.contracts import (
    AnalysisOptions,
    AnalysisResult,
    Diagnosis,
    DonorAssessment,
    ErrorKind,
    PhotoSet,
    TechnicalMetrics,
)
from hairvis.services.base import ActivityLogger, AnalysisService

logger = structlog.get_logger()


def demo_analysis() -> AnalysisResult:
    """Canned result used in skip/demo mode (no network)."""
    return AnalysisResult(
        diagnosis=Diagnosis(
            norwood_scale="NW3",
            analysis_summary="Demo analysis: moderate frontal recession with stable donor area.",
        ),
        technical_metrics=TechnicalMetrics(
            graft_count_min=2500,
            graft_count_max=3000,
            suggested_technique="FUE",
            estimated_session_time_hours=7.0,
        ),
        donor_assessment=DonorAssessment(density_rating="Good"),
    )


class AnalysisPipeline:
    """Runs the analysis collaborator once and classifies its failures.

    ``is_analyzing`` is true from just before the first suspension point
    until the last overlapping call settles, on every exit path.
    """

    def __init__(self, service: AnalysisService, activity: ActivityLogger | None = None) -> None:
        self._service = service
        self._activity = activity
        self._in_flight = 0

    @property
    def is_analyzing(self) -> bool:
        return self._in_flight > 0

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    async def analyze(
        self,
        photo_set: PhotoSet | None,
        options: AnalysisOptions | None = None,
    ) -> AnalysisResult:
        options = options or AnalysisOptions()
        # Validate before any network activity.
        if photo_set is None or not photo_set.photos:
            raise AnalysisFailure(ErrorKind.MISSING_INPUT, "no photos provided")

        if options.skip:
            logger.info("analysis_skipped", flow_id=photo_set.flow_id)
            return demo_analysis()

        images = photo_set.role_map()
        started = time.monotonic()
        with self._busy():
            logger.info(
                "analysis_start",
                flow_id=photo_set.flow_id,
                photo_count=len(photo_set.photos),
            )
            try:
                result = await self._service.analyze(images)
            except Exception as exc:
                kind = classify_error(exc)
                duration = elapsed_ms(started)
                logger.error(
                    "analysis_failed",
                    flow_id=photo_set.flow_id,
                    kind=kind.value,
                    error_type=type_name(exc),
                    error=str(exc)[:300],
                    duration_ms=duration,
                )
                await report_activity(
                    self._activity,
                    type="analysis",
                    input={"flow_id": photo_set.flow_id, "roles": sorted(images)},
                    duration_ms=duration,
                    error=f"{kind.value}: {str(exc)[:300]}",
                )
                raise AnalysisFailure(kind, str(exc)) from exc

            duration = elapsed_ms(started)
            logger.info(
                "analysis_complete",
                flow_id=photo_set.flow_id,
                norwood=result.norwood_scale,
                grafts=result.graft_estimate,
                duration_ms=duration,
            )
            await report_activity(
                self._activity,
                type="analysis",
                input={"flow_id": photo_set.flow_id, "roles": sorted(images)},
                output={"norwood_scale": result.norwood_scale, "graft_count_min": result.graft_estimate},
                duration_ms=duration,
            )
        return result
