"""Lead finalizer: the single commit point of the visitor flow.

Checks preconditions, builds the marketplace lead, submits it once, and
only then discards the drafts. The lead id is derived from the flow id
minted at capture, so re-entering finalize for the same traversal (a
duplicate login callback, a retry after an ambiguous network failure)
cannot produce a second marketplace listing.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from hairvis.flow.drafts import DraftStore
from hairvis.flow.errors import FinalizeError
from hairvis.flow.telemetry import elapsed_ms, report_activity, type_name
from hairvis.models.contracts import (
    AnalysisResult,
    ErrorKind,
    IntakeAnswers,
    LeadRecord,
    PatientDetails,
    PhotoSet,
    PhotoSetMetadata,
)
from hairvis.services.base import ActivityLogger, DuplicateLeadError, LeadStore

logger = structlog.get_logger()

# Stable namespace for lead ids; changing it re-keys every future lead.
LEAD_NAMESPACE = uuid.UUID("6f1c2b0e-8d4a-4f5e-9b7a-3c2d1e0f9a8b")

DEFAULT_NORWOOD = "NW3"
DEFAULT_GRAFTS = 2500
DEFAULT_AGE = 30
DEFAULT_GENDER = "Male"
DEFAULT_DONOR_BAND = "Good"
DEFAULT_PRICE = 65

_AGE_RANGE_MIDPOINTS = {
    "18-24": 21,
    "25-34": 30,
    "35-44": 40,
    "45-54": 50,
    "55+": 58,
}


def lead_id_for(flow_id: str) -> str:
    return str(uuid.uuid5(LEAD_NAMESPACE, flow_id))


def suitability_for(donor_band: str) -> str:
    if donor_band == "Poor":
        return "not_recommended"
    if donor_band == "Moderate":
        return "borderline"
    return "suitable"


def _country_code(language: str) -> str:
    language = language.upper()
    return "US" if language == "EN" else language


def _age(analysis: AnalysisResult, intake: IntakeAnswers) -> int:
    features = analysis.phenotypic_features
    if features is not None and features.apparent_age:
        return features.apparent_age
    if intake.age_range in _AGE_RANGE_MIDPOINTS:
        return _AGE_RANGE_MIDPOINTS[intake.age_range]
    return DEFAULT_AGE


def _gender(intake: IntakeAnswers) -> str:
    value = (intake.gender or "").strip().lower()
    if value in ("female", "f", "woman"):
        return "Female"
    if value in ("male", "m", "man"):
        return "Male"
    return DEFAULT_GENDER


def build_lead_record(
    *,
    flow_id: str,
    analysis: AnalysisResult,
    intake: IntakeAnswers,
    simulation_image: str | None,
    plan_image: str | None,
    photo_set: PhotoSet | None,
    language: str,
    price: int,
    created_at: datetime,
) -> LeadRecord:
    """Assemble the lead, filling defaults for any metric the analysis lacks."""
    donor_band = (
        analysis.donor_assessment.density_rating
        if analysis.donor_assessment and analysis.donor_assessment.density_rating
        else DEFAULT_DONOR_BAND
    )
    consent = intake.consent
    email = consent.contact_value if consent and consent.contact_method == "email" else None
    phone = consent.contact_value if consent and consent.contact_method == "whatsapp" else None

    thumbnail = simulation_image
    if thumbnail is None and photo_set is not None and photo_set.photos:
        thumbnail = photo_set.photos[0].data

    photos = photo_set.photos if photo_set is not None else []
    return LeadRecord(
        id=lead_id_for(flow_id),
        flow_id=flow_id,
        created_at=created_at,
        country_code=_country_code(language),
        age=_age(analysis, intake),
        gender=_gender(intake),
        norwood_scale=analysis.norwood_scale or DEFAULT_NORWOOD,
        estimated_grafts=str(analysis.graft_estimate or DEFAULT_GRAFTS),
        thumbnail_url=thumbnail,
        price=price,
        suitability=suitability_for(donor_band),
        donor_band=donor_band,
        patient_details=PatientDetails(
            full_name=(consent.full_name if consent and consent.full_name else "Verified Patient"),
            email=email or "",
            phone=phone or "",
            consent=bool(consent and consent.consent_given),
            gender=intake.gender,
            previous_transplant=intake.history,
        ),
        intake=intake,
        analysis_data=analysis,
        photo_set=PhotoSetMetadata(roles=[p.role for p in photos], count=len(photos)),
        planning_image=plan_image,
        simulation_image=simulation_image,
    )


class LeadFinalizer:
    """Precondition check, at-most-once submission, then draft discard."""

    def __init__(
        self,
        lead_store: LeadStore,
        drafts: DraftStore,
        *,
        activity: ActivityLogger | None = None,
        price: int = DEFAULT_PRICE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = lead_store
        self._drafts = drafts
        self._activity = activity
        self._price = price
        self._clock = clock or (lambda: datetime.now(UTC))
        self._committed: dict[str, LeadRecord] = {}
        self._lock = asyncio.Lock()

    async def finalize(
        self,
        analysis: AnalysisResult | None,
        simulation_image: str | None,
        plan_image: str | None,
        merged_intake: IntakeAnswers | None,
        *,
        photo_set: PhotoSet | None = None,
        language: str = "EN",
    ) -> LeadRecord:
        """Commit one lead for this traversal and clear the drafts.

        Preconditions are evaluated in order: analysis present with a
        classification, intake present, contact verified. On submission
        failure the drafts are left intact so the flow can be retried.
        """
        if analysis is None or not analysis.norwood_scale:
            raise FinalizeError(ErrorKind.MISSING_ANALYSIS, "analysis missing or unclassified")
        if merged_intake is None:
            raise FinalizeError(ErrorKind.MISSING_INTAKE, "intake answers missing")
        consent = merged_intake.consent
        if consent is None or not consent.verified:
            raise FinalizeError(ErrorKind.VERIFICATION_REQUIRED, "contact not verified")

        if photo_set is not None:
            flow_id = photo_set.flow_id
        else:
            # Photo draft lost: key on the verified subject instead.
            flow_id = f"subject:{consent.subject_id or consent.contact_value}"
            logger.warning("finalize_without_photo_set")

        async with self._lock:
            lead_id = lead_id_for(flow_id)
            existing = self._committed.get(lead_id)
            if existing is not None:
                logger.info("lead_already_committed", lead_id=lead_id)
                return existing

            lead = build_lead_record(
                flow_id=flow_id,
                analysis=analysis,
                intake=merged_intake,
                simulation_image=simulation_image,
                plan_image=plan_image,
                photo_set=photo_set,
                language=language,
                price=self._price,
                created_at=self._clock(),
            )

            started = time.monotonic()
            try:
                await self._store.insert(lead)
            except DuplicateLeadError:
                logger.info("lead_insert_duplicate", lead_id=lead_id)
            except Exception as exc:
                logger.error(
                    "lead_insert_failed",
                    lead_id=lead_id,
                    error_type=type_name(exc),
                    error=str(exc)[:300],
                    status=getattr(exc, "status_code", None),
                )
                await report_activity(
                    self._activity,
                    type="finalize_lead",
                    input={"lead_id": lead_id},
                    duration_ms=elapsed_ms(started),
                    error=str(exc)[:300],
                )
                raise FinalizeError(ErrorKind.GENERIC, str(exc)) from exc

            self._committed[lead_id] = lead
            self._drafts.clear_all()

        logger.info(
            "lead_committed",
            lead_id=lead_id,
            norwood=lead.norwood_scale,
            suitability=lead.suitability,
            has_simulation=simulation_image is not None,
            has_plan=plan_image is not None,
        )
        await report_activity(
            self._activity,
            type="finalize_lead",
            input={"lead_id": lead_id},
            output={"norwood_scale": lead.norwood_scale, "suitability": lead.suitability},
            duration_ms=elapsed_ms(started),
        )
        return lead
