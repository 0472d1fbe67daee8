"""Hairvis contract models.

Every entity that crosses a component boundary in the visitor flow lives
here: photo set, intake answers, analysis result, identity, lead record,
and the orchestrator's state record. Drafts are serialized from these
models, so fields are additive-only once shipped.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# === Flow State ===


class FlowState(StrEnum):
    LANDING = "landing"
    TYPE_SELECT = "type_select"
    PRE_SCAN = "pre_scan"
    CAPTURING = "capturing"
    INTAKE = "intake"
    IDENTITY_GATE = "identity_gate"
    GENERATING = "generating"
    RESULT = "result"
    # Marketplace browsing, reachable from landing only
    DIRECTORY = "directory"
    CLINIC_DETAILS = "clinic_details"
    CLINIC_LANDING = "clinic_landing"
    PARTNER_PORTAL = "partner_portal"
    PARTNER_JOIN = "partner_join"
    PATIENT_PORTAL = "patient_portal"
    BLOG = "blog"


BROWSING_STATES = frozenset(
    {
        FlowState.DIRECTORY,
        FlowState.CLINIC_DETAILS,
        FlowState.CLINIC_LANDING,
        FlowState.PARTNER_PORTAL,
        FlowState.PARTNER_JOIN,
        FlowState.PATIENT_PORTAL,
        FlowState.BLOG,
    }
)


class ErrorKind(StrEnum):
    MISSING_INPUT = "missing_input"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNREACHABLE = "unreachable"
    GENERIC = "generic"
    # Finalize preconditions
    MISSING_ANALYSIS = "missing_analysis"
    MISSING_INTAKE = "missing_intake"
    VERIFICATION_REQUIRED = "verification_required"
    # Identity resume
    AUTH_FAILED = "auth_failed"


class FlowError(BaseModel):
    kind: ErrorKind
    message: str
    retryable: bool = False


# === Photo Set ===

# Known capture roles. Tags are neither unique nor complete in a photo set.
PHOTO_ROLES: tuple[str, ...] = ("front", "left", "right", "crown", "donor", "hairline_detail")


class CapturedPhoto(BaseModel):
    role: str
    data: str  # data URL or bare base64 payload


class AnalysisOptions(BaseModel):
    skip: bool = False


class PhotoSet(BaseModel):
    flow_id: str
    photos: list[CapturedPhoto] = []
    # Drafted with the photos so a reload resumes in the same mode.
    options: AnalysisOptions = AnalysisOptions()

    def by_role(self, role: str) -> CapturedPhoto | None:
        """First photo tagged ``role``, falling back to the first photo."""
        for photo in self.photos:
            if photo.role == role:
                return photo
        return self.photos[0] if self.photos else None

    def primary(self) -> CapturedPhoto | None:
        return self.by_role("front")

    def role_map(self) -> dict[str, str]:
        """Image payload per known role, with first-photo fallback."""
        if not self.photos:
            return {}
        return {role: self.by_role(role).data for role in PHOTO_ROLES}  # type: ignore[union-attr]


# === Intake ===


class ConsentContact(BaseModel):
    """Attached by the identity gate, never by the questionnaire."""

    contact_method: Literal["email", "whatsapp", "anonymous"] | None = None
    contact_value: str | None = None
    full_name: str | None = None
    subject_id: str | None = None
    consent_given: bool = False
    verified: bool = False


class IntakeAnswers(BaseModel):
    # Layer A: calibration
    gender: str | None = None
    age_range: str | None = None
    hair_loss_stage: str | None = None
    donor_quality: str | None = None
    history: str | None = None
    # Layer B: goal / history
    goal: str | None = None
    expectation: str | None = None
    budget: str | None = None
    # Layer C: logistics / medication
    timeline: str | None = None
    location: str | None = None
    meds: str | None = None

    consent: ConsentContact | None = None

    def merged(self, other: IntakeAnswers) -> IntakeAnswers:
        """Overlay the answered fields of ``other`` onto a copy of self."""
        return IntakeAnswers.model_validate(
            {**self.model_dump(exclude_none=True), **other.model_dump(exclude_none=True)}
        )


# === Analysis ===


class Diagnosis(BaseModel):
    norwood_scale: str | None = None
    analysis_summary: str | None = None


class GraftDistribution(BaseModel):
    zone_1: int = 0
    zone_2: int = 0
    zone_3: int = 0


class TechnicalMetrics(BaseModel):
    graft_count_min: int | None = None
    graft_count_max: int | None = None
    graft_distribution: GraftDistribution | None = None
    estimated_session_time_hours: float | None = None
    suggested_technique: str | None = None
    technique_reasoning: str | None = None


class DonorAssessment(BaseModel):
    density_rating: Literal["Poor", "Moderate", "Good", "Excellent"] | None = None
    estimated_hairs_per_cm2: int | None = None
    total_safe_capacity_grafts: int | None = None
    donor_condition_summary: str | None = None


class PhenotypicFeatures(BaseModel):
    apparent_age: int | None = None
    skin_tone: str | None = None
    skin_undertone: str | None = None
    beard_presence: str | None = None
    beard_texture: str | None = None
    eyebrow_density: str | None = None
    eyebrow_color: str | None = None


class Point(BaseModel):
    x: float
    y: float


class ScalpGeometry(BaseModel):
    hairline_design_polygon: list[Point] = []
    high_density_zone_polygon: list[Point] = []


class AnalysisResult(BaseModel):
    """Structured scalp analysis. Unknown keys from the service are kept."""

    model_config = ConfigDict(extra="allow")

    diagnosis: Diagnosis | None = None
    technical_metrics: TechnicalMetrics | None = None
    donor_assessment: DonorAssessment | None = None
    phenotypic_features: PhenotypicFeatures | None = None
    scalp_geometry: ScalpGeometry | None = None
    # Attached after generation
    surgical_plan_image: str | None = None
    simulation_image: str | None = None

    @property
    def norwood_scale(self) -> str | None:
        return self.diagnosis.norwood_scale if self.diagnosis else None

    @property
    def graft_estimate(self) -> int | None:
        return self.technical_metrics.graft_count_min if self.technical_metrics else None


class ArtifactOk(BaseModel):
    status: Literal["ok"] = "ok"
    image: str


class ArtifactFailed(BaseModel):
    status: Literal["failed"] = "failed"
    reason: str


ArtifactOutcome = Annotated[ArtifactOk | ArtifactFailed, Field(discriminator="status")]


class ArtifactSet(BaseModel):
    plan: ArtifactOutcome | None = None
    simulation: ArtifactOutcome | None = None

    @property
    def settled(self) -> bool:
        return self.plan is not None and self.simulation is not None

    @property
    def plan_image(self) -> str | None:
        return self.plan.image if isinstance(self.plan, ArtifactOk) else None

    @property
    def simulation_image(self) -> str | None:
        return self.simulation.image if isinstance(self.simulation, ArtifactOk) else None


# === Identity ===


class IdentityRecord(BaseModel):
    email: str | None = None
    name: str | None = None
    subject_id: str
    verified: bool = False


# === Lead ===


class PatientDetails(BaseModel):
    full_name: str
    email: str = ""
    phone: str = ""
    consent: bool = True
    gender: str | None = None
    previous_transplant: str | None = None


class PhotoSetMetadata(BaseModel):
    roles: list[str] = []
    count: int = 0


class LeadRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    flow_id: str
    created_at: datetime
    country_code: str
    age: int
    gender: Literal["Male", "Female"]
    norwood_scale: str
    estimated_grafts: str
    thumbnail_url: str | None = None
    status: Literal["AVAILABLE", "PURCHASED", "NEGOTIATING"] = "AVAILABLE"
    price: int
    is_unlocked: bool = False
    suitability: Literal["suitable", "borderline", "not_recommended"]
    donor_band: str
    patient_details: PatientDetails
    intake: IntakeAnswers
    analysis_data: AnalysisResult
    photo_set: PhotoSetMetadata
    planning_image: str | None = None
    simulation_image: str | None = None

    def to_row(self) -> dict:
        """Lead-store insert row (column names of the ``leads`` table)."""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "country_code": self.country_code,
            "age": self.age,
            "gender": self.gender,
            "norwood_scale": self.norwood_scale,
            "estimated_grafts": self.estimated_grafts,
            "thumbnail_url": self.thumbnail_url,
            "status": self.status,
            "price": self.price,
            "is_unlocked": self.is_unlocked,
            "patient_details": self.patient_details.model_dump(),
            "analysis_data": {
                **self.analysis_data.model_dump(mode="json"),
                "suitability": self.suitability,
                "donor_band": self.donor_band,
                "photo_set": self.photo_set.model_dump(),
                "flow_id": self.flow_id,
            },
            "intake_data": self.intake.model_dump(mode="json"),
        }


# === Orchestrator State Record ===


class LastAttempt(BaseModel):
    photo_set: PhotoSet
    options: AnalysisOptions = AnalysisOptions()


class FlowContext(BaseModel):
    """Everything the orchestrator owns. Only transition functions write it."""

    state: FlowState = FlowState.LANDING
    epoch: int = 0
    language: str = "EN"
    photo_set: PhotoSet | None = None
    intake: IntakeAnswers | None = None
    analysis: AnalysisResult | None = None
    artifacts: ArtifactSet = ArtifactSet()
    identity: IdentityRecord | None = None
    lead: LeadRecord | None = None
    last_attempt: LastAttempt | None = None
    error: FlowError | None = None


class FlowSnapshot(BaseModel):
    """Read model returned to the presentation layer."""

    state: FlowState
    language: str
    photo_count: int = 0
    photo_roles: list[str] = []
    intake: IntakeAnswers | None = None
    analysis: AnalysisResult | None = None
    artifacts: ArtifactSet = ArtifactSet()
    lead: LeadRecord | None = None
    error: FlowError | None = None
    is_analyzing: bool = False
    is_generating: bool = False
    can_retry: bool = False


# === API Request/Response Models ===


class CreateSessionRequest(BaseModel):
    language: str = "EN"


class CreateSessionResponse(BaseModel):
    session_id: str


class PageLoadRequest(BaseModel):
    address: str


class PageLoadResponse(BaseModel):
    address: str
    snapshot: FlowSnapshot


class SelectTypeRequest(BaseModel):
    type: str


class BrowseRequest(BaseModel):
    destination: FlowState


class PhotosReadyRequest(BaseModel):
    photos: list[CapturedPhoto] = Field(min_length=1, max_length=12)
    skip: bool = False


class IntakeLayerRequest(BaseModel):
    layer: Literal["a", "b", "c"]
    answers: IntakeAnswers


class OtpSendRequest(BaseModel):
    email: str


class OtpVerifyRequest(BaseModel):
    email: str
    token: str


class LoginFailedRequest(BaseModel):
    reason: str | None = None


class ActionResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
