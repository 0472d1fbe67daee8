"""Pure state transitions over ``FlowContext``.

Every function takes the current context and returns a new one; none of
them touch drafts, services, or the clock. The orchestrator is the only
caller and the only place a returned context is installed.

``epoch`` identifies one traversal of the capture-to-result path. It is
bumped whenever in-flight work must stop applying: a new capture, a
retry, or a return to landing.
"""

from __future__ import annotations

from hairvis.flow.errors import InvalidTransition, flow_error
from hairvis.models.contracts import (
    BROWSING_STATES,
    AnalysisOptions,
    AnalysisResult,
    ArtifactOk,
    ArtifactSet,
    ConsentContact,
    ErrorKind,
    FlowContext,
    FlowState,
    IdentityRecord,
    IntakeAnswers,
    LastAttempt,
    LeadRecord,
    PhotoSet,
)

# States in which an analysis result still belongs to the live traversal.
ANALYSIS_STATES = frozenset({FlowState.INTAKE, FlowState.IDENTITY_GATE, FlowState.GENERATING})


def _require(ctx: FlowContext, action: str, *allowed: FlowState) -> None:
    if ctx.state not in allowed:
        raise InvalidTransition(action, ctx.state)


def _update(ctx: FlowContext, **fields) -> FlowContext:
    return ctx.model_copy(update=fields)


def restored(
    ctx: FlowContext,
    photo_set: PhotoSet | None,
    intake: IntakeAnswers | None,
    analysis: AnalysisResult | None,
) -> FlowContext:
    """Rehydrate caches from drafts. The visible state is always landing."""
    artifacts = ArtifactSet()
    if analysis is not None and analysis.surgical_plan_image and analysis.simulation_image:
        artifacts = ArtifactSet(
            plan=ArtifactOk(image=analysis.surgical_plan_image),
            simulation=ArtifactOk(image=analysis.simulation_image),
        )
    return _update(
        ctx,
        state=FlowState.LANDING,
        photo_set=photo_set,
        intake=intake,
        analysis=analysis,
        artifacts=artifacts,
        last_attempt=(
            LastAttempt(photo_set=photo_set, options=photo_set.options) if photo_set is not None else None
        ),
    )


def start(ctx: FlowContext) -> FlowContext:
    _require(ctx, "start", FlowState.LANDING)
    return _update(ctx, state=FlowState.TYPE_SELECT, error=None)


def browse(ctx: FlowContext, destination: FlowState) -> FlowContext:
    _require(ctx, "browse", FlowState.LANDING, *BROWSING_STATES)
    if destination not in BROWSING_STATES:
        raise InvalidTransition(f"browse to '{destination.value}'", ctx.state)
    return _update(ctx, state=destination, error=None)


def select_type(ctx: FlowContext, kind: str) -> FlowContext:
    """Only the hair path is implemented; other types leave the state alone."""
    _require(ctx, "select type", FlowState.TYPE_SELECT)
    if kind != "hair":
        return ctx
    return _update(ctx, state=FlowState.PRE_SCAN)


def begin_capture(ctx: FlowContext) -> FlowContext:
    _require(ctx, "begin capture", FlowState.PRE_SCAN)
    return _update(ctx, state=FlowState.CAPTURING)


def photos_ready(ctx: FlowContext, photo_set: PhotoSet, options: AnalysisOptions) -> FlowContext:
    _require(ctx, "submit photos", FlowState.CAPTURING)
    return _update(
        ctx,
        state=FlowState.INTAKE,
        epoch=ctx.epoch + 1,
        photo_set=photo_set,
        intake=None,
        analysis=None,
        artifacts=ArtifactSet(),
        lead=None,
        last_attempt=LastAttempt(photo_set=photo_set, options=options),
        error=None,
    )


def intake_layer(ctx: FlowContext, answers: IntakeAnswers) -> FlowContext:
    _require(ctx, "record intake answers", FlowState.INTAKE)
    # Consent is attached by the identity gate only.
    answers = answers.model_copy(update={"consent": None})
    merged = ctx.intake.merged(answers) if ctx.intake is not None else answers
    return _update(ctx, intake=merged)


def intake_complete(ctx: FlowContext) -> FlowContext:
    _require(ctx, "complete intake", FlowState.INTAKE)
    return _update(ctx, state=FlowState.IDENTITY_GATE, intake=ctx.intake or IntakeAnswers())


def analysis_succeeded(ctx: FlowContext, analysis: AnalysisResult) -> FlowContext:
    return _update(ctx, analysis=analysis)


def login_succeeded(ctx: FlowContext, identity: IdentityRecord) -> FlowContext:
    """Enter generating. Reachable from the gate or from a resumed redirect."""
    if ctx.state is FlowState.GENERATING:
        raise InvalidTransition("complete login", ctx.state)
    return _update(ctx, state=FlowState.GENERATING, identity=identity, lead=None, error=None)


def login_failed(ctx: FlowContext) -> FlowContext:
    return _update(
        ctx,
        state=FlowState.LANDING,
        epoch=ctx.epoch + 1,
        identity=None,
        error=flow_error(ErrorKind.AUTH_FAILED, ctx.language),
    )


def analysis_failed(ctx: FlowContext, kind: ErrorKind) -> FlowContext:
    """Analysis failed while generating: show the result screen with an error."""
    _require(ctx, "fail analysis", FlowState.GENERATING)
    return _update(ctx, state=FlowState.RESULT, error=flow_error(kind, ctx.language))


def artifacts_settled(
    ctx: FlowContext, artifacts: ArtifactSet, analysis: AnalysisResult
) -> FlowContext:
    _require(ctx, "settle artifacts", FlowState.GENERATING)
    return _update(ctx, artifacts=artifacts, analysis=analysis)


def lead_committed(ctx: FlowContext, lead: LeadRecord) -> FlowContext:
    # Drafts are gone at this point; keep only what the result screen renders.
    return _update(
        ctx,
        state=FlowState.RESULT,
        lead=lead,
        photo_set=None,
        intake=None,
        identity=None,
        last_attempt=None,
        error=None,
    )


def finalize_failed(ctx: FlowContext, kind: ErrorKind, destination: FlowState) -> FlowContext:
    fields: dict = {"state": destination, "error": flow_error(kind, ctx.language)}
    if destination is FlowState.LANDING:
        fields.update(epoch=ctx.epoch + 1, identity=None)
    return _update(ctx, **fields)


def retry(ctx: FlowContext) -> FlowContext:
    """Re-run analysis on the last photo set, clearing prior results."""
    _require(ctx, "retry", FlowState.RESULT)
    if ctx.error is None:
        raise InvalidTransition("retry without an error", ctx.state)
    if ctx.last_attempt is None:
        return _update(ctx, error=flow_error(ErrorKind.MISSING_INPUT, ctx.language))
    return _update(
        ctx,
        state=FlowState.GENERATING,
        epoch=ctx.epoch + 1,
        photo_set=ctx.last_attempt.photo_set,
        analysis=None,
        artifacts=ArtifactSet(),
        lead=None,
        error=None,
    )


def go_home(ctx: FlowContext) -> FlowContext:
    """Back to landing. Cached drafts stay so the visitor can resume later."""
    return _update(ctx, state=FlowState.LANDING, epoch=ctx.epoch + 1, error=None)


def merged_intake(ctx: FlowContext) -> IntakeAnswers | None:
    """Intake answers with the verified identity attached as consent."""
    if ctx.intake is None:
        return None
    identity = ctx.identity
    if identity is None:
        return ctx.intake
    consent = ConsentContact(
        contact_method="email" if identity.email else "anonymous",
        contact_value=identity.email,
        full_name=identity.name,
        subject_id=identity.subject_id,
        consent_given=True,
        verified=identity.verified,
    )
    return ctx.intake.model_copy(update={"consent": consent})

