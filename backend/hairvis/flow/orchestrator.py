"""Flow orchestrator: the visitor's state machine.

Owns the single ``FlowContext`` and is its only writer. Pipelines and the
finalizer return values; the orchestrator decides whether those values
still belong to the live traversal (``epoch`` plus state checks) before
installing them, so a late analysis from an abandoned flow can never
overwrite a newer one.

Page lifecycle: ``load_page`` rehydrates drafts first and only then lets
the identity resume run, so a login that completes on reload always
finalizes against restored data.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog

from hairvis.flow import transitions
from hairvis.flow.analysis import AnalysisPipeline
from hairvis.flow.drafts import DraftKey, DraftStore
from hairvis.flow.errors import AnalysisFailure, FinalizeError, InvalidTransition
from hairvis.flow.finalizer import LeadFinalizer
from hairvis.flow.generation import GenerationPipeline
from hairvis.flow.identity import AddressBar, IdentityResume, ResumeOutcome, ResumeStatus
from hairvis.models.contracts import (
    AnalysisOptions,
    AnalysisResult,
    CapturedPhoto,
    FlowContext,
    FlowSnapshot,
    FlowState,
    IdentityRecord,
    IntakeAnswers,
    PhotoSet,
)
from hairvis.services.base import IdentityProvider

logger = structlog.get_logger()


class FlowOrchestrator:
    def __init__(
        self,
        drafts: DraftStore,
        analysis: AnalysisPipeline,
        generation: GenerationPipeline,
        finalizer: LeadFinalizer,
        identity: IdentityProvider,
        *,
        language: str = "EN",
        eager_analysis: bool = True,
        session_id: str | None = None,
    ) -> None:
        self._drafts = drafts
        self._analysis = analysis
        self._generation = generation
        self._finalizer = finalizer
        self._identity = identity
        self._eager = eager_analysis
        self._log = logger.bind(session_id=session_id) if session_id else logger
        self._restored = asyncio.Event()
        self._resume = IdentityResume(identity, self._restored)
        self._analysis_task: asyncio.Task[AnalysisResult | None] | None = None
        self._analysis_epoch: int | None = None
        # Strong references so in-flight analyses are not garbage collected
        self._background: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._closed = False
        self.ctx = FlowContext(language=language.upper())

    # --- Read side ---

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> FlowState:
        return self.ctx.state

    @property
    def eager_analysis(self) -> bool:
        return self._eager

    def snapshot(self) -> FlowSnapshot:
        ctx = self.ctx
        photos = ctx.photo_set.photos if ctx.photo_set is not None else []
        return FlowSnapshot(
            state=ctx.state,
            language=ctx.language,
            photo_count=len(photos),
            photo_roles=[p.role for p in photos],
            intake=ctx.intake,
            analysis=ctx.analysis,
            artifacts=ctx.artifacts,
            lead=ctx.lead,
            error=ctx.error,
            is_analyzing=self._analysis.is_analyzing,
            is_generating=self._generation.is_generating,
            can_retry=ctx.state is FlowState.RESULT and ctx.error is not None,
        )

    def _apply(self, ctx: FlowContext, event: str) -> None:
        previous = self.ctx.state
        self.ctx = ctx
        if ctx.state is not previous:
            self._log.info(
                "flow_transition",
                trigger=event,
                from_state=previous.value,
                to_state=ctx.state.value,
                epoch=ctx.epoch,
            )

    def _is_current(self, epoch: int, *states: FlowState) -> bool:
        if self._closed:
            return False
        return self.ctx.epoch == epoch and (not states or self.ctx.state in states)

    # --- Page lifecycle ---

    def close(self) -> None:
        """Retire this page's orchestrator after a reload.

        Work still in flight keeps running but none of its results are
        installed or drafted, so it cannot overwrite the next page's drafts.
        """
        self._closed = True
        self._forget_analysis()
        self._log.info("orchestrator_closed", epoch=self.ctx.epoch)

    async def restore(self) -> None:
        """Rehydrate caches from drafts; idempotent per page."""
        if self._restored.is_set():
            return
        photo_set = self._drafts.load_photos()
        intake = self._drafts.load_intake()
        analysis = self._drafts.load_analysis()
        self._apply(transitions.restored(self.ctx, photo_set, intake, analysis), "restore")
        self._log.info(
            "drafts_restored",
            has_photos=photo_set is not None,
            has_intake=intake is not None,
            has_analysis=analysis is not None,
        )
        self._restored.set()

    async def load_page(self, address_bar: AddressBar) -> ResumeOutcome:
        await self.restore()
        return await self.resume_identity(address_bar)

    async def resume_identity(self, address_bar: AddressBar) -> ResumeOutcome:
        outcome = await self._resume.run(address_bar)
        if outcome.status is ResumeStatus.RESUMED and outcome.identity is not None:
            try:
                await self.complete_login(outcome.identity)
            except InvalidTransition as exc:
                self._log.warning("identity_resume_ignored", reason=str(exc))
        elif outcome.status is ResumeStatus.FAILED:
            self.login_failed(outcome.error)
        return outcome

    # --- Visitor actions ---

    def start(self) -> None:
        self._apply(transitions.start(self.ctx), "start")

    def browse(self, destination: FlowState) -> None:
        self._apply(transitions.browse(self.ctx, destination), "browse")

    def select_type(self, kind: str) -> None:
        self._apply(transitions.select_type(self.ctx, kind), "select_type")

    def begin_capture(self) -> None:
        self._apply(transitions.begin_capture(self.ctx), "begin_capture")

    def photos_ready(self, photos: list[CapturedPhoto], *, skip: bool = False) -> PhotoSet:
        options = AnalysisOptions(skip=skip)
        photo_set = PhotoSet(flow_id=str(uuid.uuid4()), photos=photos, options=options)
        self._apply(
            transitions.photos_ready(self.ctx, photo_set, options),
            "photos_ready",
        )
        self._drafts.clear(DraftKey.INTAKE)
        self._drafts.clear(DraftKey.ANALYSIS)
        self._drafts.save(DraftKey.PHOTOS, photo_set)
        return photo_set

    def complete_layer(self, answers: IntakeAnswers) -> None:
        self._apply(transitions.intake_layer(self.ctx, answers), "intake_layer")
        if self.ctx.intake is not None:
            self._drafts.save(DraftKey.INTAKE, self.ctx.intake)

    def complete_intake(self) -> None:
        self._apply(transitions.intake_complete(self.ctx), "intake_complete")
        if self.ctx.intake is not None:
            self._drafts.save(DraftKey.INTAKE, self.ctx.intake)

    async def analyze(self) -> bool:
        """Eager analysis while the visitor answers the intake.

        Returns True when an analysis is available afterwards. Failures are
        logged and left for the generating stage to retry.
        """
        if self.ctx.state not in (FlowState.INTAKE, FlowState.IDENTITY_GATE):
            raise InvalidTransition("analyze", self.ctx.state)
        if self.ctx.analysis is not None:
            return True
        try:
            return await self._shared_analysis() is not None
        except AnalysisFailure as exc:
            self._log.warning("eager_analysis_failed", kind=exc.kind.value)
            return False

    async def complete_login(self, identity: IdentityRecord) -> None:
        self._apply(transitions.login_succeeded(self.ctx, identity), "login_succeeded")
        await self._run_generating()

    def login_failed(self, reason: str | None = None) -> None:
        self._log.warning("login_failed", reason=(reason or "")[:200])
        self._apply(transitions.login_failed(self.ctx), "login_failed")
        self._forget_analysis()

    async def send_otp(self, email: str) -> None:
        if "@" not in email:
            raise ValueError("A valid email address is required")
        if self.ctx.state is not FlowState.IDENTITY_GATE:
            raise InvalidTransition("send a login code", self.ctx.state)
        await self._identity.send_otp(email)
        self._log.info("otp_sent")

    async def verify_otp(self, email: str, token: str) -> bool:
        """Complete login with a one-time code; False leaves the visitor at the gate."""
        if len(token.strip()) < 6:
            raise ValueError("The login code must be at least 6 characters")
        if self.ctx.state is not FlowState.IDENTITY_GATE:
            raise InvalidTransition("verify a login code", self.ctx.state)
        result = await self._identity.verify_otp(email, token.strip())
        if not result.ok:
            self._log.warning("otp_verify_failed", error=(result.error or "")[:200])
            return False
        await self.complete_login(result.identity)  # type: ignore[arg-type]
        return True

    async def retry(self) -> None:
        self._apply(transitions.retry(self.ctx), "retry")
        self._forget_analysis()
        if self.ctx.state is FlowState.GENERATING:
            self._drafts.clear(DraftKey.ANALYSIS)
            await self._run_generating()

    def go_home(self) -> None:
        self._apply(transitions.go_home(self.ctx), "go_home")
        self._forget_analysis()

    # --- Internals ---

    def _forget_analysis(self) -> None:
        # In-flight calls are not aborted; their result is dropped by the epoch check.
        self._analysis_task = None
        self._analysis_epoch = None

    async def _shared_analysis(self) -> AnalysisResult | None:
        """Join the in-flight analysis for this traversal or start one."""
        epoch = self.ctx.epoch
        task = self._analysis_task
        if task is None or task.done() or self._analysis_epoch != epoch:
            attempt = self.ctx.last_attempt
            photo_set = self.ctx.photo_set
            options = attempt.options if attempt is not None else AnalysisOptions()
            task = asyncio.create_task(self._analyze_for(epoch, photo_set, options))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            self._analysis_task = task
            self._analysis_epoch = epoch
        # Shielded so one waiter going away does not cancel the shared run.
        return await asyncio.shield(task)

    async def _analyze_for(
        self, epoch: int, photo_set: PhotoSet | None, options: AnalysisOptions
    ) -> AnalysisResult | None:
        try:
            result = await self._analysis.analyze(photo_set, options)
        except AnalysisFailure:
            if not self._is_current(epoch, *transitions.ANALYSIS_STATES):
                self._log.info("stale_analysis_failure_discarded", epoch=epoch)
                return None
            raise
        if not self._is_current(epoch, *transitions.ANALYSIS_STATES):
            self._log.info("stale_analysis_discarded", epoch=epoch, current_epoch=self.ctx.epoch)
            return None
        self._apply(transitions.analysis_succeeded(self.ctx, result), "analysis_succeeded")
        self._drafts.save(DraftKey.ANALYSIS, result)
        return result

    async def _run_generating(self) -> None:
        epoch = self.ctx.epoch

        analysis = self.ctx.analysis
        if analysis is None and self.ctx.photo_set is not None:
            try:
                analysis = await self._shared_analysis()
            except AnalysisFailure as exc:
                if self._is_current(epoch, FlowState.GENERATING):
                    self._apply(transitions.analysis_failed(self.ctx, exc.kind), "analysis_failed")
                return
            if not self._is_current(epoch, FlowState.GENERATING):
                return

        if analysis is not None and not self.ctx.artifacts.settled:
            artifacts = await self._generation.run(self.ctx.photo_set, analysis)
            if not self._is_current(epoch, FlowState.GENERATING):
                self._log.info("stale_artifacts_discarded", epoch=epoch)
                return
            analysis = analysis.model_copy(
                update={
                    "surgical_plan_image": artifacts.plan_image,
                    "simulation_image": artifacts.simulation_image,
                }
            )
            self._apply(transitions.artifacts_settled(self.ctx, artifacts, analysis), "artifacts_settled")
            self._drafts.save(DraftKey.ANALYSIS, analysis)

        if not self._is_current(epoch, FlowState.GENERATING):
            return
        try:
            lead = await self._finalizer.finalize(
                self.ctx.analysis,
                self.ctx.artifacts.simulation_image,
                self.ctx.artifacts.plan_image,
                transitions.merged_intake(self.ctx),
                photo_set=self.ctx.photo_set,
                language=self.ctx.language,
            )
        except FinalizeError as exc:
            self._log.warning("finalize_failed", kind=exc.kind.value, destination=exc.destination.value)
            if self._is_current(epoch, FlowState.GENERATING):
                self._apply(
                    transitions.finalize_failed(self.ctx, exc.kind, exc.destination),
                    "finalize_failed",
                )
            return

        if not self._is_current(epoch, FlowState.GENERATING):
            # Committed regardless; the visitor has already moved on.
            self._log.info("lead_committed_after_navigation", lead_id=lead.id)
            return
        self._apply(transitions.lead_committed(self.ctx, lead), "lead_committed")
