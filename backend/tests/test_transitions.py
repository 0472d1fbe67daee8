"""Tests for the pure transition functions."""

import pytest

from hairvis.flow import transitions
from hairvis.flow.errors import InvalidTransition, flow_error
from hairvis.models.contracts import (
    AnalysisOptions,
    ArtifactFailed,
    ArtifactOk,
    ArtifactSet,
    CapturedPhoto,
    ConsentContact,
    ErrorKind,
    FlowContext,
    FlowState,
    IntakeAnswers,
    LastAttempt,
    PhotoSet,
)
from tests.fakes import UNVERIFIED, VERIFIED, make_analysis

PHOTOS = PhotoSet(flow_id="flow-1", photos=[CapturedPhoto(role="front", data="x")])


def _at(state: FlowState, **fields) -> FlowContext:
    return FlowContext(state=state, **fields)


class TestEntryPath:
    """Landing through capture."""

    def test_happy_path_states(self):
        ctx = transitions.start(FlowContext())
        assert ctx.state is FlowState.TYPE_SELECT
        ctx = transitions.select_type(ctx, "hair")
        assert ctx.state is FlowState.PRE_SCAN
        ctx = transitions.begin_capture(ctx)
        assert ctx.state is FlowState.CAPTURING

    def test_other_types_stay_put(self):
        ctx = _at(FlowState.TYPE_SELECT)
        assert transitions.select_type(ctx, "beard").state is FlowState.TYPE_SELECT

    def test_start_from_wrong_state(self):
        with pytest.raises(InvalidTransition):
            transitions.start(_at(FlowState.INTAKE))

    def test_start_clears_error(self):
        ctx = transitions.login_failed(_at(FlowState.IDENTITY_GATE))
        assert transitions.start(ctx).error is None

    def test_input_is_not_mutated(self):
        ctx = FlowContext()
        transitions.start(ctx)
        assert ctx.state is FlowState.LANDING


class TestBrowse:
    """Auxiliary marketplace states hang off landing."""

    def test_from_landing(self):
        assert transitions.browse(FlowContext(), FlowState.DIRECTORY).state is FlowState.DIRECTORY

    def test_between_browsing_states(self):
        ctx = _at(FlowState.DIRECTORY)
        assert transitions.browse(ctx, FlowState.CLINIC_DETAILS).state is FlowState.CLINIC_DETAILS

    def test_not_into_flow_states(self):
        with pytest.raises(InvalidTransition):
            transitions.browse(FlowContext(), FlowState.GENERATING)

    def test_not_from_mid_flow(self):
        with pytest.raises(InvalidTransition):
            transitions.browse(_at(FlowState.INTAKE), FlowState.BLOG)


class TestPhotosReady:
    """A new capture starts a new traversal."""

    def test_bumps_epoch_and_resets(self):
        ctx = _at(
            FlowState.CAPTURING,
            epoch=4,
            analysis=make_analysis(),
            intake=IntakeAnswers(goal="x"),
            artifacts=ArtifactSet(plan=ArtifactOk(image="p"), simulation=ArtifactOk(image="s")),
        )
        ctx = transitions.photos_ready(ctx, PHOTOS, AnalysisOptions(skip=True))
        assert ctx.state is FlowState.INTAKE
        assert ctx.epoch == 5
        assert ctx.analysis is None
        assert ctx.intake is None
        assert not ctx.artifacts.settled
        assert ctx.last_attempt == LastAttempt(photo_set=PHOTOS, options=AnalysisOptions(skip=True))


class TestIntake:
    """Layer merging and completion."""

    def test_layers_merge(self):
        ctx = _at(FlowState.INTAKE)
        ctx = transitions.intake_layer(ctx, IntakeAnswers(gender="Male", age_range="25-34"))
        ctx = transitions.intake_layer(ctx, IntakeAnswers(goal="density", age_range="35-44"))
        assert ctx.intake == IntakeAnswers(gender="Male", age_range="35-44", goal="density")

    def test_questionnaire_cannot_set_consent(self):
        answers = IntakeAnswers(goal="x", consent=ConsentContact(verified=True))
        ctx = transitions.intake_layer(_at(FlowState.INTAKE), answers)
        assert ctx.intake.consent is None

    def test_complete_without_answers(self):
        ctx = transitions.intake_complete(_at(FlowState.INTAKE))
        assert ctx.state is FlowState.IDENTITY_GATE
        assert ctx.intake == IntakeAnswers()


class TestLogin:
    """Gate exits."""

    def test_success_enters_generating(self):
        ctx = transitions.login_succeeded(_at(FlowState.IDENTITY_GATE), VERIFIED)
        assert ctx.state is FlowState.GENERATING
        assert ctx.identity == VERIFIED

    def test_success_from_landing_after_reload(self):
        assert transitions.login_succeeded(FlowContext(), VERIFIED).state is FlowState.GENERATING

    def test_not_twice(self):
        with pytest.raises(InvalidTransition):
            transitions.login_succeeded(_at(FlowState.GENERATING), VERIFIED)

    def test_failure_routes_to_landing(self):
        ctx = transitions.login_failed(_at(FlowState.IDENTITY_GATE, epoch=2, identity=VERIFIED))
        assert ctx.state is FlowState.LANDING
        assert ctx.epoch == 3
        assert ctx.identity is None
        assert ctx.error.kind is ErrorKind.AUTH_FAILED


class TestMergedIntake:
    """Identity becomes consent at finalize time."""

    def test_attaches_consent(self):
        ctx = _at(FlowState.GENERATING, intake=IntakeAnswers(goal="x"), identity=UNVERIFIED)
        merged = transitions.merged_intake(ctx)
        assert merged.consent.contact_method == "email"
        assert merged.consent.contact_value == "ada@example.com"
        assert merged.consent.verified is False
        assert ctx.intake.consent is None

    def test_no_intake(self):
        assert transitions.merged_intake(_at(FlowState.GENERATING, identity=VERIFIED)) is None


class TestResultAndRetry:
    """Result-screen exits."""

    def test_analysis_failed(self):
        ctx = transitions.analysis_failed(_at(FlowState.GENERATING), ErrorKind.UNREACHABLE)
        assert ctx.state is FlowState.RESULT
        assert ctx.error.retryable

    def test_finalize_failed_to_landing_bumps_epoch(self):
        ctx = transitions.finalize_failed(
            _at(FlowState.GENERATING, epoch=1, identity=VERIFIED),
            ErrorKind.MISSING_ANALYSIS,
            FlowState.LANDING,
        )
        assert ctx.state is FlowState.LANDING
        assert ctx.epoch == 2
        assert ctx.identity is None

    def test_finalize_failed_to_result_keeps_identity(self):
        ctx = transitions.finalize_failed(
            _at(FlowState.GENERATING, epoch=1, identity=UNVERIFIED),
            ErrorKind.VERIFICATION_REQUIRED,
            FlowState.RESULT,
        )
        assert ctx.state is FlowState.RESULT
        assert ctx.epoch == 1
        assert ctx.identity == UNVERIFIED

    def test_retry_restores_last_attempt(self):
        ctx = _at(
            FlowState.RESULT,
            epoch=7,
            photo_set=None,
            analysis=make_analysis(),
            artifacts=ArtifactSet(plan=ArtifactFailed(reason="generic"), simulation=ArtifactOk(image="s")),
            last_attempt=LastAttempt(photo_set=PHOTOS),
            error=flow_error(ErrorKind.GENERIC),
        )
        ctx = transitions.retry(ctx)
        assert ctx.state is FlowState.GENERATING
        assert ctx.epoch == 8
        assert ctx.photo_set == PHOTOS
        assert ctx.analysis is None
        assert not ctx.artifacts.settled
        assert ctx.error is None

    def test_retry_without_photos(self):
        ctx = _at(FlowState.RESULT, error=flow_error(ErrorKind.GENERIC))
        ctx = transitions.retry(ctx)
        assert ctx.state is FlowState.RESULT
        assert ctx.error.kind is ErrorKind.MISSING_INPUT

    def test_retry_requires_error(self):
        with pytest.raises(InvalidTransition):
            transitions.retry(_at(FlowState.RESULT))

    def test_go_home_from_anywhere(self):
        ctx = transitions.go_home(_at(FlowState.GENERATING, epoch=3, photo_set=PHOTOS))
        assert ctx.state is FlowState.LANDING
        assert ctx.epoch == 4
        assert ctx.photo_set == PHOTOS


class TestRestored:
    """Rehydration lands on landing with warm caches."""

    def test_restores_artifacts_from_analysis(self):
        analysis = make_analysis().model_copy(
            update={"surgical_plan_image": "p", "simulation_image": "s"}
        )
        ctx = transitions.restored(FlowContext(), PHOTOS, IntakeAnswers(goal="x"), analysis)
        assert ctx.state is FlowState.LANDING
        assert ctx.artifacts.plan_image == "p"
        assert ctx.last_attempt.photo_set == PHOTOS

    def test_partial_artifacts_are_not_settled(self):
        analysis = make_analysis().model_copy(update={"simulation_image": "s"})
        ctx = transitions.restored(FlowContext(), PHOTOS, None, analysis)
        assert not ctx.artifacts.settled

    def test_nothing_to_restore(self):
        ctx = transitions.restored(FlowContext(), None, None, None)
        assert ctx.last_attempt is None

    def test_restores_capture_options(self):
        photos = PHOTOS.model_copy(update={"options": AnalysisOptions(skip=True)})
        ctx = transitions.restored(FlowContext(), photos, None, None)
        assert ctx.last_attempt.options.skip is True
