"""Tests for the error classifier and localized messages."""

import httpx
import pytest

from hairvis.flow.errors import (
    AnalysisFailure,
    FinalizeError,
    classify_error,
    flow_error,
    user_message,
)
from hairvis.models.contracts import ErrorKind, FlowState
from hairvis.services.base import ServiceError


class TestClassifyError:
    """MissingInput > PayloadTooLarge > Unreachable > Generic."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ValueError("no photos provided"), ErrorKind.MISSING_INPUT),
            (ServiceError("no images provided for analysis"), ErrorKind.MISSING_INPUT),
            (ServiceError("upload rejected", status_code=413), ErrorKind.PAYLOAD_TOO_LARGE),
            (ServiceError("Request Entity Too Large"), ErrorKind.PAYLOAD_TOO_LARGE),
            (TimeoutError(), ErrorKind.UNREACHABLE),
            (ConnectionError("reset by peer"), ErrorKind.UNREACHABLE),
            (httpx.ConnectError("boom"), ErrorKind.UNREACHABLE),
            (ServiceError("bad gateway", status_code=502), ErrorKind.UNREACHABLE),
            (RuntimeError("Failed to fetch"), ErrorKind.UNREACHABLE),
            (ServiceError("model refused", status_code=400), ErrorKind.GENERIC),
            (KeyError("diagnosis"), ErrorKind.GENERIC),
        ],
    )
    def test_classification(self, exc, expected):
        assert classify_error(exc) is expected

    def test_missing_beats_too_large(self):
        assert classify_error(ServiceError("empty photo, 413")) is ErrorKind.MISSING_INPUT

    def test_too_large_beats_unreachable(self):
        exc = ServiceError("payload too large, connection closed", status_code=413)
        assert classify_error(exc) is ErrorKind.PAYLOAD_TOO_LARGE

    def test_http_status_error(self):
        request = httpx.Request("POST", "https://edge.test/functions/v1/analyze-scalp")
        response = httpx.Response(413, request=request)
        exc = httpx.HTTPStatusError("rejected", request=request, response=response)
        assert classify_error(exc) is ErrorKind.PAYLOAD_TOO_LARGE

    def test_already_classified(self):
        assert classify_error(AnalysisFailure(ErrorKind.UNREACHABLE)) is ErrorKind.UNREACHABLE


class TestMessages:
    """Every kind has non-technical copy in every language."""

    @pytest.mark.parametrize("language", ["EN", "TR"])
    def test_every_kind_has_copy(self, language):
        for kind in ErrorKind:
            assert user_message(kind, language)

    def test_unknown_language_falls_back_to_english(self):
        assert user_message(ErrorKind.GENERIC, "xx") == user_message(ErrorKind.GENERIC, "EN")

    def test_language_is_case_insensitive(self):
        assert user_message(ErrorKind.GENERIC, "tr") == user_message(ErrorKind.GENERIC, "TR")

    def test_flow_error_retryable(self):
        assert flow_error(ErrorKind.UNREACHABLE).retryable
        assert not flow_error(ErrorKind.MISSING_INPUT).retryable
        assert not flow_error(ErrorKind.AUTH_FAILED).retryable


class TestFinalizeErrorDestination:
    """Cannot-continue kinds go to landing; handoff kinds stay on the report."""

    @pytest.mark.parametrize(
        "kind, destination",
        [
            (ErrorKind.MISSING_ANALYSIS, FlowState.LANDING),
            (ErrorKind.MISSING_INTAKE, FlowState.LANDING),
            (ErrorKind.VERIFICATION_REQUIRED, FlowState.RESULT),
            (ErrorKind.GENERIC, FlowState.RESULT),
        ],
    )
    def test_destination(self, kind, destination):
        assert FinalizeError(kind).destination is destination
