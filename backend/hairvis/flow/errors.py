"""User-facing error taxonomy.

Lower-level failures are pattern-classified into a handful of kinds, each
with localized, non-technical copy. Raw exception text is for logs only.
"""

from __future__ import annotations

import httpx

from hairvis.models.contracts import ErrorKind, FlowError, FlowState
from hairvis.services.base import ServiceError


class AnalysisFailure(Exception):
    """Analysis pipeline failure, already classified."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind


class FinalizeError(Exception):
    """Finalize precondition or commit failure."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind

    @property
    def destination(self) -> FlowState:
        # A missing verification keeps the visitor on their report; every
        # other failure means the flow cannot continue.
        if self.kind in (ErrorKind.VERIFICATION_REQUIRED, ErrorKind.GENERIC):
            return FlowState.RESULT
        return FlowState.LANDING


class InvalidTransition(Exception):
    """A transition was requested from a state that does not allow it."""

    def __init__(self, action: str, state: FlowState) -> None:
        super().__init__(f"Cannot {action} in state '{state.value}'")
        self.action = action
        self.state = state


_MISSING_PATTERNS = ("no photo", "no image", "missing input", "empty photo")
_TOO_LARGE_PATTERNS = ("413", "too large", "payload too large", "request entity")
_UNREACHABLE_PATTERNS = (
    "timeout",
    "timed out",
    "network",
    "connect",
    "failed to fetch",
    "unreachable",
    "dns",
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an arbitrary failure onto the user-facing taxonomy.

    Priority: MissingInput, PayloadTooLarge, Unreachable, Generic.
    """
    if isinstance(exc, AnalysisFailure):
        return exc.kind
    message = str(exc).lower()
    status = getattr(exc, "status_code", None)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code

    if any(p in message for p in _MISSING_PATTERNS):
        return ErrorKind.MISSING_INPUT
    if status == 413 or any(p in message for p in _TOO_LARGE_PATTERNS):
        return ErrorKind.PAYLOAD_TOO_LARGE
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return ErrorKind.UNREACHABLE
    if isinstance(exc, ServiceError) and status is not None and status in (502, 503, 504):
        return ErrorKind.UNREACHABLE
    if any(p in message for p in _UNREACHABLE_PATTERNS):
        return ErrorKind.UNREACHABLE
    return ErrorKind.GENERIC


_MESSAGES: dict[str, dict[ErrorKind, str]] = {
    "EN": {
        ErrorKind.MISSING_INPUT: "We couldn't find your photos. Please retake the scan.",
        ErrorKind.PAYLOAD_TOO_LARGE: "Your photos are too large to upload. Please retake them.",
        ErrorKind.UNREACHABLE: "We couldn't reach our servers. Check your connection and retry.",
        ErrorKind.GENERIC: "Something went wrong while preparing your report. Please retry.",
        ErrorKind.MISSING_ANALYSIS: "Your analysis is no longer available. Please start again.",
        ErrorKind.MISSING_INTAKE: "Your answers are no longer available. Please start again.",
        ErrorKind.VERIFICATION_REQUIRED: "Please verify your email to share your report with clinics.",
        ErrorKind.AUTH_FAILED: "Sign-in failed. Please start again.",
    },
    "TR": {
        ErrorKind.MISSING_INPUT: "Fotoğraflarınızı bulamadık. Lütfen taramayı tekrarlayın.",
        ErrorKind.PAYLOAD_TOO_LARGE: "Fotoğraflarınız yüklenemeyecek kadar büyük. Lütfen tekrar çekin.",
        ErrorKind.UNREACHABLE: "Sunucularımıza ulaşamadık. Bağlantınızı kontrol edip tekrar deneyin.",
        ErrorKind.GENERIC: "Raporunuz hazırlanırken bir sorun oluştu. Lütfen tekrar deneyin.",
        ErrorKind.MISSING_ANALYSIS: "Analiziniz artık mevcut değil. Lütfen baştan başlayın.",
        ErrorKind.MISSING_INTAKE: "Yanıtlarınız artık mevcut değil. Lütfen baştan başlayın.",
        ErrorKind.VERIFICATION_REQUIRED: "Raporunuzu kliniklerle paylaşmak için e-postanızı doğrulayın.",
        ErrorKind.AUTH_FAILED: "Giriş başarısız oldu. Lütfen baştan başlayın.",
    },
}

_RETRYABLE = frozenset(
    {
        ErrorKind.PAYLOAD_TOO_LARGE,
        ErrorKind.UNREACHABLE,
        ErrorKind.GENERIC,
        ErrorKind.VERIFICATION_REQUIRED,
    }
)


def user_message(kind: ErrorKind, language: str = "EN") -> str:
    table = _MESSAGES.get(language.upper(), _MESSAGES["EN"])
    return table[kind]


def flow_error(kind: ErrorKind, language: str = "EN") -> FlowError:
    return FlowError(kind=kind, message=user_message(kind, language), retryable=kind in _RETRYABLE)
