"""Collaborator interfaces consumed by the flow core.

The core never imports a concrete backend. Adapters in this package
(gemini, edge, supabase_backend, mock_stubs) implement these protocols and
translate their library exceptions into ``ServiceError``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from hairvis.models.contracts import AnalysisResult, IdentityRecord, LeadRecord


class ServiceError(Exception):
    """Remote collaborator failure, optionally carrying an HTTP-like status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DuplicateLeadError(ServiceError):
    """The lead store already holds a record with this id."""


class AnalysisService(Protocol):
    async def analyze(self, images: dict[str, str]) -> AnalysisResult: ...


class GenerationService(Protocol):
    async def generate_plan_image(self, photo: str, analysis: AnalysisResult) -> str: ...

    async def generate_simulation_image(
        self, photo: str, plan_image: str | None, analysis: AnalysisResult
    ) -> str: ...


class ExchangeResult:
    """Outcome of a callback exchange: an identity or an error message."""

    def __init__(self, identity: IdentityRecord | None = None, error: str | None = None) -> None:
        self.identity = identity
        self.error = error

    @property
    def ok(self) -> bool:
        return self.identity is not None and self.error is None


class IdentityProvider(Protocol):
    async def exchange_callback(self, code: str) -> ExchangeResult: ...

    def on_session_change(
        self, callback: Callable[[str, IdentityRecord | None], None]
    ) -> Callable[[], None]: ...

    async def send_otp(self, email: str) -> None: ...

    async def verify_otp(self, email: str, token: str) -> ExchangeResult: ...


class LeadStore(Protocol):
    async def insert(self, lead: LeadRecord) -> None: ...


class ActivityLogger(Protocol):
    async def log_operation(
        self,
        *,
        type: str,
        input: dict[str, Any],
        output: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
    ) -> None: ...
