"""Per-tab flow sessions and collaborator wiring.

A session models one browser tab: its draft medium survives page loads,
while each page load gets a fresh ``FlowOrchestrator`` (in-memory state
is lost on reload, exactly as in the browser). Collaborators are chosen
from settings: ``mock`` for development, ``gemini``/``edge`` and
``supabase`` for real backends.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import structlog

from hairvis.config import settings
from hairvis.flow.analysis import AnalysisPipeline
from hairvis.flow.drafts import DraftStore, FileMedium, MemoryMedium, PersistenceMedium
from hairvis.flow.finalizer import LeadFinalizer
from hairvis.flow.generation import GenerationPipeline
from hairvis.flow.orchestrator import FlowOrchestrator
from hairvis.models.contracts import IdentityRecord
from hairvis.services.base import (
    ActivityLogger,
    AnalysisService,
    GenerationService,
    IdentityProvider,
    LeadStore,
)

logger = structlog.get_logger()


@dataclass
class Collaborators:
    analysis: AnalysisService
    generation: GenerationService
    identity: IdentityProvider
    lead_store: LeadStore
    activity_factory: Callable[[str], ActivityLogger | None]


def build_collaborators() -> Collaborators:
    """Instantiate the configured backends. Imports are lazy per backend."""
    backend = settings.service_backend.lower()
    if backend == "gemini":
        from hairvis.services.gemini import GeminiAnalysisService, GeminiGenerationService

        analysis: AnalysisService = GeminiAnalysisService()
        generation: GenerationService = GeminiGenerationService()
    elif backend == "edge":
        from hairvis.services.edge import EdgeAnalysisService, EdgeGenerationService

        analysis = EdgeAnalysisService()
        generation = EdgeGenerationService()
    elif backend == "mock":
        from hairvis.services.mock_stubs import MockAnalysisService, MockGenerationService

        analysis = MockAnalysisService()
        generation = MockGenerationService()
    else:
        raise ValueError(f"Unknown SERVICE_BACKEND {settings.service_backend!r}")

    identity_backend = settings.identity_backend.lower()
    if identity_backend == "supabase":
        from hairvis.services.supabase_backend import (
            SupabaseActivityLogger,
            SupabaseIdentityProvider,
            SupabaseLeadStore,
        )

        return Collaborators(
            analysis=analysis,
            generation=generation,
            identity=SupabaseIdentityProvider(),
            lead_store=SupabaseLeadStore(),
            activity_factory=lambda session_id: SupabaseActivityLogger(session_id=session_id),
        )
    if identity_backend == "mock":
        from hairvis.services.mock_stubs import (
            InMemoryActivityLogger,
            InMemoryLeadStore,
            MockIdentityProvider,
        )

        return Collaborators(
            analysis=analysis,
            generation=generation,
            identity=MockIdentityProvider(),
            lead_store=InMemoryLeadStore(),
            activity_factory=lambda _session_id: InMemoryActivityLogger(),
        )
    raise ValueError(f"Unknown IDENTITY_BACKEND {settings.identity_backend!r}")


@dataclass
class FlowSession:
    session_id: str
    language: str
    medium: PersistenceMedium
    orchestrator: FlowOrchestrator
    unsubscribe: Callable[[], None] | None = None
    page_loads: int = field(default=0)


class SessionRegistry:
    def __init__(self, collaborators: Collaborators) -> None:
        self._collaborators = collaborators
        self._sessions: dict[str, FlowSession] = {}

    @property
    def collaborators(self) -> Collaborators:
        return self._collaborators

    def _medium(self, session_id: str) -> PersistenceMedium:
        if settings.draft_dir:
            return FileMedium(Path(settings.draft_dir) / session_id, settings.draft_quota_bytes)
        return MemoryMedium(settings.draft_quota_bytes)

    def _orchestrator(self, session_id: str, medium: PersistenceMedium, language: str) -> FlowOrchestrator:
        c = self._collaborators
        activity = c.activity_factory(session_id)
        drafts = DraftStore(medium)
        return FlowOrchestrator(
            drafts,
            AnalysisPipeline(c.analysis, activity),
            GenerationPipeline(c.generation, activity),
            LeadFinalizer(c.lead_store, drafts, activity=activity, price=settings.lead_price),
            c.identity,
            language=language,
            eager_analysis=settings.eager_analysis,
            session_id=session_id,
        )

    def create(self, language: str | None = None) -> FlowSession:
        session_id = str(uuid.uuid4())
        language = (language or settings.default_language).upper()
        medium = self._medium(session_id)
        session = FlowSession(
            session_id=session_id,
            language=language,
            medium=medium,
            orchestrator=self._orchestrator(session_id, medium, language),
        )

        def _on_session_change(event: str, identity: IdentityRecord | None) -> None:
            logger.info(
                "identity_session_event",
                session_id=session_id,
                auth_event=event,
                signed_in=identity is not None,
            )

        session.unsubscribe = self._collaborators.identity.on_session_change(_on_session_change)
        self._sessions[session_id] = session
        logger.info("session_created", session_id=session_id, language=language)
        return session

    def get(self, session_id: str) -> FlowSession | None:
        return self._sessions.get(session_id)

    def reload(self, session_id: str) -> FlowSession | None:
        """Simulate a page load: fresh in-memory orchestrator, same drafts."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.page_loads > 0:
            session.orchestrator.close()
            session.orchestrator = self._orchestrator(session_id, session.medium, session.language)
        session.page_loads += 1
        return session

    def discard(self, session_id: str) -> bool:
        """Tab closed: drop the session and its drafts."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.unsubscribe is not None:
            session.unsubscribe()
        if isinstance(session.medium, FileMedium):
            session.medium.discard()
        logger.info("session_discarded", session_id=session_id)
        return True

    def __len__(self) -> int:
        return len(self._sessions)


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry(build_collaborators())
