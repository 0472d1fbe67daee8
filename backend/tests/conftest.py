"""Shared fixtures: flow harness and an ASGI client over mock collaborators."""

import pytest
from httpx import ASGITransport, AsyncClient

from hairvis.main import app
from hairvis.services.mock_stubs import (
    InMemoryActivityLogger,
    InMemoryLeadStore,
    MockAnalysisService,
    MockGenerationService,
    MockIdentityProvider,
)
from hairvis.sessions import Collaborators, SessionRegistry, get_registry
from tests.fakes import FlowHarness


@pytest.fixture
def harness() -> FlowHarness:
    return FlowHarness()


@pytest.fixture
def mock_registry() -> SessionRegistry:
    return SessionRegistry(
        Collaborators(
            analysis=MockAnalysisService(),
            generation=MockGenerationService(),
            identity=MockIdentityProvider(),
            lead_store=InMemoryLeadStore(),
            activity_factory=lambda _session_id: InMemoryActivityLogger(),
        )
    )


@pytest.fixture
async def client(mock_registry):
    app.dependency_overrides[get_registry] = lambda: mock_registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
