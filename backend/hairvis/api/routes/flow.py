"""Visitor flow API: one session per browser tab.

Each endpoint is a thin adapter over a ``FlowOrchestrator`` action and
returns the resulting ``FlowSnapshot``. Wrong-state actions map to 409,
collaborator outages to 502; flow-level failures (analysis, finalize) are
not HTTP errors, they are part of the snapshot (``error``, ``can_retry``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from hairvis.flow.errors import InvalidTransition
from hairvis.flow.identity import PageAddress
from hairvis.models.contracts import (
    ActionResponse,
    BrowseRequest,
    CreateSessionRequest,
    CreateSessionResponse,
    ErrorResponse,
    FlowSnapshot,
    IntakeLayerRequest,
    LoginFailedRequest,
    OtpSendRequest,
    OtpVerifyRequest,
    PageLoadRequest,
    PageLoadResponse,
    PhotosReadyRequest,
    SelectTypeRequest,
)
from hairvis.services.base import ServiceError
from hairvis.sessions import FlowSession, SessionRegistry, get_registry
from hairvis.utils.image import InvalidImageError, validate_photo

logger = structlog.get_logger()

router = APIRouter(tags=["sessions"])

# Strong references to eager-analysis tasks to prevent GC before completion
_background_tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]

_NOT_FOUND = ("session_not_found", "Session not found")


def _error(status: int, code: str, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


def _snapshot(session: FlowSession) -> FlowSnapshot:
    return session.orchestrator.snapshot()


async def _run_action(
    registry: SessionRegistry,
    session_id: str,
    action: Callable[[FlowSession], Any | Awaitable[Any]],
) -> FlowSnapshot | JSONResponse:
    """Resolve the session, run the action, translate expected failures."""
    session = registry.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    try:
        result = action(session)
        if asyncio.iscoroutine(result):
            await result
    except InvalidTransition as exc:
        return _error(409, "wrong_state", str(exc))
    except ValueError as exc:
        return _error(422, "invalid_input", str(exc))
    except ServiceError as exc:
        logger.error("collaborator_unavailable", session_id=session_id, error=str(exc)[:300])
        return _error(502, "service_unavailable", "A backend service is unavailable", retryable=True)
    return _snapshot(session)


def _spawn_eager_analysis(session: FlowSession) -> None:
    orchestrator = session.orchestrator

    async def _run() -> None:
        try:
            await orchestrator.analyze()
        except InvalidTransition as exc:
            logger.info("eager_analysis_skipped", session_id=session.session_id, reason=str(exc))

    task = asyncio.create_task(_run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


# --- Session lifecycle ---


@router.post("/sessions", status_code=201, response_model=CreateSessionResponse)
async def create_session(
    body: CreateSessionRequest, registry: SessionRegistry = Depends(get_registry)
) -> CreateSessionResponse:
    session = registry.create(body.language)
    return CreateSessionResponse(session_id=session.session_id)


@router.delete(
    "/sessions/{session_id}",
    response_model=ActionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_session(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> ActionResponse | JSONResponse:
    if not registry.discard(session_id):
        return _error(404, *_NOT_FOUND)
    return ActionResponse()


@router.get(
    "/sessions/{session_id}",
    response_model=FlowSnapshot,
    responses={404: {"model": ErrorResponse}},
)
async def get_snapshot(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> FlowSnapshot | JSONResponse:
    session = registry.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    return _snapshot(session)


@router.post(
    "/sessions/{session_id}/page-load",
    response_model=PageLoadResponse,
    responses={404: {"model": ErrorResponse}},
)
async def page_load(
    session_id: str, body: PageLoadRequest, registry: SessionRegistry = Depends(get_registry)
) -> PageLoadResponse | JSONResponse:
    """Restore drafts, then complete any pending login in the address."""
    session = registry.reload(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    address = PageAddress(body.address)
    try:
        await session.orchestrator.load_page(address)
    except ServiceError as exc:
        logger.error("page_load_failed", session_id=session_id, error=str(exc)[:300])
        return _error(502, "service_unavailable", "A backend service is unavailable", retryable=True)
    return PageLoadResponse(address=address.get(), snapshot=_snapshot(session))


# --- Flow actions ---


@router.post("/sessions/{session_id}/start", response_model=FlowSnapshot)
async def start(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.start())


@router.post("/sessions/{session_id}/type", response_model=FlowSnapshot)
async def select_type(
    session_id: str, body: SelectTypeRequest, registry: SessionRegistry = Depends(get_registry)
):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.select_type(body.type))


@router.post("/sessions/{session_id}/browse", response_model=FlowSnapshot)
async def browse(
    session_id: str, body: BrowseRequest, registry: SessionRegistry = Depends(get_registry)
):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.browse(body.destination))


@router.post("/sessions/{session_id}/capture", response_model=FlowSnapshot)
async def begin_capture(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.begin_capture())


@router.post(
    "/sessions/{session_id}/photos",
    response_model=FlowSnapshot,
    responses={404: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
)
async def photos_ready(
    session_id: str, body: PhotosReadyRequest, registry: SessionRegistry = Depends(get_registry)
):
    """Submit the captured photo set; kicks off eager analysis when enabled."""
    for index, photo in enumerate(body.photos):
        try:
            await asyncio.to_thread(validate_photo, photo.data)
        except InvalidImageError as exc:
            if "too large" in str(exc):
                return _error(413, "photo_too_large", str(exc))
            return _error(422, "invalid_photo", f"Photo {index} ({photo.role}): {exc}")

    def _submit(session: FlowSession) -> None:
        session.orchestrator.photos_ready(body.photos, skip=body.skip)
        if session.orchestrator.eager_analysis:
            _spawn_eager_analysis(session)

    return await _run_action(registry, session_id, _submit)


@router.post("/sessions/{session_id}/intake/layers", response_model=FlowSnapshot)
async def intake_layer(
    session_id: str, body: IntakeLayerRequest, registry: SessionRegistry = Depends(get_registry)
):
    logger.info("intake_layer_received", session_id=session_id, layer=body.layer)
    return await _run_action(
        registry, session_id, lambda s: s.orchestrator.complete_layer(body.answers)
    )


@router.post("/sessions/{session_id}/intake/complete", response_model=FlowSnapshot)
async def intake_complete(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.complete_intake())


@router.post("/sessions/{session_id}/analysis", response_model=FlowSnapshot)
async def analyze(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Run (or join) the analysis now; failures are left for the generating stage."""
    return await _run_action(registry, session_id, lambda s: s.orchestrator.analyze())


@router.post("/sessions/{session_id}/otp/send", response_model=FlowSnapshot)
async def send_otp(
    session_id: str, body: OtpSendRequest, registry: SessionRegistry = Depends(get_registry)
):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.send_otp(body.email))


@router.post(
    "/sessions/{session_id}/otp/verify",
    response_model=FlowSnapshot,
    responses={401: {"model": ErrorResponse}},
)
async def verify_otp(
    session_id: str, body: OtpVerifyRequest, registry: SessionRegistry = Depends(get_registry)
):
    """Verify a login code; on success the flow runs through to the result."""
    verified: list[bool] = []

    async def _verify(session: FlowSession) -> None:
        verified.append(await session.orchestrator.verify_otp(body.email, body.token))

    result = await _run_action(registry, session_id, _verify)
    if verified and not verified[0]:
        return _error(401, "invalid_code", "The login code is invalid or expired", retryable=True)
    return result


@router.post("/sessions/{session_id}/login-failed", response_model=FlowSnapshot)
async def login_failed(
    session_id: str, body: LoginFailedRequest, registry: SessionRegistry = Depends(get_registry)
):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.login_failed(body.reason))


@router.post("/sessions/{session_id}/retry", response_model=FlowSnapshot)
async def retry(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.retry())


@router.post("/sessions/{session_id}/home", response_model=FlowSnapshot)
async def go_home(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return await _run_action(registry, session_id, lambda s: s.orchestrator.go_home())
