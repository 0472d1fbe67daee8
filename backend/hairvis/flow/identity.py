"""One-shot completion of a redirect-based login.

detect -> consume-once -> scrub. The page address is inspected for an
authorization code (query), an error indicator, or implicit-grant token
fragments. A code is exchanged at most once per protocol instance, and
every auth artifact is removed from the visible address once the attempt
finishes, so a user-initiated reload never replays the exchange.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from hairvis.models.contracts import IdentityRecord
from hairvis.services.base import ExchangeResult, IdentityProvider, ServiceError

logger = structlog.get_logger()

_QUERY_ARTIFACTS = frozenset({"code", "error", "error_code", "error_description", "state"})
_FRAGMENT_ARTIFACTS = frozenset(
    {
        "access_token",
        "refresh_token",
        "expires_in",
        "expires_at",
        "token_type",
        "type",
        "provider_token",
        "provider_refresh_token",
        "error",
        "error_code",
        "error_description",
    }
)


class ResumePhase(StrEnum):
    IDLE = "idle"
    RESUMING = "resuming"


class ResumeStatus(StrEnum):
    NOTHING = "nothing"  # clean address
    SCRUBBED = "scrubbed"  # stray artifacts removed, no exchange
    DUPLICATE = "duplicate"  # code already consumed by this page
    BUSY = "busy"  # another resume is in flight
    RESUMED = "resumed"
    FAILED = "failed"


@dataclass(frozen=True)
class CallbackArtifacts:
    code: str | None
    error: str | None
    has_tokens: bool
    scrubbed_address: str

    @property
    def present(self) -> bool:
        return self.code is not None or self.error is not None or self.has_tokens


@dataclass(frozen=True)
class ResumeOutcome:
    status: ResumeStatus
    identity: IdentityRecord | None = None
    error: str | None = None


class AddressBar(Protocol):
    def get(self) -> str: ...

    def replace(self, address: str) -> None: ...


class PageAddress:
    """In-memory address bar; ``replace`` mirrors history.replaceState."""

    def __init__(self, address: str) -> None:
        self._address = address

    def get(self) -> str:
        return self._address

    def replace(self, address: str) -> None:
        self._address = address


def _split_fragment(fragment: str) -> list[tuple[str, str]] | None:
    """Fragment as key/value pairs, or None when it is a plain anchor."""
    if "=" not in fragment:
        return None
    return parse_qsl(fragment, keep_blank_values=True)


def parse_callback(address: str) -> CallbackArtifacts:
    parts = urlsplit(address)
    query = parse_qsl(parts.query, keep_blank_values=True)
    fragment_pairs = _split_fragment(parts.fragment)

    query_map = dict(query)
    fragment_map = dict(fragment_pairs or [])

    code = query_map.get("code") or None
    error = (
        query_map.get("error")
        or query_map.get("error_description")
        or fragment_map.get("error")
        or fragment_map.get("error_description")
        or None
    )
    has_tokens = "access_token" in fragment_map or "refresh_token" in fragment_map

    kept_query = [(k, v) for k, v in query if k not in _QUERY_ARTIFACTS]
    if fragment_pairs is None:
        kept_fragment = parts.fragment
    else:
        kept_fragment = urlencode([(k, v) for k, v in fragment_pairs if k not in _FRAGMENT_ARTIFACTS])

    scrubbed = urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(kept_query), kept_fragment)
    )
    return CallbackArtifacts(
        code=code,
        error=error,
        has_tokens=has_tokens,
        scrubbed_address=scrubbed,
    )


class IdentityResume:
    """Two-phase (idle/resuming) protocol with a consumed-code guard."""

    def __init__(self, provider: IdentityProvider, ready: asyncio.Event) -> None:
        self._provider = provider
        self._ready = ready
        self._consumed: set[str] = set()
        self.phase = ResumePhase.IDLE

    async def run(self, address_bar: AddressBar) -> ResumeOutcome:
        # Drafts must be rehydrated before a resume can finalize against them.
        await self._ready.wait()

        if self.phase is ResumePhase.RESUMING:
            logger.warning("identity_resume_already_running")
            return ResumeOutcome(ResumeStatus.BUSY)

        artifacts = parse_callback(address_bar.get())
        if not artifacts.present:
            return ResumeOutcome(ResumeStatus.NOTHING)

        if artifacts.code is None:
            address_bar.replace(artifacts.scrubbed_address)
            if artifacts.error is not None:
                logger.warning("identity_callback_error", error=artifacts.error[:200])
                return ResumeOutcome(ResumeStatus.FAILED, error=artifacts.error)
            logger.info("identity_stray_artifacts_scrubbed", had_tokens=artifacts.has_tokens)
            return ResumeOutcome(ResumeStatus.SCRUBBED)

        if artifacts.code in self._consumed:
            address_bar.replace(artifacts.scrubbed_address)
            logger.warning("identity_code_already_consumed")
            return ResumeOutcome(ResumeStatus.DUPLICATE)

        self._consumed.add(artifacts.code)
        self.phase = ResumePhase.RESUMING
        logger.info("identity_exchange_start")
        try:
            result = await self._provider.exchange_callback(artifacts.code)
        except ServiceError as exc:
            logger.error("identity_exchange_failed", error=str(exc), status=exc.status_code)
            result = ExchangeResult(error=str(exc))
        finally:
            address_bar.replace(artifacts.scrubbed_address)
            self.phase = ResumePhase.IDLE

        if not result.ok:
            return ResumeOutcome(ResumeStatus.FAILED, error=result.error)

        logger.info("identity_exchange_complete", verified=result.identity.verified)  # type: ignore[union-attr]
        return ResumeOutcome(ResumeStatus.RESUMED, identity=result.identity)
