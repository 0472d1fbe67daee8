"""Supabase-backed lead store, activity log and identity provider.

supabase-py's client is synchronous; calls run in a worker thread so the
event loop never blocks on PostgREST or GoTrue round trips.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import httpx
import structlog
from supabase import AuthError, Client, PostgrestAPIError, create_client

from hairvis.config import settings
from hairvis.models.contracts import IdentityRecord, LeadRecord
from hairvis.services.base import DuplicateLeadError, ExchangeResult, ServiceError

logger = structlog.get_logger()

_UNIQUE_VIOLATION = "23505"


@lru_cache(maxsize=1)
def get_client() -> Client:
    """Process-wide client built from settings."""
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ServiceError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
    return create_client(settings.supabase_url, settings.supabase_anon_key)


def identity_from_user(user: Any) -> IdentityRecord:
    """Map a GoTrue user onto the flow's identity record."""
    metadata = getattr(user, "user_metadata", None) or {}
    return IdentityRecord(
        email=getattr(user, "email", None),
        name=metadata.get("full_name") or metadata.get("name"),
        subject_id=str(user.id),
        verified=getattr(user, "email_confirmed_at", None) is not None,
    )


class SupabaseLeadStore:
    def __init__(self, client: Client | None = None, table: str | None = None) -> None:
        self._client = client
        self._table = table or settings.leads_table

    @property
    def client(self) -> Client:
        return self._client or get_client()

    async def insert(self, lead: LeadRecord) -> None:
        row = lead.to_row()
        try:
            await asyncio.to_thread(
                lambda: self.client.table(self._table).insert(row).execute()
            )
        except PostgrestAPIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                raise DuplicateLeadError(f"lead {lead.id} already exists") from exc
            raise ServiceError(f"lead insert failed: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"lead store unreachable: {type(exc).__name__}") from exc
        logger.info("lead_row_inserted", lead_id=lead.id, table=self._table)


class SupabaseActivityLogger:
    def __init__(
        self,
        client: Client | None = None,
        table: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self._client = client
        self._table = table or settings.activity_log_table
        self._session_id = session_id

    @property
    def client(self) -> Client:
        return self._client or get_client()

    async def log_operation(
        self,
        *,
        type: str,
        input: dict[str, Any],
        output: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
    ) -> None:
        row = {
            "session_id": self._session_id,
            "operation_type": type,
            "input_data": input,
            "output_data": output,
            "duration_ms": duration_ms,
            "error": error,
        }
        await asyncio.to_thread(lambda: self.client.table(self._table).insert(row).execute())


class SupabaseIdentityProvider:
    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        return self._client or get_client()

    async def exchange_callback(self, code: str) -> ExchangeResult:
        try:
            response = await asyncio.to_thread(
                self.client.auth.exchange_code_for_session, {"auth_code": code}
            )
        except AuthError as exc:
            logger.warning("supabase_code_exchange_failed", error=str(exc)[:200])
            return ExchangeResult(error=str(exc))
        except httpx.HTTPError as exc:
            raise ServiceError(f"identity provider unreachable: {type(exc).__name__}") from exc
        if response.user is None:
            return ExchangeResult(error="no user in session")
        return ExchangeResult(identity=identity_from_user(response.user))

    def on_session_change(
        self, callback: Callable[[str, IdentityRecord | None], None]
    ) -> Callable[[], None]:
        def _relay(event: Any, session: Any) -> None:
            user = getattr(session, "user", None)
            callback(str(event), identity_from_user(user) if user is not None else None)

        subscription = self.client.auth.on_auth_state_change(_relay)
        return subscription.unsubscribe

    async def send_otp(self, email: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.auth.sign_in_with_otp,
                {"email": email, "options": {"should_create_user": True}},
            )
        except AuthError as exc:
            raise ServiceError(f"could not send login code: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"identity provider unreachable: {type(exc).__name__}") from exc

    async def verify_otp(self, email: str, token: str) -> ExchangeResult:
        try:
            response = await asyncio.to_thread(
                self.client.auth.verify_otp,
                {"email": email, "token": token, "type": "email"},
            )
        except AuthError as exc:
            return ExchangeResult(error=str(exc))
        except httpx.HTTPError as exc:
            raise ServiceError(f"identity provider unreachable: {type(exc).__name__}") from exc
        if response.user is None:
            return ExchangeResult(error="no user in session")
        return ExchangeResult(identity=identity_from_user(response.user))
