"""Best-effort activity reporting shared by the pipelines and the finalizer."""

from __future__ import annotations

import time
from typing import Any

import structlog

from hairvis.services.base import ActivityLogger

logger = structlog.get_logger()


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def report_activity(
    activity: ActivityLogger | None,
    *,
    type: str,
    input: dict[str, Any],
    output: dict[str, Any] | None = None,
    duration_ms: int | None = None,
    error: str | None = None,
) -> None:
    """Forward one operation record; a failing sink never affects the flow."""
    if activity is None:
        return
    try:
        await activity.log_operation(
            type=type,
            input=input,
            output=output,
            duration_ms=duration_ms,
            error=error,
        )
    except Exception as exc:
        logger.warning(
            "activity_log_failed",
            operation=type,
            error_type=type_name(exc),
        )


def type_name(exc: BaseException) -> str:
    return type(exc).__name__
