"""Shared structlog configuration for the API process."""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from hairvis.config import settings

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class _TeeWriter:
    """Write to both stdout and a log file (JSON lines).

    If the file cannot be opened or a write fails, logging continues to
    stdout only.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet
            print(
                f"WARNING: Could not open log file {file_path!r}: {exc}. "
                "Falling back to stdout-only logging.",
                file=sys.stderr,
            )

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is not None:
            try:
                self._file.write(data)
                self._file.flush()
            except (OSError, ValueError):
                self._file = None
                print("WARNING: Log file write failed. File logging disabled.", file=sys.stderr)

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is not None:
            try:
                self._file.flush()
            except (OSError, ValueError):
                self._file = None
                print("WARNING: Log file flush failed. File logging disabled.", file=sys.stderr)


_PAYLOAD_PREFIXES = ("data:image/", "/9j/", "iVBORw0KGgo")
_MAX_PAYLOAD_CHARS = 48


def redact_image_payloads(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Replace base64 image payloads with a short marker.

    Photo data URLs are megabytes long and identify the visitor, so they
    never reach the log sink.
    """
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > _MAX_PAYLOAD_CHARS and value.startswith(
            _PAYLOAD_PREFIXES
        ):
            event_dict[key] = f"<image {len(value)} chars>"
    return event_dict


def configure_logging() -> None:
    """Console renderer in development, JSON lines everywhere else."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )

    level = _LOG_LEVEL_MAP.get(settings.log_level.upper(), logging.INFO)

    logger_factory: structlog.types.WrappedLogger
    if settings.log_file:
        logger_factory = structlog.PrintLoggerFactory(file=_TeeWriter(settings.log_file))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_image_payloads,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
