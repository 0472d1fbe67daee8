"""Durable draft store over a page-scoped persistence medium.

Three independent slots (photos, intake, analysis) each hold one
self-contained serialization. Reads and writes never raise: a lost draft
only degrades what a reload can restore, it never breaks the live flow.
"""

from __future__ import annotations

import shutil
from enum import StrEnum
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import BaseModel, ValidationError

from hairvis.models.contracts import AnalysisResult, IntakeAnswers, PhotoSet

logger = structlog.get_logger()


class DraftKey(StrEnum):
    PHOTOS = "hairvis_draft_photos"
    INTAKE = "hairvis_draft_intake"
    ANALYSIS = "hairvis_draft_analysis"


_DRAFT_MODELS: dict[DraftKey, type[BaseModel]] = {
    DraftKey.PHOTOS: PhotoSet,
    DraftKey.INTAKE: IntakeAnswers,
    DraftKey.ANALYSIS: AnalysisResult,
}


class QuotaExceededError(OSError):
    pass


class PersistenceMedium(Protocol):
    def save(self, key: str, value: str) -> None: ...

    def load(self, key: str) -> str | None: ...

    def remove(self, key: str) -> None: ...


class MemoryMedium:
    """Per-session key/value storage with a browser-like size quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota = quota_bytes

    def save(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = sum(len(v) for k, v in self._items.items() if k != key)
            if used + len(value) > self._quota:
                raise QuotaExceededError(
                    f"Storing {len(value)} chars under {key!r} exceeds quota of {self._quota}"
                )
        self._items[key] = value

    def load(self, key: str) -> str | None:
        return self._items.get(key)

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class FileMedium:
    """One file per key under a session directory; survives process restarts."""

    def __init__(self, directory: Path, quota_bytes: int | None = None) -> None:
        self._dir = directory
        self._quota = quota_bytes

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def save(self, key: str, value: str) -> None:
        if self._quota is not None and len(value) > self._quota:
            raise QuotaExceededError(f"Draft {key!r} is {len(value)} chars (quota {self._quota})")
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = self._path(key).with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(key))

    def load(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def discard(self) -> None:
        """Drop the whole session directory (tab closed)."""
        shutil.rmtree(self._dir, ignore_errors=True)


class DraftStore:
    """Typed save/load/clear over the three draft slots."""

    def __init__(self, medium: PersistenceMedium) -> None:
        self._medium = medium

    def save(self, key: DraftKey, value: BaseModel) -> bool:
        """Persist ``value``; returns False (and logs) instead of raising."""
        try:
            payload = value.model_dump_json()
            self._medium.save(key.value, payload)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning(
                "draft_save_failed",
                key=key.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        logger.debug("draft_saved", key=key.value, size=len(payload))
        return True

    def load(self, key: DraftKey) -> BaseModel | None:
        try:
            raw = self._medium.load(key.value)
        except OSError as exc:
            logger.warning("draft_load_failed", key=key.value, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return _DRAFT_MODELS[key].model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("draft_corrupt", key=key.value, error_count=exc.error_count())
            return None

    def load_photos(self) -> PhotoSet | None:
        return self.load(DraftKey.PHOTOS)  # type: ignore[return-value]

    def load_intake(self) -> IntakeAnswers | None:
        return self.load(DraftKey.INTAKE)  # type: ignore[return-value]

    def load_analysis(self) -> AnalysisResult | None:
        return self.load(DraftKey.ANALYSIS)  # type: ignore[return-value]

    def clear(self, key: DraftKey) -> None:
        try:
            self._medium.remove(key.value)
        except OSError as exc:
            logger.warning("draft_clear_failed", key=key.value, error=str(exc))

    def clear_all(self) -> None:
        for key in DraftKey:
            self.clear(key)
