"""
Vignette library views and progress export/import.

Combines catalogue content with learner progress for:
- Stats (mastered / familiar / learning / due today)
- Filtering by system, difficulty and mastery
- Due-for-review lists and free-text search
- JSON export/import of progress and sessions
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from .gateway import LibraryGateway
from .models import MasteryLevel, Vignette, VignetteProgress, VignetteSession
from .recorder import utc_now
from .scheduler import ReviewScheduler


@dataclass(frozen=True)
class LibraryStats:
    total: int
    mastered: int
    familiar: int
    learning: int
    due_today: int


class VignetteLibrary:
    """Read-only view over vignettes and their progress."""

    def __init__(
        self,
        vignettes: Iterable[Vignette],
        progress: Mapping[str, VignetteProgress] | None = None,
        scheduler: ReviewScheduler | None = None,
    ):
        self.vignettes = list(vignettes)
        self.progress = dict(progress or {})
        self.scheduler = scheduler or ReviewScheduler()

    def mastery_of(self, vignette_id: str) -> MasteryLevel:
        """Untouched vignettes and those never completed count as learning."""
        progress = self.progress.get(vignette_id)
        if progress is None or progress.completions == 0:
            return MasteryLevel.LEARNING
        return progress.overall_mastery

    def stats(self, now: datetime | None = None) -> LibraryStats:
        now = now or utc_now()
        counts = {level: 0 for level in MasteryLevel}
        due = 0

        for vignette in self.vignettes:
            counts[self.mastery_of(vignette.id)] += 1
            if self.scheduler.is_due(self.progress.get(vignette.id), now):
                due += 1

        return LibraryStats(
            total=len(self.vignettes),
            mastered=counts[MasteryLevel.MASTERED],
            familiar=counts[MasteryLevel.FAMILIAR],
            learning=counts[MasteryLevel.LEARNING],
            due_today=due,
        )

    def by_system(self, system: str) -> list[Vignette]:
        return [v for v in self.vignettes if v.metadata.system == system]

    def by_difficulty(self, difficulty: str) -> list[Vignette]:
        return [v for v in self.vignettes if v.metadata.difficulty == difficulty]

    def by_mastery(self, mastery: MasteryLevel) -> list[Vignette]:
        mastery = MasteryLevel(mastery)
        result = []
        for vignette in self.vignettes:
            progress = self.progress.get(vignette.id)
            level = progress.overall_mastery if progress else MasteryLevel.LEARNING
            if level is mastery:
                result.append(vignette)
        return result

    def due_for_review(self, now: datetime | None = None) -> list[Vignette]:
        now = now or utc_now()
        return [v for v in self.vignettes if self.scheduler.is_due(self.progress.get(v.id), now)]

    def search(self, query: str) -> list[Vignette]:
        """Case-insensitive match on title, topic, tags and scenario text."""
        needle = query.lower()
        return [
            v
            for v in self.vignettes
            if needle in v.title.lower()
            or needle in v.metadata.topic.lower()
            or any(needle in tag.lower() for tag in v.metadata.tags)
            or needle in v.initial_scenario.lower()
        ]

    def import_vignettes(self, vignettes: Iterable[Vignette]) -> list[Vignette]:
        """Add vignettes whose ids are not already present; returns those added."""
        existing = {v.id for v in self.vignettes}
        added = []
        for vignette in vignettes:
            if vignette.id in existing:
                continue
            existing.add(vignette.id)
            added.append(vignette)

        self.vignettes.extend(added)
        return added


# =============================================================================
# Export / Import
# =============================================================================


@dataclass(frozen=True)
class ImportResult:
    success: bool
    progress_count: int = 0
    session_count: int = 0
    error: str | None = None


async def export_data(gateway: LibraryGateway, now: datetime | None = None) -> str:
    """Serialize all progress and sessions to a JSON document."""
    progress = await gateway.all_progress()
    sessions = await gateway.all_sessions()

    document: dict[str, Any] = {
        "progress": {vid: p.to_wire() for vid, p in progress.items()},
        "sessions": [s.to_wire() for s in sessions],
        "exportedAt": (now or utc_now()).isoformat(),
    }
    return json.dumps(document, indent=2)


async def import_data(gateway: LibraryGateway, json_string: str) -> ImportResult:
    """
    Load progress and sessions from an export document.

    Progress records replace stored ones; sessions are saved by id, so
    importing the same document twice adds nothing.
    """
    try:
        data = json.loads(json_string)
        raw_progress = data.get("progress") or {}
        raw_sessions = data.get("sessions") or []
        if not isinstance(raw_progress, dict) or not isinstance(raw_sessions, list):
            raise ValueError("progress must be an object and sessions a list")

        progress = [VignetteProgress.model_validate(p) for p in raw_progress.values()]
        sessions = [VignetteSession.model_validate(s) for s in raw_sessions]
    except (json.JSONDecodeError, AttributeError, ValueError, ValidationError) as e:
        logger.warning(f"Import rejected: {e}")
        return ImportResult(success=False, error=str(e))

    for record in progress:
        await gateway.replace_progress(record)
    for session in sessions:
        await gateway.save_session(session)

    logger.info(f"Imported {len(progress)} progress records and {len(sessions)} sessions")
    return ImportResult(success=True, progress_count=len(progress), session_count=len(sessions))
