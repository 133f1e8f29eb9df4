"""
SQLAlchemy-backed persistence gateway.

Content is served by a read-only content store; sessions and progress live
in the vignette_sessions / vignette_progress tables. ORM work is synchronous
and runs in a worker thread so the gateway satisfies the async contract.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol, TypeVar

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.db.database import get_session_factory, session_scope
from src.db.models import VignetteProgressRow, VignetteSessionRow
from src.vignette.errors import PersistenceIOError
from src.vignette.models import Vignette, VignetteProgress, VignetteSession, merge_progress
from src.vignette.recorder import utc_now

T = TypeVar("T")


class ContentSource(Protocol):
    async def get_vignette(self, vignette_id: str) -> Vignette: ...


def _progress_row(progress: VignetteProgress) -> dict[str, Any]:
    return {
        "vignette_id": progress.vignette_id,
        "overall_mastery": progress.overall_mastery.value,
        "next_review": progress.next_review,
        "payload": progress.to_wire(),
    }


class SqlPersistenceGateway:
    """Persistence gateway over a SQLAlchemy session factory."""

    def __init__(
        self,
        content: ContentSource,
        session_factory: sessionmaker[Session] | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.content = content
        self.session_factory = session_factory or get_session_factory()
        self._now = now

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with session_scope(self.session_factory) as db:
                return fn(db)

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as e:
            logger.debug(f"{operation} raised {type(e).__name__}: {e}")
            raise PersistenceIOError(operation, str(e)) from e

    # ------------------------------------------------------------------
    # Engine contract
    # ------------------------------------------------------------------

    async def get_vignette(self, vignette_id: str) -> Vignette:
        return await self.content.get_vignette(vignette_id)

    async def get_progress(self, vignette_id: str) -> VignetteProgress | None:
        def fn(db: Session) -> VignetteProgress | None:
            row = db.get(VignetteProgressRow, vignette_id)
            return VignetteProgress.model_validate(row.payload) if row else None

        return await self._run(f"get_progress({vignette_id})", fn)

    async def save_session(self, session: VignetteSession) -> None:
        def fn(db: Session) -> None:
            if db.get(VignetteSessionRow, session.id) is not None:
                logger.debug(f"Session {session.id} already stored")
                return
            db.add(
                VignetteSessionRow(
                    id=session.id,
                    vignette_id=session.vignette_id,
                    started_at=session.started_at,
                    ended_at=session.ended_at,
                    decision_count=len(session.decisions),
                    payload=session.to_wire(),
                )
            )

        await self._run(f"save_session({session.id})", fn)

    async def update_progress(self, vignette_id: str, partial: dict[str, Any]) -> None:
        now = self._now()

        def fn(db: Session) -> None:
            row = db.get(VignetteProgressRow, vignette_id)
            existing = VignetteProgress.model_validate(row.payload) if row else None
            merged = merge_progress(existing, vignette_id, partial, now)
            values = _progress_row(merged)
            if row is None:
                db.add(VignetteProgressRow(**values))
            else:
                row.overall_mastery = values["overall_mastery"]
                row.next_review = values["next_review"]
                row.payload = values["payload"]

        await self._run(f"update_progress({vignette_id})", fn)

    # ------------------------------------------------------------------
    # Library queries
    # ------------------------------------------------------------------

    async def all_progress(self) -> dict[str, VignetteProgress]:
        def fn(db: Session) -> dict[str, VignetteProgress]:
            rows = db.scalars(select(VignetteProgressRow)).all()
            return {row.vignette_id: VignetteProgress.model_validate(row.payload) for row in rows}

        return await self._run("all_progress", fn)

    async def sessions_for_vignette(self, vignette_id: str) -> list[VignetteSession]:
        def fn(db: Session) -> list[VignetteSession]:
            rows = db.scalars(
                select(VignetteSessionRow)
                .where(VignetteSessionRow.vignette_id == vignette_id)
                .order_by(VignetteSessionRow.started_at)
            ).all()
            return [VignetteSession.model_validate(row.payload) for row in rows]

        return await self._run(f"sessions_for_vignette({vignette_id})", fn)

    async def all_sessions(self) -> list[VignetteSession]:
        def fn(db: Session) -> list[VignetteSession]:
            rows = db.scalars(select(VignetteSessionRow).order_by(VignetteSessionRow.started_at)).all()
            return [VignetteSession.model_validate(row.payload) for row in rows]

        return await self._run("all_sessions", fn)

    async def replace_progress(self, progress: VignetteProgress) -> None:
        def fn(db: Session) -> None:
            db.merge(VignetteProgressRow(**_progress_row(progress)))

        await self._run(f"replace_progress({progress.vignette_id})", fn)

    async def delete_progress(self, vignette_id: str) -> None:
        def fn(db: Session) -> None:
            db.execute(delete(VignetteProgressRow).where(VignetteProgressRow.vignette_id == vignette_id))

        await self._run(f"delete_progress({vignette_id})", fn)
