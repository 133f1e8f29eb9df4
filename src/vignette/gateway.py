"""
Persistence gateway contract and the adapter the engine writes through.

Gateways:
- get_vignette: read-only content lookup
- get_progress / update_progress: per-vignette progress, merged on update
- save_session: append-only session log (idempotent by session id)

The PersistenceAdapter turns an ended session into gateway calls, retrying
transient failures and keeping unconfirmed writes for a later retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from loguru import logger

from .errors import NotFoundError, PersistenceIOError
from .mastery import MasteryCalculator
from .models import Vignette, VignetteProgress, VignetteSession, merge_progress
from .recorder import utc_now
from .retry import RetryPolicy, Sleeper, with_retry


class PersistenceGateway(Protocol):
    """Storage contract consumed by the engine."""

    async def get_vignette(self, vignette_id: str) -> Vignette:
        """Raises NotFoundError for unknown ids."""
        ...

    async def get_progress(self, vignette_id: str) -> VignetteProgress | None: ...

    async def save_session(self, session: VignetteSession) -> None: ...

    async def update_progress(self, vignette_id: str, partial: dict[str, Any]) -> None: ...


class LibraryGateway(PersistenceGateway, Protocol):
    """Extra queries used by the library, export/import and the CLI."""

    async def all_progress(self) -> dict[str, VignetteProgress]: ...

    async def sessions_for_vignette(self, vignette_id: str) -> list[VignetteSession]: ...

    async def all_sessions(self) -> list[VignetteSession]: ...

    async def replace_progress(self, progress: VignetteProgress) -> None: ...

    async def delete_progress(self, vignette_id: str) -> None: ...


# =============================================================================
# In-Memory Gateway
# =============================================================================


class InMemoryGateway:
    """Dictionary-backed gateway for embedding and tests."""

    def __init__(
        self,
        vignettes: list[Vignette] | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self._vignettes = {v.id: v for v in vignettes or []}
        self._progress: dict[str, VignetteProgress] = {}
        self._sessions: dict[str, VignetteSession] = {}
        self._now = now

    async def get_vignette(self, vignette_id: str) -> Vignette:
        try:
            return self._vignettes[vignette_id]
        except KeyError:
            raise NotFoundError(vignette_id) from None

    async def get_progress(self, vignette_id: str) -> VignetteProgress | None:
        return self._progress.get(vignette_id)

    async def save_session(self, session: VignetteSession) -> None:
        self._sessions[session.id] = session

    async def update_progress(self, vignette_id: str, partial: dict[str, Any]) -> None:
        self._progress[vignette_id] = merge_progress(
            self._progress.get(vignette_id), vignette_id, partial, self._now()
        )

    async def all_progress(self) -> dict[str, VignetteProgress]:
        return dict(self._progress)

    async def sessions_for_vignette(self, vignette_id: str) -> list[VignetteSession]:
        return [s for s in self._sessions.values() if s.vignette_id == vignette_id]

    async def all_sessions(self) -> list[VignetteSession]:
        return list(self._sessions.values())

    async def replace_progress(self, progress: VignetteProgress) -> None:
        self._progress[progress.vignette_id] = progress

    async def delete_progress(self, vignette_id: str) -> None:
        self._progress.pop(vignette_id, None)


# =============================================================================
# Adapter
# =============================================================================


@dataclass
class PendingWrite:
    """An ended session whose writes have not all been confirmed."""

    session: VignetteSession
    vignette: Vignette
    counted: bool
    progress: VignetteProgress | None = None
    session_saved: bool = False
    progress_saved: bool = False
    attempts: int = 0
    last_error: PersistenceIOError | None = None

    @property
    def is_done(self) -> bool:
        return self.session_saved and (self.progress_saved or not self.counted)


class PersistenceAdapter:
    """
    Writes ended sessions and their derived progress through a gateway.

    Steps that succeeded are flagged on the PendingWrite, so a retry never
    saves the session twice or counts the completion twice. Progress is
    re-derived from freshly read prior progress on every attempt, so a
    retry folds on top of anything persisted in the meantime.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        calculator: MasteryCalculator,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.gateway = gateway
        self.calculator = calculator
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def prepare(self, session: VignetteSession, vignette: Vignette) -> PendingWrite:
        return PendingWrite(
            session=session,
            vignette=vignette,
            counted=self.calculator.counts(session, vignette),
        )

    async def _call(self, operation: str, fn):
        return await with_retry(operation, fn, self.retry_policy, self._sleep)

    async def _refold(self, pending: PendingWrite) -> None:
        vignette_id = pending.vignette.id
        prior = await self._call(
            f"get_progress({vignette_id})",
            lambda: self.gateway.get_progress(vignette_id),
        )
        pending.progress = self.calculator.calculate_progress(
            prior, pending.session, pending.vignette
        )

    async def persist(self, pending: PendingWrite) -> PendingWrite:
        """
        Push a pending write as far as it will go.

        Never raises PersistenceIOError: the failure is stored on
        pending.last_error and the write stays resumable.
        """
        pending.attempts += 1
        vignette_id = pending.vignette.id

        try:
            if pending.counted and not pending.progress_saved:
                await self._refold(pending)

            if not pending.session_saved:
                await self._call(
                    f"save_session({pending.session.id})",
                    lambda: self.gateway.save_session(pending.session),
                )
                pending.session_saved = True

            if pending.counted and not pending.progress_saved:
                partial = pending.progress.to_partial()
                await self._call(
                    f"update_progress({vignette_id})",
                    lambda: self.gateway.update_progress(vignette_id, partial),
                )
                pending.progress_saved = True

        except PersistenceIOError as e:
            pending.last_error = e
            logger.warning(f"Session {pending.session.id} kept for retry: {e}")
            return pending

        pending.last_error = None
        logger.info(
            f"Session {pending.session.id} persisted "
            f"(counted={pending.counted}, mastery="
            f"{pending.progress.overall_mastery.value if pending.progress else 'unchanged'})"
        )
        return pending
