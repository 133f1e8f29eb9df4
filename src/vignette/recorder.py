"""
Session Recorder: append-only decision log for one vignette session.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger

from .models import DecisionRecord, VignetteSession


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecorder:
    """
    Accumulates the decisions of a single session.

    Records are only ever appended; the log is exactly the accepted choices
    in call order. The recorder closes once the session is ended.
    """

    def __init__(
        self,
        session_id: str,
        vignette_id: str,
        started_at: datetime,
        now: Callable[[], datetime] = utc_now,
    ):
        self.session_id = session_id
        self.vignette_id = vignette_id
        self.started_at = started_at
        self._now = now
        self._decisions: list[DecisionRecord] = []
        self._completed_optimally = True
        self._ended_at: datetime | None = None

    @property
    def decisions(self) -> tuple[DecisionRecord, ...]:
        return tuple(self._decisions)

    @property
    def path_taken(self) -> list[str]:
        return [decision.node_id for decision in self._decisions]

    @property
    def completed_optimally(self) -> bool:
        return self._completed_optimally

    @property
    def is_closed(self) -> bool:
        return self._ended_at is not None

    def record(
        self,
        node_id: str,
        choice_id: str,
        was_optimal: bool,
        was_acceptable: bool,
        time_spent_ms: int,
    ) -> DecisionRecord:
        """
        Append a decision stamped with the capture time.

        Raises:
            RuntimeError: If the session has already been closed
        """
        if self.is_closed:
            raise RuntimeError(f"Session {self.session_id} is closed")

        decision = DecisionRecord(
            node_id=node_id,
            choice_id=choice_id,
            was_optimal=was_optimal,
            was_acceptable=was_acceptable,
            time_spent_ms=max(0, int(time_spent_ms)),
            timestamp=self._now(),
        )
        self._decisions.append(decision)
        self._completed_optimally = self._completed_optimally and was_optimal

        logger.debug(
            f"Session {self.session_id}: recorded {choice_id} at {node_id} "
            f"({decision.time_spent_ms}ms, optimal={was_optimal})"
        )
        return decision

    def snapshot(self) -> VignetteSession:
        """Current session state, open or closed."""
        return VignetteSession(
            id=self.session_id,
            vignette_id=self.vignette_id,
            started_at=self.started_at,
            ended_at=self._ended_at,
            decisions=self.decisions,
            completed_optimally=self._completed_optimally,
        )

    def close(self) -> VignetteSession:
        """Stamp endedAt and return the final, immutable session."""
        if self._ended_at is None:
            self._ended_at = self._now()
        return self.snapshot()


@dataclass(frozen=True)
class SessionSummary:
    """Tallies shown once a session is over."""

    total: int
    optimal: int
    acceptable: int  # acceptable but not optimal
    suboptimal: int
    total_time_ms: int

    @property
    def optimal_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.optimal / self.total * 100)


def summarize_session(session: VignetteSession) -> SessionSummary:
    decisions = session.decisions
    return SessionSummary(
        total=len(decisions),
        optimal=sum(1 for d in decisions if d.was_optimal),
        acceptable=sum(1 for d in decisions if d.was_acceptable and not d.was_optimal),
        suboptimal=sum(1 for d in decisions if not d.was_acceptable),
        total_time_ms=sum(d.time_spent_ms for d in decisions),
    )
