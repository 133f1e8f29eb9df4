"""
Decision Engine: drives one learner through a vignette.

Usage:
    engine = DecisionEngine(gateway, listeners=[on_event])
    engine.start_vignette(vignette)
    result = engine.make_choice("choice-1b")     # reveal feedback
    engine.continue_after_feedback()             # advance
    ...
    ended = await engine.end_session()           # fold + persist

Content and persistence errors come back on the result objects; calling an
operation in a state that does not allow it raises InvalidTransitionError.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from .errors import (
    InvalidChoiceError,
    InvalidTransitionError,
    InvalidVignetteError,
    NotFoundError,
    PersistenceIOError,
    VignetteError,
)
from .gateway import PendingWrite, PersistenceAdapter, PersistenceGateway
from .mastery import CompletionPolicy, MasteryCalculator
from .models import (
    Choice,
    DecisionNode,
    DecisionRecord,
    Vignette,
    VignetteProgress,
    VignetteSession,
)
from .recorder import SessionRecorder, utc_now
from .retry import RetryPolicy, Sleeper
from .state_machine import (
    Choose,
    Complete,
    Continue,
    EngineState,
    Feedback,
    Idle,
    Reset,
    Start,
    state_name,
    transition,
)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


# =============================================================================
# Results & Events
# =============================================================================


@dataclass(frozen=True)
class EngineResult:
    """Outcome of a synchronous engine operation."""

    state: str
    accepted: bool = True
    choice: Choice | None = None
    decision: DecisionRecord | None = None
    error: VignetteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class EndSessionResult:
    """Outcome of ending a session (or retrying its writes)."""

    session: VignetteSession
    counted: bool
    progress: VignetteProgress | None
    persisted: bool
    error: PersistenceIOError | None = None


@dataclass(frozen=True)
class SessionEvent:
    """Notification delivered to listeners passed to the engine."""

    kind: str  # session_started, choice_made, node_entered, session_completed, session_ended, persistence_failed
    session_id: str
    vignette_id: str
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[SessionEvent], None]


# =============================================================================
# Engine
# =============================================================================


class DecisionEngine:
    """
    Session state machine bound to a persistence gateway.

    One engine holds at most one unended session. Starting again discards
    it; it is never folded into progress.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        calculator: MasteryCalculator | None = None,
        retry_policy: RetryPolicy | None = None,
        listeners: Iterable[Listener] = (),
        clock: Callable[[], float] = _monotonic_ms,
        now: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """
        Args:
            gateway: Content and progress storage
            calculator: Mastery calculator (carries the completion policy)
            retry_policy: Backoff for gateway calls
            listeners: Callbacks receiving SessionEvent notifications. A listener
                that raises is logged and skipped.
            clock: Monotonic clock in milliseconds, sampled at decision boundaries
            now: Wall clock for session and decision timestamps
            id_factory: Session id generator
            sleep: Awaitable sleep used between retries
        """
        self.gateway = gateway
        self.calculator = calculator or MasteryCalculator()
        self._adapter = PersistenceAdapter(gateway, self.calculator, retry_policy, sleep)
        self._listeners = tuple(listeners)
        self._clock = clock
        self._now = now
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

        self._state: EngineState = Idle()
        self._vignette: Vignette | None = None
        self._recorder: SessionRecorder | None = None
        self.pending: list[PendingWrite] = []

    @classmethod
    def from_settings(cls, gateway: PersistenceGateway, settings=None, **kwargs) -> DecisionEngine:
        """Build an engine using the completion policy and retry settings."""
        if settings is None:
            from config import get_settings

            settings = get_settings()

        kwargs.setdefault(
            "calculator", MasteryCalculator(policy=CompletionPolicy(settings.completion_policy))
        )
        kwargs.setdefault("retry_policy", RetryPolicy.from_settings(settings))
        return cls(gateway, **kwargs)

    # =========================================================================
    # Computed State
    # =========================================================================

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def state_name(self) -> str:
        return state_name(self._state)

    @property
    def vignette(self) -> Vignette | None:
        return self._vignette

    @property
    def current_node(self) -> DecisionNode | None:
        if isinstance(self._state, Idle):
            return None
        return self._state.node

    @property
    def is_complete(self) -> bool:
        return isinstance(self._state, Complete)

    @property
    def session(self) -> VignetteSession | None:
        return self._recorder.snapshot() if self._recorder else None

    @property
    def decision_history(self) -> tuple[DecisionRecord, ...]:
        return self._recorder.decisions if self._recorder else ()

    @property
    def path_taken(self) -> list[str]:
        return self._recorder.path_taken if self._recorder else []

    @property
    def node_count(self) -> int:
        return self._vignette.node_count if self._vignette else 0

    @property
    def current_node_index(self) -> int:
        return len(self.path_taken) + 1

    @property
    def selected_choice(self) -> Choice | None:
        if isinstance(self._state, Feedback):
            return self._state.choice
        return None

    @property
    def show_feedback(self) -> bool:
        return isinstance(self._state, Feedback)

    # =========================================================================
    # Operations
    # =========================================================================

    async def load_vignette(self, vignette_id: str) -> EngineResult:
        """Fetch a vignette through the gateway and start it."""
        try:
            vignette = await self.gateway.get_vignette(vignette_id)
        except (NotFoundError, PersistenceIOError) as e:
            logger.warning(f"Could not load vignette {vignette_id}: {e}")
            return EngineResult(state=self.state_name, accepted=False, error=e)

        return self.start_vignette(vignette)

    def start_vignette(self, vignette: Vignette) -> EngineResult:
        """Begin a fresh session at the root node."""
        try:
            state = transition(self._state, Start(vignette, self._clock()))
        except InvalidVignetteError as e:
            logger.warning(f"Refusing to start vignette: {e}")
            return EngineResult(state=self.state_name, accepted=False, error=e)

        if self._recorder is not None and not self._recorder.is_closed:
            logger.info(
                f"Discarding unended session {self._recorder.session_id} "
                f"({len(self._recorder.decisions)} decisions)"
            )

        self._vignette = vignette
        self._recorder = SessionRecorder(
            session_id=self._new_id(),
            vignette_id=vignette.id,
            started_at=self._now(),
            now=self._now,
        )
        self._state = state

        logger.debug(f"Session {self._recorder.session_id} started on {vignette.id}")
        self._emit("session_started", node_id=vignette.root_node_id)
        if isinstance(state, Complete):
            self._emit("session_completed", node_id=state.node_id)
        return EngineResult(state=self.state_name)

    def make_choice(self, choice_id: str) -> EngineResult:
        """
        Record a choice at the current decision node and reveal its feedback.

        A second call while feedback is showing is ignored (accepted=False).
        """
        previous = self._state
        try:
            state = transition(previous, Choose(choice_id, self._clock()))
        except InvalidChoiceError as e:
            logger.warning(str(e))
            return EngineResult(state=self.state_name, accepted=False, error=e)

        if state is previous:
            logger.debug(f"Ignoring choice {choice_id}: feedback already showing")
            return EngineResult(state=self.state_name, accepted=False, choice=self.selected_choice)

        if not isinstance(state, Feedback):
            raise InvalidTransitionError("make_choice", state_name(state))
        decision = self._recorder.record(
            node_id=state.node_id,
            choice_id=state.choice.id,
            was_optimal=state.choice.is_optimal,
            was_acceptable=state.choice.is_acceptable,
            time_spent_ms=state.time_spent_ms,
        )
        self._state = state

        self._emit(
            "choice_made",
            node_id=state.node_id,
            choice_id=state.choice.id,
            was_optimal=state.choice.is_optimal,
            was_acceptable=state.choice.is_acceptable,
            time_spent_ms=decision.time_spent_ms,
        )
        return EngineResult(state=self.state_name, choice=state.choice, decision=decision)

    def continue_after_feedback(self) -> EngineResult:
        """
        Advance along the selected choice.

        A choice without a next node leaves the engine in feedback
        (accepted=False) so the caller can retry or abandon.
        """
        previous = self._state
        state = transition(previous, Continue(self._clock()))

        if state is previous:
            logger.warning(
                f"Choice {self.selected_choice.id} at {previous.node_id} has no next node; "
                "staying on feedback"
            )
            return EngineResult(state=self.state_name, accepted=False, choice=self.selected_choice)

        self._state = state
        self._emit("node_entered", node_id=state.node_id)
        if isinstance(state, Complete):
            logger.debug(f"Session {self._recorder.session_id} reached outcome {state.node_id}")
            self._emit("session_completed", node_id=state.node_id)
        return EngineResult(state=self.state_name)

    def restart_vignette(self) -> EngineResult:
        """Start the current vignette again, discarding any unended session."""
        if self._vignette is None:
            raise InvalidTransitionError("restart_vignette", self.state_name)
        return self.start_vignette(self._vignette)

    async def end_session(self) -> EndSessionResult:
        """
        Close the session, fold it into progress and persist both.

        Safe to call before an outcome is reached (abandon). Whether the
        session updates progress depends on the calculator's policy. Failed
        writes stay in `pending` for flush_pending().
        """
        if self._recorder is None or self._recorder.is_closed:
            raise InvalidTransitionError("end_session", self.state_name)

        session = self._recorder.close()
        vignette = self._vignette
        self._recorder = None
        self._state = transition(self._state, Reset())

        pending = self._adapter.prepare(session, vignette)
        logger.info(
            f"Session {session.id} ended with {len(session.decisions)} decisions "
            f"(optimal={session.completed_optimally}, counted={pending.counted})"
        )
        self._emit(
            "session_ended",
            session_id=session.id,
            vignette_id=vignette.id,
            decisions=len(session.decisions),
            counted=pending.counted,
        )

        await self._adapter.persist(pending)
        if not pending.is_done:
            self.pending.append(pending)
            self._emit(
                "persistence_failed",
                session_id=session.id,
                vignette_id=vignette.id,
                error=str(pending.last_error),
            )
        return self._end_result(pending)

    async def flush_pending(self) -> list[EndSessionResult]:
        """Retry every unconfirmed write, dropping those that succeed."""
        results = []
        for pending in list(self.pending):
            await self._adapter.persist(pending)
            if pending.is_done:
                self.pending.remove(pending)
            results.append(self._end_result(pending))
        return results

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _end_result(pending: PendingWrite) -> EndSessionResult:
        return EndSessionResult(
            session=pending.session,
            counted=pending.counted,
            progress=pending.progress,
            persisted=pending.is_done,
            error=pending.last_error,
        )

    def _emit(self, kind: str, session_id: str | None = None, vignette_id: str | None = None, **data) -> None:
        if not self._listeners:
            return

        event = SessionEvent(
            kind=kind,
            session_id=session_id or (self._recorder.session_id if self._recorder else ""),
            vignette_id=vignette_id or (self._vignette.id if self._vignette else ""),
            data=data,
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {kind} for session {event.session_id}")
