"""
Vignette traversal state machine.

States:
    Idle -> Active(node) -> Feedback(choice) -> Active(next) | Complete

transition() is pure: it never records decisions or touches storage, so it
can be exercised without an engine. Clock samples travel in the events.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import InvalidChoiceError, InvalidTransitionError, InvalidVignetteError
from .models import Choice, DecisionNode, Vignette, find_graph_problems

# =============================================================================
# States
# =============================================================================


@dataclass(frozen=True)
class Idle:
    """No session in progress."""


@dataclass(frozen=True)
class Active:
    """Waiting for a choice at a decision node."""

    vignette: Vignette
    node_id: str
    node_started_ms: float

    @property
    def node(self) -> DecisionNode:
        return self.vignette.node(self.node_id)


@dataclass(frozen=True)
class Feedback:
    """A choice was made; its feedback is showing and the node has not advanced."""

    vignette: Vignette
    node_id: str
    choice: Choice
    time_spent_ms: int

    @property
    def node(self) -> DecisionNode:
        return self.vignette.node(self.node_id)


@dataclass(frozen=True)
class Complete:
    """An outcome node was reached."""

    vignette: Vignette
    node_id: str

    @property
    def node(self) -> DecisionNode:
        return self.vignette.node(self.node_id)


EngineState = Union[Idle, Active, Feedback, Complete]

# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class Start:
    vignette: Vignette
    at_ms: float


@dataclass(frozen=True)
class Choose:
    choice_id: str
    at_ms: float


@dataclass(frozen=True)
class Continue:
    at_ms: float


@dataclass(frozen=True)
class Reset:
    pass


EngineEvent = Union[Start, Choose, Continue, Reset]


def state_name(state: EngineState) -> str:
    return type(state).__name__.lower()


def ensure_valid(vignette: Vignette) -> None:
    """Fail fast on content that would break traversal later."""
    problems = find_graph_problems(vignette)
    if problems:
        raise InvalidVignetteError(vignette.id, problems)


def _enter(vignette: Vignette, node_id: str, at_ms: float) -> Active | Complete:
    if vignette.node(node_id).is_outcome:
        return Complete(vignette=vignette, node_id=node_id)
    return Active(vignette=vignette, node_id=node_id, node_started_ms=at_ms)


def transition(state: EngineState, event: EngineEvent) -> EngineState:
    """
    Compute the next state.

    Returns the same state object when the event is an accepted no-op
    (a second choice while feedback is showing, or continuing from a
    choice with no next node).

    Raises:
        InvalidVignetteError: Start with content that violates graph invariants
        InvalidChoiceError: Choose with an id the current node does not offer
        InvalidTransitionError: Event not allowed in the current state
    """
    if isinstance(event, Reset):
        return Idle()

    if isinstance(event, Start):
        ensure_valid(event.vignette)
        return _enter(event.vignette, event.vignette.root_node_id, event.at_ms)

    if isinstance(event, Choose):
        if isinstance(state, Feedback):
            return state
        if not isinstance(state, Active):
            raise InvalidTransitionError("make_choice", state_name(state))

        choice = state.node.find_choice(event.choice_id)
        if choice is None:
            raise InvalidChoiceError(state.node_id, event.choice_id)

        elapsed = max(0, round(event.at_ms - state.node_started_ms))
        return Feedback(
            vignette=state.vignette,
            node_id=state.node_id,
            choice=choice,
            time_spent_ms=elapsed,
        )

    if isinstance(event, Continue):
        if not isinstance(state, Feedback):
            raise InvalidTransitionError("continue_after_feedback", state_name(state))
        if state.choice.next_node_id is None:
            return state
        return _enter(state.vignette, state.choice.next_node_id, event.at_ms)

    raise TypeError(f"Unknown event: {event!r}")
