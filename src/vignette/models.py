"""
Vignette data models.

Content (Vignette, DecisionNode, Choice) is immutable and shared by
reference across sessions. Session and progress records use the camelCase
field names of the storage contract when serialized:

    progress.model_dump(by_alias=True, mode="json")
    VignetteProgress.model_validate(payload)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Frozen model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Convert to the JSON-ready storage shape."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Enums
# =============================================================================


class NodeType(str, Enum):
    DECISION = "decision"
    OUTCOME = "outcome"


class MasteryLevel(str, Enum):
    """Overall mastery of a vignette, lowest to highest."""

    LEARNING = "learning"
    FAMILIAR = "familiar"
    MASTERED = "mastered"


# =============================================================================
# Content Models
# =============================================================================


class Choice(WireModel):
    """An out-edge of a decision node."""

    id: str
    text: str
    is_optimal: bool = False
    is_acceptable: bool = False
    next_node_id: str | None = None
    feedback: str | None = None
    consequence: str | None = None


class DecisionNode(WireModel):
    """A decision point, or a terminal outcome when it has no choices."""

    id: str
    type: NodeType
    choices: tuple[Choice, ...] = ()
    content: str | None = None
    question: str | None = None
    clinical_pearl: str | None = None

    @property
    def is_outcome(self) -> bool:
        return self.type is NodeType.OUTCOME

    def find_choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class VignetteMetadata(WireModel):
    """Catalogue information used for filtering and search."""

    system: str = ""
    topic: str = ""
    difficulty: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    concept_codes: tuple[str, ...] = ()
    estimated_minutes: int | None = None
    tags: tuple[str, ...] = ()


class Vignette(WireModel):
    """
    A branching clinical scenario.

    Nodes live in a flat map keyed by id, so choices may point back to
    earlier nodes without any structural cycle handling.
    """

    id: str
    root_node_id: str
    nodes: dict[str, DecisionNode]
    title: str = ""
    initial_scenario: str = ""
    schema_version: str = "1.0"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: VignetteMetadata = Field(default_factory=VignetteMetadata)

    @property
    def root_node(self) -> DecisionNode | None:
        return self.nodes.get(self.root_node_id)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> DecisionNode:
        return self.nodes[node_id]


def find_graph_problems(vignette: Vignette) -> list[str]:
    """
    Check a vignette against the node graph invariants.

    Returns:
        Human-readable problems, empty when the vignette is valid
    """
    problems: list[str] = []

    if vignette.root_node_id not in vignette.nodes:
        problems.append(f"root node {vignette.root_node_id!r} is missing")

    for key, node in vignette.nodes.items():
        if key != node.id:
            problems.append(f"node keyed {key!r} has id {node.id!r}")

        if node.type is NodeType.DECISION and not node.choices:
            problems.append(f"decision node {node.id!r} has no choices")
        if node.type is NodeType.OUTCOME and node.choices:
            problems.append(f"outcome node {node.id!r} has choices")

        seen: set[str] = set()
        for choice in node.choices:
            if choice.id in seen:
                problems.append(f"node {node.id!r} repeats choice {choice.id!r}")
            seen.add(choice.id)

            if choice.is_optimal and not choice.is_acceptable:
                problems.append(f"choice {choice.id!r} is optimal but not acceptable")
            if choice.next_node_id is not None and choice.next_node_id not in vignette.nodes:
                problems.append(
                    f"choice {choice.id!r} points to missing node {choice.next_node_id!r}"
                )

    return problems


# =============================================================================
# Session & Progress Records
# =============================================================================


class DecisionRecord(WireModel):
    """One accepted choice. Write-once."""

    node_id: str
    choice_id: str
    was_optimal: bool
    was_acceptable: bool
    time_spent_ms: int = Field(ge=0)
    timestamp: datetime


class VignetteSession(WireModel):
    """A single run through a vignette."""

    id: str
    vignette_id: str
    started_at: datetime
    ended_at: datetime | None = None
    decisions: tuple[DecisionRecord, ...] = ()
    completed_optimally: bool = True

    @property
    def is_closed(self) -> bool:
        return self.ended_at is not None

    @property
    def path_taken(self) -> list[str]:
        return [decision.node_id for decision in self.decisions]


class NodePerformance(WireModel):
    """Aggregated performance at one node across all sessions."""

    attempts: int = Field(default=0, ge=0)
    optimal_choices: int = Field(default=0, ge=0)
    acceptable_choices: int = Field(default=0, ge=0)
    avg_time_ms: float = Field(default=0.0, ge=0)

    @property
    def optimal_ratio(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.optimal_choices / self.attempts


class VignetteProgress(WireModel):
    """Per-vignette learner progress. Replaced, never appended."""

    vignette_id: str
    completions: int = Field(default=0, ge=0)
    last_completed: datetime | None = None
    node_performance: dict[str, NodePerformance] = Field(default_factory=dict)
    overall_mastery: MasteryLevel = MasteryLevel.LEARNING
    next_review: datetime

    def to_partial(self) -> dict[str, Any]:
        """Fields sent to the gateway's merge/upsert, without the key."""
        payload = self.to_wire()
        payload.pop("vignetteId")
        return payload


def default_progress(vignette_id: str, now: datetime) -> VignetteProgress:
    """Progress for a vignette nobody has completed yet (due immediately)."""
    return VignetteProgress(vignette_id=vignette_id, next_review=now)


def merge_progress(
    existing: VignetteProgress | None,
    vignette_id: str,
    partial: dict[str, Any],
    now: datetime,
) -> VignetteProgress:
    """Apply a partial camelCase update on top of stored (or default) progress."""
    base = existing or default_progress(vignette_id, now)
    payload = base.to_wire()
    payload.update(partial)
    payload["vignetteId"] = vignette_id
    return VignetteProgress.model_validate(payload)
