"""
Mastery Calculator for clinical vignettes.

Folds a finished session into per-node performance and classifies overall
mastery:

    mastered  - 3+ completions and every node >= 80% optimal
    familiar  - 3+ completions and every node attempted at least twice
    familiar  - at least one completion
    learning  - otherwise

Branches are evaluated in that order; the first match wins. The thresholds
are fixed and not exposed through settings.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum

from .models import (
    DecisionRecord,
    MasteryLevel,
    NodePerformance,
    Vignette,
    VignetteProgress,
    VignetteSession,
)
from .scheduler import ReviewScheduler


class CompletionPolicy(str, Enum):
    """Which ended sessions are folded into progress."""

    OUTCOME_ONLY = "outcome_only"  # last decision led to an outcome node
    ANY_ENDED = "any_ended"  # every ended session, including abandoned ones


class MasteryCalculator:
    """
    Derives VignetteProgress from prior progress and an ended session.

    Averages use the incremental mean recurrence so per-decision history
    never needs to be retained.
    """

    MASTERY_MIN_COMPLETIONS = 3
    MASTERY_OPTIMAL_RATIO = 0.8
    FAMILIAR_MIN_ATTEMPTS = 2

    def __init__(
        self,
        scheduler: ReviewScheduler | None = None,
        policy: CompletionPolicy = CompletionPolicy.OUTCOME_ONLY,
    ):
        self.scheduler = scheduler or ReviewScheduler()
        self.policy = CompletionPolicy(policy)

    # =========================================================================
    # Folding
    # =========================================================================

    def fold_decision(
        self,
        performance: NodePerformance | None,
        decision: DecisionRecord,
    ) -> NodePerformance:
        """Add one decision to a node's running totals."""
        current = performance or NodePerformance()
        attempts = current.attempts + 1
        avg_time_ms = (current.avg_time_ms * current.attempts + decision.time_spent_ms) / attempts

        return NodePerformance(
            attempts=attempts,
            optimal_choices=current.optimal_choices + (1 if decision.was_optimal else 0),
            acceptable_choices=current.acceptable_choices
            + (1 if decision.was_acceptable and not decision.was_optimal else 0),
            avg_time_ms=avg_time_ms,
        )

    def fold_decisions(
        self,
        node_performance: Mapping[str, NodePerformance],
        decisions: Iterable[DecisionRecord],
    ) -> dict[str, NodePerformance]:
        """Fold decisions in order, returning a new performance map."""
        folded = dict(node_performance)
        for decision in decisions:
            folded[decision.node_id] = self.fold_decision(folded.get(decision.node_id), decision)
        return folded

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(
        self,
        completions: int,
        node_performance: Mapping[str, NodePerformance],
    ) -> MasteryLevel:
        performances = list(node_performance.values())

        if completions >= self.MASTERY_MIN_COMPLETIONS and all(
            np.attempts > 0 and np.optimal_choices / np.attempts >= self.MASTERY_OPTIMAL_RATIO
            for np in performances
        ):
            return MasteryLevel.MASTERED

        if completions >= self.MASTERY_MIN_COMPLETIONS and all(
            np.attempts >= self.FAMILIAR_MIN_ATTEMPTS for np in performances
        ):
            return MasteryLevel.FAMILIAR

        if completions >= 1:
            return MasteryLevel.FAMILIAR

        return MasteryLevel.LEARNING

    # =========================================================================
    # Session Evaluation
    # =========================================================================

    @staticmethod
    def reached_outcome(session: VignetteSession, vignette: Vignette) -> bool:
        """True when the last recorded choice leads to an outcome node."""
        if not session.decisions:
            return False

        last = session.decisions[-1]
        node = vignette.nodes.get(last.node_id)
        choice = node.find_choice(last.choice_id) if node else None
        if choice is None or choice.next_node_id is None:
            return False

        next_node = vignette.nodes.get(choice.next_node_id)
        return next_node is not None and next_node.is_outcome

    def counts(self, session: VignetteSession, vignette: Vignette) -> bool:
        """Whether the configured policy folds this session into progress."""
        if self.policy is CompletionPolicy.ANY_ENDED:
            return True
        return self.reached_outcome(session, vignette)

    def calculate_progress(
        self,
        prior: VignetteProgress | None,
        session: VignetteSession,
        vignette: Vignette,
        now: datetime | None = None,
    ) -> VignetteProgress:
        """
        Fold an ended session into prior progress.

        Pure: the same inputs always produce the same progress, which lets a
        failed write be retried with the identical record.

        Args:
            prior: Stored progress, or None for a first session
            session: The ended session
            vignette: The vignette the session ran on
            now: Completion time; defaults to the session's endedAt

        Returns:
            The superseding VignetteProgress
        """
        completed_at = now or session.ended_at or session.started_at
        completions = (prior.completions if prior else 0) + 1
        node_performance = self.fold_decisions(
            prior.node_performance if prior else {},
            session.decisions,
        )
        mastery = self.classify(completions, node_performance)

        return VignetteProgress(
            vignette_id=vignette.id,
            completions=completions,
            last_completed=completed_at,
            node_performance=node_performance,
            overall_mastery=mastery,
            next_review=self.scheduler.next_review(mastery, completed_at),
        )
