"""
Review Scheduler for vignettes.

Three fixed buckets instead of an SM-2 style interval:

    mastered -> 7 days
    familiar -> 3 days
    learning -> 1 day

Intervals are added as calendar days, so a review scheduled at 09:00 lands
at 09:00 local time on the target day regardless of month/year boundaries.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import MasteryLevel, VignetteProgress

REVIEW_INTERVAL_DAYS: dict[MasteryLevel, int] = {
    MasteryLevel.MASTERED: 7,
    MasteryLevel.FAMILIAR: 3,
    MasteryLevel.LEARNING: 1,
}


class ReviewScheduler:
    """Maps a mastery level to the next review timestamp."""

    def days_until_review(self, mastery: MasteryLevel) -> int:
        return REVIEW_INTERVAL_DAYS[MasteryLevel(mastery)]

    def next_review(self, mastery: MasteryLevel, now: datetime) -> datetime:
        """
        Calculate when a vignette should resurface.

        Args:
            mastery: Overall mastery after the latest session
            now: Reference time (tz-aware recommended)

        Returns:
            now shifted by the bucket's number of calendar days
        """
        # datetime + timedelta(days=n) is wall-clock arithmetic, even on tz-aware values
        return now + timedelta(days=self.days_until_review(mastery))

    def is_due(self, progress: VignetteProgress | None, now: datetime) -> bool:
        """A vignette without progress is always due."""
        if progress is None:
            return True
        return progress.next_review <= now
