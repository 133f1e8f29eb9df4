"""Unit tests for ReviewScheduler."""

from datetime import datetime, timedelta, timezone

import pytest

from src.vignette.models import MasteryLevel, VignetteProgress
from src.vignette.scheduler import ReviewScheduler


@pytest.fixture
def scheduler():
    return ReviewScheduler()


@pytest.mark.parametrize(
    "mastery,days",
    [
        (MasteryLevel.MASTERED, 7),
        (MasteryLevel.FAMILIAR, 3),
        (MasteryLevel.LEARNING, 1),
    ],
)
def test_interval_per_mastery(scheduler, mastery, days):
    now = datetime(2026, 5, 10, 14, 30, tzinfo=timezone.utc)

    assert scheduler.next_review(mastery, now) == now + timedelta(days=days)


def test_higher_mastery_reviews_later(scheduler):
    now = datetime(2026, 5, 10, tzinfo=timezone.utc)

    learning = scheduler.next_review(MasteryLevel.LEARNING, now)
    familiar = scheduler.next_review(MasteryLevel.FAMILIAR, now)
    mastered = scheduler.next_review(MasteryLevel.MASTERED, now)

    assert now < learning < familiar < mastered


def test_year_rollover(scheduler):
    now = datetime(2026, 12, 29, 9, 15, tzinfo=timezone.utc)

    assert scheduler.next_review(MasteryLevel.FAMILIAR, now) == datetime(
        2027, 1, 1, 9, 15, tzinfo=timezone.utc
    )


def test_leap_day(scheduler):
    now = datetime(2028, 2, 27, 8, 0, tzinfo=timezone.utc)

    assert scheduler.next_review(MasteryLevel.FAMILIAR, now) == datetime(
        2028, 3, 1, 8, 0, tzinfo=timezone.utc
    )


def test_accepts_plain_string_level(scheduler):
    assert scheduler.days_until_review("mastered") == 7


class TestIsDue:
    def test_unstudied_vignette_is_due(self, scheduler):
        assert scheduler.is_due(None, datetime.now(timezone.utc))

    def test_due_at_exact_review_time(self, scheduler):
        review = datetime(2026, 5, 10, tzinfo=timezone.utc)
        progress = VignetteProgress(vignette_id="v", next_review=review)

        assert scheduler.is_due(progress, review)

    def test_not_due_before_review_time(self, scheduler):
        review = datetime(2026, 5, 10, tzinfo=timezone.utc)
        progress = VignetteProgress(vignette_id="v", next_review=review)

        assert not scheduler.is_due(progress, review - timedelta(seconds=1))
