"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.vignette.models import Vignette  # noqa: E402

FIXED_NOW = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database)")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


class FakeClock:
    """Monotonic millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0):
        self.ms = start

    def __call__(self) -> float:
        return self.ms

    def advance(self, ms: float) -> None:
        self.ms += ms


class FakeNow:
    """Wall clock returning a fixed instant, advanced by hand."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs) -> None:
        self.value += timedelta(**kwargs)


class IdSequence:
    def __init__(self, prefix: str = "session"):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def branching_vignette_data() -> dict:
    """
    A -> B (optimal) / C (acceptable) / D (poor)
    B -> OUT-GOOD (optimal) / OUT-BAD (poor)
    C, D, OUT-GOOD, OUT-BAD are outcomes.
    """
    return {
        "id": "vig-branch",
        "title": "Branching test case",
        "initialScenario": "A patient presents with a headache.",
        "rootNodeId": "A",
        "nodes": {
            "A": {
                "id": "A",
                "type": "decision",
                "question": "First step?",
                "choices": [
                    {"id": "a-opt", "text": "Optimal", "isOptimal": True, "isAcceptable": True, "nextNodeId": "B"},
                    {"id": "a-ok", "text": "Acceptable", "isOptimal": False, "isAcceptable": True, "nextNodeId": "C"},
                    {"id": "a-bad", "text": "Poor", "isOptimal": False, "isAcceptable": False, "nextNodeId": "D"},
                    {"id": "a-stuck", "text": "Dead end", "isOptimal": False, "isAcceptable": False},
                ],
            },
            "B": {
                "id": "B",
                "type": "decision",
                "question": "Second step?",
                "clinicalPearl": "Remember the pearl.",
                "choices": [
                    {"id": "b-opt", "text": "Optimal", "isOptimal": True, "isAcceptable": True, "nextNodeId": "OUT-GOOD"},
                    {"id": "b-bad", "text": "Poor", "isOptimal": False, "isAcceptable": False, "nextNodeId": "OUT-BAD"},
                ],
            },
            "C": {"id": "C", "type": "outcome", "content": "Acceptable outcome."},
            "D": {"id": "D", "type": "outcome", "content": "Poor outcome."},
            "OUT-GOOD": {"id": "OUT-GOOD", "type": "outcome", "content": "Good outcome."},
            "OUT-BAD": {"id": "OUT-BAD", "type": "outcome", "content": "Bad outcome."},
        },
        "metadata": {
            "system": "Neurology",
            "topic": "Headache",
            "difficulty": "beginner",
            "tags": ["headache", "triage"],
        },
    }


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def vignette_data():
    return branching_vignette_data()


@pytest.fixture
def vignette(vignette_data):
    return Vignette.model_validate(vignette_data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def now():
    return FakeNow()


@pytest.fixture
def ids():
    return IdSequence()


@pytest.fixture
def sleep():
    return RecordingSleep()
