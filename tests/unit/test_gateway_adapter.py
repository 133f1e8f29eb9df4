"""
Unit tests for the in-memory gateway and the persistence adapter.

Tests:
- Merge semantics of update_progress
- Transient failures absorbed by retries
- Exhausted retries leave a resumable pending write
- Resuming never re-saves the session or counts a completion twice
- Resuming folds on top of progress written by a later session
"""

import pytest

from src.vignette.engine import DecisionEngine
from src.vignette.errors import NotFoundError, PersistenceIOError
from src.vignette.gateway import InMemoryGateway
from src.vignette.models import MasteryLevel
from src.vignette.retry import RetryPolicy


class FlakyGateway(InMemoryGateway):
    """InMemoryGateway that fails chosen operations a set number of times."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures: dict[str, int] = {}
        self.calls: dict[str, int] = {}

    def fail(self, operation: str, times: int) -> None:
        self.failures[operation] = times

    def _tick(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if self.failures.get(operation, 0) > 0:
            self.failures[operation] -= 1
            raise PersistenceIOError(operation, "connection reset")

    async def get_progress(self, vignette_id):
        self._tick("get_progress")
        return await super().get_progress(vignette_id)

    async def save_session(self, session):
        self._tick("save_session")
        await super().save_session(session)

    async def update_progress(self, vignette_id, partial):
        self._tick("update_progress")
        await super().update_progress(vignette_id, partial)


@pytest.fixture
def gateway(vignette, now):
    return FlakyGateway([vignette], now=now)


@pytest.fixture
def events():
    return []


@pytest.fixture
def engine(gateway, clock, now, ids, sleep, events):
    return DecisionEngine(
        gateway,
        retry_policy=RetryPolicy(max_retries=2),
        listeners=[events.append],
        clock=clock,
        now=now,
        id_factory=ids,
        sleep=sleep,
    )


def finish_optimally(engine, vignette):
    engine.start_vignette(vignette)
    for choice_id in ("a-opt", "b-opt"):
        engine.make_choice(choice_id)
        engine.continue_after_feedback()


class TestInMemoryGateway:
    @pytest.mark.asyncio
    async def test_unknown_vignette(self, now):
        with pytest.raises(NotFoundError):
            await InMemoryGateway(now=now).get_vignette("missing")

    @pytest.mark.asyncio
    async def test_update_merges_partial(self, now):
        gateway = InMemoryGateway(now=now)

        await gateway.update_progress("vig-1", {"completions": 2, "overallMastery": "familiar"})
        await gateway.update_progress("vig-1", {"completions": 3})

        progress = await gateway.get_progress("vig-1")
        assert progress.completions == 3
        assert progress.overall_mastery is MasteryLevel.FAMILIAR
        assert progress.next_review == now()

    @pytest.mark.asyncio
    async def test_delete_progress(self, now):
        gateway = InMemoryGateway(now=now)
        await gateway.update_progress("vig-1", {"completions": 1})

        await gateway.delete_progress("vig-1")
        await gateway.delete_progress("vig-1")

        assert await gateway.get_progress("vig-1") is None


class TestPersistenceFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, engine, gateway, vignette, sleep):
        finish_optimally(engine, vignette)
        gateway.fail("save_session", 2)

        result = await engine.end_session()

        assert result.persisted
        assert gateway.calls["save_session"] == 3
        assert len(sleep.calls) == 2
        assert engine.pending == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_keep_pending_write(self, engine, gateway, vignette, events):
        finish_optimally(engine, vignette)
        gateway.fail("save_session", 5)

        result = await engine.end_session()

        assert result.persisted is False
        assert isinstance(result.error, PersistenceIOError)
        assert result.progress.completions == 1
        assert len(engine.pending) == 1
        assert events[-1].kind == "persistence_failed"
        assert engine.state_name == "idle"
        assert await gateway.get_progress("vig-branch") is None

    @pytest.mark.asyncio
    async def test_flush_resumes_without_resaving_session(self, engine, gateway, vignette):
        finish_optimally(engine, vignette)
        gateway.fail("update_progress", 5)

        failed = await engine.end_session()
        assert failed.persisted is False
        assert gateway.calls["save_session"] == 1

        results = await engine.flush_pending()

        assert [r.persisted for r in results] == [True]
        assert engine.pending == []
        assert gateway.calls["save_session"] == 1
        assert results[0].progress.completions == 1
        assert await gateway.get_progress("vig-branch") == failed.progress
        assert len(await gateway.all_sessions()) == 1

    @pytest.mark.asyncio
    async def test_flush_folds_over_later_session(self, engine, gateway, vignette, now):
        engine.start_vignette(vignette)
        engine.make_choice("a-ok")
        engine.continue_after_feedback()
        gateway.fail("update_progress", 3)
        first = await engine.end_session()
        assert first.persisted is False

        now.advance(hours=1)
        finish_optimally(engine, vignette)
        second = await engine.end_session()
        assert second.persisted
        assert second.progress.completions == 1

        results = await engine.flush_pending()

        assert [r.persisted for r in results] == [True]
        progress = await gateway.get_progress("vig-branch")
        assert progress.completions == 2
        assert progress.node_performance["A"].attempts == 2
        assert progress.node_performance["A"].optimal_choices == 1
        assert progress.node_performance["A"].acceptable_choices == 1
        assert progress.node_performance["B"].attempts == 1
        assert len(await gateway.all_sessions()) == 2

    @pytest.mark.asyncio
    async def test_confirmed_progress_is_not_written_again(self, engine, gateway, vignette):
        finish_optimally(engine, vignette)
        await engine.end_session()

        results = await engine.flush_pending()

        assert results == []
        assert gateway.calls["update_progress"] == 1
        assert (await gateway.get_progress("vig-branch")).completions == 1

    @pytest.mark.asyncio
    async def test_flush_keeps_still_failing_writes(self, engine, gateway, vignette):
        finish_optimally(engine, vignette)
        gateway.fail("get_progress", 100)

        await engine.end_session()
        results = await engine.flush_pending()

        assert results[0].persisted is False
        assert len(engine.pending) == 1
        assert engine.pending[0].attempts == 2

    @pytest.mark.asyncio
    async def test_engine_usable_after_failed_write(self, engine, gateway, vignette):
        finish_optimally(engine, vignette)
        gateway.fail("save_session", 5)
        await engine.end_session()

        result = engine.start_vignette(vignette)

        assert result.ok
        assert engine.current_node.id == "A"
