"""
Smoke tests for the vignettes CLI against a temporary SQLite file.

Tests:
- Library, play, validate, add, export, import and reset commands
- One last write attempt before play gives up on unsaved progress
"""

import json
import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from config import get_settings
from src.cli.vignette_cli import app, finish_session
from src.vignette.engine import DecisionEngine
from src.vignette.errors import PersistenceIOError
from src.vignette.gateway import InMemoryGateway
from src.vignette.retry import RetryPolicy

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'state.db'}")
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path / "content"))
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    logger.remove()
    logger.add(sys.stderr)


def test_stats_on_fresh_database():
    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0
    assert "Total" in result.output
    assert "Due today" in result.output


def test_play_optimal_path_then_sessions():
    played = runner.invoke(app, ["play", "vignette-stroke-001"], input="2\n1\n2\n")

    assert played.exit_code == 0, played.output
    assert "3/3 optimal (100%)" in played.output

    listed = runner.invoke(app, ["sessions", "vignette-stroke-001"])
    assert listed.exit_code == 0
    assert "100%" in listed.output


def test_play_unknown_vignette_fails():
    result = runner.invoke(app, ["play", "missing"])

    assert result.exit_code == 1


def test_validate_reports_graph_problems(tmp_path, vignette_data):
    good = tmp_path / "good.json"
    good.write_text(json.dumps(vignette_data), encoding="utf-8")
    vignette_data["nodes"]["A"]["choices"][0]["nextNodeId"] = "Z"
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps(vignette_data), encoding="utf-8")

    assert runner.invoke(app, ["validate", str(good)]).exit_code == 0
    assert runner.invoke(app, ["validate", str(bad)]).exit_code == 1


def test_export_then_import(tmp_path):
    runner.invoke(app, ["play", "vignette-chest-pain-001"], input="1\n1\n")
    export_file = tmp_path / "export.json"

    exported = runner.invoke(app, ["export", "--output", str(export_file)])
    assert exported.exit_code == 0
    document = json.loads(export_file.read_text(encoding="utf-8"))
    assert "vignette-chest-pain-001" in document["progress"]

    imported = runner.invoke(app, ["import", str(export_file)])
    assert imported.exit_code == 0
    assert "Imported 1 progress records" in imported.output


def test_reset_clears_progress(tmp_path):
    runner.invoke(app, ["play", "vignette-chest-pain-001"], input="1\n1\n")

    result = runner.invoke(app, ["reset", "vignette-chest-pain-001", "--yes"])

    assert result.exit_code == 0
    document_file = tmp_path / "after.json"
    runner.invoke(app, ["export", "-o", str(document_file)])
    assert json.loads(document_file.read_text(encoding="utf-8"))["progress"] == {}


@pytest.mark.parametrize(
    "args",
    [
        ["list"],
        ["list", "--system", "Cardiology"],
        ["list", "--mastery", "learning", "--search", "stroke"],
        ["due"],
    ],
)
def test_library_commands_run(args):
    assert runner.invoke(app, args).exit_code == 0


def test_add_copies_vignette_into_content_dir(tmp_path, vignette_data):
    source = tmp_path / "new.json"
    source.write_text(json.dumps(vignette_data), encoding="utf-8")

    first = runner.invoke(app, ["add", str(source)])
    second = runner.invoke(app, ["add", str(source)])

    assert first.exit_code == 0, first.output
    stored = json.loads((tmp_path / "content" / "vig-branch.json").read_text(encoding="utf-8"))
    assert stored["rootNodeId"] == "A"
    assert second.exit_code == 0
    assert "Skipped 1" in second.output
    assert sorted(p.name for p in (tmp_path / "content").glob("*.json")) == ["vig-branch.json"]


def test_add_rejects_broken_graph(tmp_path, vignette_data):
    vignette_data["nodes"]["A"]["choices"][0]["nextNodeId"] = "Z"
    source = tmp_path / "broken.json"
    source.write_text(json.dumps(vignette_data), encoding="utf-8")

    result = runner.invoke(app, ["add", str(source)])

    assert result.exit_code == 1
    assert not (tmp_path / "content").exists()


class ProgressOutage(InMemoryGateway):
    """Fails update_progress a set number of times."""

    def __init__(self, *args, failures: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    async def update_progress(self, vignette_id, partial):
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceIOError("update_progress", "disk full")
        await super().update_progress(vignette_id, partial)


def finished_engine(gateway, vignette, clock, now, ids, sleep):
    engine = DecisionEngine(
        gateway,
        retry_policy=RetryPolicy(max_retries=0),
        clock=clock,
        now=now,
        id_factory=ids,
        sleep=sleep,
    )
    engine.start_vignette(vignette)
    for choice_id in ("a-opt", "b-opt"):
        engine.make_choice(choice_id)
        engine.continue_after_feedback()
    return engine


@pytest.mark.asyncio
async def test_finish_session_retries_unsaved_progress(vignette, clock, now, ids, sleep):
    gateway = ProgressOutage([vignette], now=now, failures=1)
    engine = finished_engine(gateway, vignette, clock, now, ids, sleep)

    result = await finish_session(engine)

    assert result.persisted
    assert engine.pending == []
    assert (await gateway.get_progress("vig-branch")).completions == 1


@pytest.mark.asyncio
async def test_finish_session_reports_lasting_failure(vignette, clock, now, ids, sleep):
    gateway = ProgressOutage([vignette], now=now, failures=5)
    engine = finished_engine(gateway, vignette, clock, now, ids, sleep)

    result = await finish_session(engine)

    assert result.persisted is False
    assert isinstance(result.error, PersistenceIOError)
    assert len(engine.pending) == 1
    assert await gateway.get_progress("vig-branch") is None
