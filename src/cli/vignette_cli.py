"""
Vignettes CLI - clinical decision practice from the terminal.

Usage:
    vignettes list                 # Catalogue with mastery
    vignettes play <id>            # Work through a vignette
    vignettes stats                # Mastered / familiar / learning / due
    vignettes due                  # Vignettes due for review
    vignettes sessions <id>        # Past sessions for a vignette
    vignettes validate [PATHS]     # Check vignette JSON files
    vignettes add PATHS            # Copy vignettes into the content dir
    vignettes export -o out.json   # Dump progress and sessions
    vignettes import in.json       # Restore progress and sessions
    vignettes reset <id>           # Forget progress for a vignette
"""

from __future__ import annotations

import asyncio
import json
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from src.db.database import create_db_engine, get_session_factory, init_db
from src.db.gateway import SqlPersistenceGateway
from src.vignette.content_store import JsonContentStore, load_vignette_file
from src.vignette.engine import DecisionEngine, EndSessionResult
from src.vignette.errors import InvalidVignetteError, PersistenceIOError
from src.vignette.library import VignetteLibrary, export_data, import_data
from src.vignette.models import MasteryLevel, find_graph_problems
from src.vignette.recorder import summarize_session

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="vignettes",
    help="Clinical vignette decision practice",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

MASTERY_STYLE = {
    MasteryLevel.MASTERED: "green",
    MasteryLevel.FAMILIAR: "yellow",
    MasteryLevel.LEARNING: "red",
}


@dataclass
class AppContext:
    settings: Settings
    store: JsonContentStore
    gateway: SqlPersistenceGateway


def build_context(settings: Settings | None = None) -> AppContext:
    """Wire the content store and SQL gateway from settings."""
    settings = settings or get_settings()
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    store = JsonContentStore(settings.content_dir)
    gateway = SqlPersistenceGateway(store, get_session_factory(engine))
    return AppContext(settings=settings, store=store, gateway=gateway)


async def _load_library(ctx: AppContext) -> VignetteLibrary:
    progress = await ctx.gateway.all_progress()
    return VignetteLibrary(ctx.store.list_vignettes(), progress)


def _mastery_label(level: MasteryLevel) -> str:
    style = MASTERY_STYLE[level]
    return f"[{style}]{level.value}[/]"


# =============================================================================
# Library Commands
# =============================================================================


@app.command("list")
def list_vignettes(
    system: Annotated[str | None, typer.Option("--system", "-s", help="Filter by body system")] = None,
    difficulty: Annotated[
        str | None, typer.Option("--difficulty", "-d", help="beginner / intermediate / advanced")
    ] = None,
    mastery: Annotated[
        MasteryLevel | None, typer.Option("--mastery", "-m", help="Filter by mastery level")
    ] = None,
    search: Annotated[str | None, typer.Option("--search", "-q", help="Free-text search")] = None,
) -> None:
    """List vignettes with their mastery."""
    ctx = build_context()
    library = asyncio.run(_load_library(ctx))

    vignettes = library.vignettes
    for selected in (
        library.by_system(system) if system else None,
        library.by_difficulty(difficulty) if difficulty else None,
        library.by_mastery(mastery) if mastery else None,
        library.search(search) if search else None,
    ):
        if selected is not None:
            keep = {v.id for v in selected}
            vignettes = [v for v in vignettes if v.id in keep]

    table = Table(title="Vignettes")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("System")
    table.add_column("Difficulty")
    table.add_column("Mastery")
    for vignette in vignettes:
        table.add_row(
            vignette.id,
            vignette.title,
            vignette.metadata.system,
            vignette.metadata.difficulty,
            _mastery_label(library.mastery_of(vignette.id)),
        )
    console.print(table)


@app.command()
def stats() -> None:
    """Show mastery distribution and how many vignettes are due."""
    ctx = build_context()
    library = asyncio.run(_load_library(ctx))
    summary = library.stats()

    table = Table(title="Vignette Progress")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total", str(summary.total))
    table.add_row("Mastered", f"[green]{summary.mastered}[/]")
    table.add_row("Familiar", f"[yellow]{summary.familiar}[/]")
    table.add_row("Learning", f"[red]{summary.learning}[/]")
    table.add_row("Due today", str(summary.due_today))
    console.print(table)


@app.command()
def due() -> None:
    """List vignettes due for review."""
    ctx = build_context()
    library = asyncio.run(_load_library(ctx))
    vignettes = library.due_for_review()

    if not vignettes:
        console.print("[green]Nothing due for review.[/]")
        return

    table = Table(title=f"Due for Review ({len(vignettes)})")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Next review")
    for vignette in vignettes:
        progress = library.progress.get(vignette.id)
        when = progress.next_review.strftime("%Y-%m-%d %H:%M") if progress else "never studied"
        table.add_row(vignette.id, vignette.title, when)
    console.print(table)


@app.command()
def sessions(
    vignette_id: Annotated[str, typer.Argument(help="Vignette id")],
) -> None:
    """Show recorded sessions for a vignette."""
    ctx = build_context()
    records = asyncio.run(ctx.gateway.sessions_for_vignette(vignette_id))

    if not records:
        console.print(f"[yellow]No sessions recorded for {vignette_id}[/]")
        return

    table = Table(title=f"Sessions: {vignette_id}")
    table.add_column("Started", style="cyan")
    table.add_column("Decisions", justify="right")
    table.add_column("Optimal", justify="right")
    table.add_column("Time (s)", justify="right")
    table.add_column("All optimal")
    for session in records:
        summary = summarize_session(session)
        table.add_row(
            session.started_at.strftime("%Y-%m-%d %H:%M"),
            str(summary.total),
            f"{summary.optimal_percentage}%",
            f"{summary.total_time_ms / 1000:.1f}",
            "✓" if session.completed_optimally else "✗",
        )
    console.print(table)


@app.command()
def reset(
    vignette_id: Annotated[str, typer.Argument(help="Vignette id")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete stored progress for a vignette. Sessions are kept."""
    if not yes and not typer.confirm(f"Forget progress for {vignette_id}?"):
        raise typer.Abort()

    ctx = build_context()
    asyncio.run(ctx.gateway.delete_progress(vignette_id))
    console.print(f"[green]Progress for {vignette_id} cleared[/]")


# =============================================================================
# Play
# =============================================================================


@app.command()
def play(
    vignette_id: Annotated[str, typer.Argument(help="Vignette id")],
) -> None:
    """Work through a vignette interactively."""
    ctx = build_context()
    asyncio.run(_play(ctx, vignette_id))


async def finish_session(engine: DecisionEngine) -> EndSessionResult:
    """End the session, retrying its writes once more if they were not confirmed."""
    ended = await engine.end_session()
    if ended.persisted:
        return ended

    logger.warning(f"Session {ended.session.id} not saved; retrying before exit")
    for result in await engine.flush_pending():
        if result.session.id == ended.session.id:
            return result
    return ended


async def _play(ctx: AppContext, vignette_id: str) -> None:
    engine = DecisionEngine.from_settings(ctx.gateway, ctx.settings)

    started = await engine.load_vignette(vignette_id)
    if not started.ok:
        console.print(f"[red]{started.error}[/]")
        raise typer.Exit(1)

    vignette = engine.vignette
    console.print(Panel(vignette.initial_scenario, title=vignette.title, border_style="cyan"))

    while not engine.is_complete:
        node = engine.current_node
        if node.content:
            console.print(f"\n{node.content}")
        console.print(
            f"\n[bold]Decision {engine.current_node_index}[/] "
            f"{node.question or 'What do you do?'}"
        )
        for index, choice in enumerate(node.choices, start=1):
            console.print(f"  [cyan]{index}[/]. {choice.text}")

        picked = typer.prompt("Choice", type=int)
        if not 1 <= picked <= len(node.choices):
            console.print("[yellow]Pick one of the listed numbers.[/]")
            continue

        result = engine.make_choice(node.choices[picked - 1].id)
        choice = result.choice
        verdict = (
            "[green]Optimal[/]"
            if choice.is_optimal
            else "[yellow]Acceptable[/]" if choice.is_acceptable else "[red]Suboptimal[/]"
        )
        console.print(Panel(choice.feedback or "", title=verdict, border_style="dim"))
        if choice.consequence:
            console.print(f"[dim]{choice.consequence}[/]")
        if node.clinical_pearl:
            console.print(f"[magenta]Pearl:[/] {node.clinical_pearl}")

        if not engine.continue_after_feedback().accepted:
            console.print("[red]This choice leads nowhere; ending the session.[/]")
            break

    if engine.is_complete and engine.current_node.content:
        console.print(Panel(engine.current_node.content, title="Outcome", border_style="cyan"))

    ended = await finish_session(engine)
    summary = summarize_session(ended.session)
    console.print(
        f"\n{summary.optimal}/{summary.total} optimal ({summary.optimal_percentage}%), "
        f"{summary.acceptable} acceptable, {summary.suboptimal} suboptimal"
    )

    if ended.progress:
        console.print(
            f"Mastery: {_mastery_label(ended.progress.overall_mastery)}  "
            f"Next review: {ended.progress.next_review.strftime('%Y-%m-%d')}"
        )
    if not ended.persisted:
        console.print(f"[red]Progress not saved and discarded: {ended.error}[/]")
        raise typer.Exit(1)


# =============================================================================
# Content Pipeline
# =============================================================================


@app.command()
def validate(
    paths: Annotated[
        list[Path] | None, typer.Argument(help="JSON files or directories (default: content dir)")
    ] = None,
) -> None:
    """Check vignette files for schema and graph problems."""
    targets = paths or [get_settings().content_dir]
    files: list[Path] = []
    for target in targets:
        if target.is_dir():
            files.extend(sorted(target.glob("*.json")))
        else:
            files.append(target)

    if not files:
        console.print("[yellow]No vignette files found[/]")
        return

    failures = 0
    for path in files:
        try:
            vignettes = load_vignette_file(path)
        except InvalidVignetteError as e:
            failures += 1
            console.print(f"[red]✗ {path}[/]")
            for problem in e.problems:
                console.print(f"    {problem}")
            continue

        for vignette in vignettes:
            problems = find_graph_problems(vignette)
            if problems:
                failures += 1
                console.print(f"[red]✗ {path} :: {vignette.id}[/]")
                for problem in problems:
                    console.print(f"    {problem}")
            else:
                console.print(f"[green]✓ {path} :: {vignette.id}[/] ({vignette.node_count} nodes)")

    if failures:
        raise typer.Exit(1)


@app.command()
def add(
    paths: Annotated[list[Path], typer.Argument(help="Vignette JSON files to add")],
) -> None:
    """
    Copy vignettes into the content directory.

    Ids already in the library are skipped. Bundled samples are only served
    while the content directory holds no vignettes.
    """
    settings = get_settings()
    candidates = []
    for path in paths:
        try:
            loaded = load_vignette_file(path)
        except InvalidVignetteError as e:
            console.print(f"[red]✗ {path}: {e}[/]")
            raise typer.Exit(1) from e

        for vignette in loaded:
            problems = find_graph_problems(vignette)
            if problems:
                console.print(f"[red]✗ {path} :: {vignette.id}[/]")
                for problem in problems:
                    console.print(f"    {problem}")
                raise typer.Exit(1)
        candidates.extend(loaded)

    library = VignetteLibrary(JsonContentStore(settings.content_dir).list_vignettes())
    added = library.import_vignettes(candidates)

    settings.content_dir.mkdir(parents=True, exist_ok=True)
    for vignette in added:
        target = settings.content_dir / f"{_safe_filename(vignette.id)}.json"
        target.write_text(json.dumps(vignette.to_wire(), indent=2), encoding="utf-8")
        console.print(f"[green]Added {vignette.id}[/] → {target}")

    skipped = len(candidates) - len(added)
    if skipped:
        console.print(f"[yellow]Skipped {skipped} vignette(s) already in the library[/]")


def _safe_filename(vignette_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", vignette_id)


# =============================================================================
# Export / Import
# =============================================================================


@app.command("export")
def export_command(
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Output file path")
    ] = Path("vignettes_export.json"),
) -> None:
    """Export all progress and sessions to JSON."""
    ctx = build_context()
    try:
        document = asyncio.run(export_data(ctx.gateway))
    except PersistenceIOError as e:
        console.print(f"[red]Export failed: {e}[/]")
        raise typer.Exit(1) from e

    output.write_text(document, encoding="utf-8")
    console.print(f"[green]Exported to {output}[/]")


@app.command("import")
def import_command(
    source: Annotated[Path, typer.Argument(help="Export file to load")],
) -> None:
    """Import progress and sessions from an export file."""
    if not source.exists():
        console.print(f"[red]File not found: {source}[/]")
        raise typer.Exit(1)

    ctx = build_context()
    try:
        result = asyncio.run(import_data(ctx.gateway, source.read_text(encoding="utf-8")))
    except PersistenceIOError as e:
        console.print(f"[red]Import failed: {e}[/]")
        raise typer.Exit(1) from e

    if not result.success:
        console.print(f"[red]Import failed: {result.error}[/]")
        raise typer.Exit(1)
    console.print(
        f"[green]Imported {result.progress_count} progress records "
        f"and {result.session_count} sessions[/]"
    )


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Clinical vignette decision practice."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else get_settings().log_level)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
