"""
Typer CLI for the nexus mastery engine.

Commands:
    nexus init-db                       - Create database tables
    nexus add-student s1 --grade 4      - Register a student
    nexus record s1 MATH.4.NF.1 1.0     - Record an interaction
    nexus scores s1                     - Nexus scores, best first
    nexus reviews s1 --days 7           - Upcoming reviews and summary
    nexus profile s1                    - XP, level, streak, badges
    nexus unlock s1                     - Re-evaluate branch unlocks
    nexus choose s1 fractions-visual    - Choose a branch
    nexus tree s1                       - Branch points and their branches

Every command works against the SQL store (settings.database_url unless
--database is given) so state persists between invocations.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from src.core.engine import MasteryEngine, build_engine
from src.core.errors import EngineError
from src.core.logging_setup import configure_logging
from src.core.mastery import InteractionOutcome, MasteryLevel, calculate_days_since
from src.graph.loader import load_graph

console = Console()

app = typer.Typer(
    help="Nexus CLI: mastery ledger, nexus scores, branches, reviews and gamification",
    no_args_is_help=True,
)

DatabaseOption = Annotated[
    str | None, typer.Option("--database", "-d", help="SQLAlchemy URL (defaults to settings.database_url)")
]
CurriculumOption = Annotated[
    Path | None, typer.Option("--curriculum", "-c", help="Knowledge graph YAML/JSON file")
]


def _open_engine(database: str | None, curriculum: Path | None) -> MasteryEngine:
    from src.db.database import configure_engine, init_db
    from src.db.store import SqlAlchemyLedgerStore

    settings = get_settings()
    if database:
        configure_engine(database)
    init_db()
    graph = load_graph(curriculum or Path(settings.curriculum_path))
    return build_engine(settings, graph=graph, store=SqlAlchemyLedgerStore())


def _fail(err: EngineError) -> None:
    rprint(f"[red]✗ {err.kind.value}:[/red] {err}")
    for key, value in err.context.items():
        rprint(f"  [dim]{key}:[/dim] {value}")
    raise typer.Exit(code=1)


def _level_cell(level: MasteryLevel) -> str:
    return f"[{level.color}]{level.emoji} {level.display_name}[/{level.color}]"


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
) -> None:
    """Nexus mastery engine CLI."""
    configure_logging(level="DEBUG" if verbose else "WARNING")


# ========================================
# Setup
# ========================================


@app.command("init-db")
def init_database(database: DatabaseOption = None) -> None:
    """
    Create database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from src.db.database import configure_engine, init_db

    if database:
        configure_engine(database)
    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("add-student")
def add_student(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    name: Annotated[str, typer.Option("--name", "-n", help="Display name")] = "",
    grade: Annotated[int | None, typer.Option("--grade", "-g", help="Grade level (0 = K)")] = None,
    domain: Annotated[str | None, typer.Option("--domain", help="Domain focus")] = None,
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Register a student."""
    engine = _open_engine(database, curriculum)
    profile = engine.register_student(student_id, display_name=name, grade_level=grade, domain_focus=domain)
    rprint(f"[green]✓[/green] Registered [cyan]{profile.student_id}[/cyan] ({profile.display_name})")


# ========================================
# Ledger
# ========================================


@app.command("record")
def record(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    node_id: Annotated[str, typer.Argument(help="Knowledge node identifier")],
    credit: Annotated[float, typer.Argument(help="Credit earned, 0.0-1.0")],
    latency_ms: Annotated[float, typer.Option("--latency", "-l", help="Response time in ms")] = 0,
    hints: Annotated[int, typer.Option("--hints", help="Hints used")] = 0,
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Record one interaction and show the resulting mastery level."""
    engine = _open_engine(database, curriculum)
    try:
        outcome = InteractionOutcome(credit=credit, latency_ms=latency_ms, hint_count=hints)
        result = engine.record_interaction(student_id, node_id, outcome)
    except EngineError as e:
        _fail(e)

    rec = result.record
    rprint(f"[green]✓[/green] {node_id}: {_level_cell(rec.mastery_level)}")
    if rec.truly_mastered:
        rprint("  [bold green]★ Truly mastered[/bold green]")
    if rec.next_review_due:
        rprint(f"  Next review: [cyan]{rec.next_review_due:%Y-%m-%d}[/cyan]")
    for branch_id in sorted(result.unlocked_branches):
        rprint(f"  [yellow]🔓 Unlocked branch {branch_id}[/yellow]")


@app.command("scores")
def scores(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Show nexus scores for every practiced node, best first."""
    engine = _open_engine(database, curriculum)
    try:
        results = engine.get_all_nexus_scores(student_id)
    except EngineError as e:
        _fail(e)

    if not results:
        rprint("[dim]No interactions recorded yet.[/dim]")
        return

    now = engine.clock.now()
    table = Table(title=f"Nexus Scores: {student_id}", show_header=True)
    table.add_column("Node", style="cyan")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Accuracy", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Fit", justify="right")
    table.add_column("Level")
    table.add_column("Attempts", justify="right", style="dim")
    table.add_column("Last seen", justify="right", style="dim")
    for s in results:
        days = calculate_days_since(s.last_interaction_at, now)
        table.add_row(
            s.node_id,
            str(s.score),
            f"{s.components.accuracy:.0f}",
            f"{s.components.confidence:.0f}",
            f"{s.components.fit:.0f}",
            _level_cell(s.mastery_level) + (" ★" if s.truly_mastered else ""),
            str(s.interaction_count),
            f"{days:.1f}d ago" if days is not None else "-",
        )
    console.print(table)


# ========================================
# Reviews
# ========================================


@app.command("reviews")
def reviews(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    days: Annotated[int | None, typer.Option("--days", help="Forecast window in days")] = None,
    forecast: Annotated[bool, typer.Option("--forecast", help="Show review load per day")] = False,
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Show upcoming reviews and the due summary."""
    engine = _open_engine(database, curriculum)
    try:
        upcoming = engine.get_upcoming_reviews(student_id, days)
        summary = engine.get_due_review_summary(student_id, days)
        due_now = engine.get_due_nodes(student_id)
        per_day = engine.get_review_forecast(student_id, days) if forecast else []
    except EngineError as e:
        _fail(e)

    rprint(
        f"[red]Overdue: {summary.overdue}[/red]  "
        f"[yellow]Today: {summary.due_today}[/yellow]  "
        f"[green]This week: {summary.due_this_week}[/green]  "
        f"[dim]Scheduled: {summary.scheduled}[/dim]"
    )
    if due_now:
        rprint(f"[bold]Due now:[/bold] {', '.join(due_now)}")

    if per_day:
        load = Table(title="Review Forecast", show_header=True)
        load.add_column("Day", style="cyan")
        load.add_column("Reviews", justify="right")
        load.add_column("Load")
        load.add_column("Nodes", style="dim", max_width=50)
        for day in per_day:
            load.add_row(str(day.day), str(day.count), "[green]" + "█" * day.count + "[/green]", ", ".join(day.node_ids))
        console.print(load)

    if not upcoming:
        rprint("[dim]Nothing due in this window.[/dim]")
        return

    table = Table(title="Upcoming Reviews", show_header=True)
    table.add_column("Due", style="cyan")
    table.add_column("Node")
    table.add_column("Title", max_width=40)
    table.add_column("Interval", justify="right", style="dim")
    for r in upcoming:
        due = f"[red]{r.due_date} (overdue)[/red]" if r.overdue else str(r.due_date)
        table.add_row(due, r.node_id, r.title, f"{r.interval_days:g}d")
    console.print(table)


# ========================================
# Gamification
# ========================================


@app.command("profile")
def profile(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Show XP, level, streak, badges and boss eligibility."""
    engine = _open_engine(database, curriculum)
    try:
        state = engine.get_student_gamification_data(student_id)
    except EngineError as e:
        _fail(e)

    to_next = f" ({state.xp_to_next_level} XP to next)" if state.xp_to_next_level is not None else " (max level)"
    rprint(f"[bold cyan]{student_id}[/bold cyan]  Level {state.level} [magenta]{state.level_title}[/magenta]")
    rprint(f"  XP: [bold]{state.xp}[/bold]{to_next}")
    rprint(f"  Streak: 🔥 {state.streak} day(s), longest {state.longest_streak}")

    details = engine.gamification.get_badge_details(state)
    if details:
        table = Table(title="Badges", show_header=True)
        table.add_column("", width=3)
        table.add_column("Badge", style="cyan")
        table.add_column("Description", style="dim")
        for badge in details:
            table.add_row(badge["icon"], badge["name"], badge["description"])
        console.print(table)

    eligible = [name for name, ok in sorted(state.boss_eligibility.items()) if ok]
    if eligible:
        rprint(f"  [bold red]Boss battles unlocked:[/bold red] {', '.join(eligible)}")


# ========================================
# Branches
# ========================================


@app.command("unlock")
def unlock(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Re-evaluate branch unlocks for a student."""
    engine = _open_engine(database, curriculum)
    try:
        unlocked = engine.check_branch_unlock(student_id)
    except EngineError as e:
        _fail(e)

    if not unlocked:
        rprint("[dim]No new branches unlocked.[/dim]")
    for branch_id in sorted(unlocked):
        rprint(f"[yellow]🔓 {branch_id}[/yellow]")


@app.command("choose")
def choose(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    branch_id: Annotated[str, typer.Argument(help="Branch identifier")],
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Choose an unlocked branch."""
    engine = _open_engine(database, curriculum)
    try:
        result = engine.choose_branch(student_id, branch_id)
    except EngineError as e:
        _fail(e)

    logger.debug(f"choose {student_id}/{branch_id}: {result.to_dict()}")
    rprint(f"[green]✓[/green] Chose [cyan]{branch_id}[/cyan] at {result.node_id}")
    if result.completed:
        rprint("  [bold green]Branch complete![/bold green]")
    else:
        rprint(f"  Next node: [cyan]{result.next_node}[/cyan]")


@app.command("tree")
def tree(
    student_id: Annotated[str, typer.Argument(help="Student identifier")],
    domain: Annotated[str | None, typer.Option("--domain", help="Restrict to one domain")] = None,
    database: DatabaseOption = None,
    curriculum: CurriculumOption = None,
) -> None:
    """Show branch points with each branch's state and progress."""
    engine = _open_engine(database, curriculum)
    try:
        points = engine.get_topic_tree(student_id, domain)
    except EngineError as e:
        _fail(e)

    if not points:
        rprint("[dim]No branch points in this curriculum.[/dim]")
        return

    for point in points:
        exclusive = " [dim](choose one)[/dim]" if point.exclusive_choice else ""
        table = Table(title=f"{point.code} {point.title}{exclusive}", show_header=True)
        table.add_column("Branch", style="cyan")
        table.add_column("State")
        table.add_column("Progress", justify="right")
        table.add_column("Next / missing", style="dim")
        for b in point.branches:
            state = b.state.value + (" ★" if b.is_active_choice else "")
            if b.missing_prerequisites:
                detail = "needs " + ", ".join(b.missing_prerequisites)
            else:
                detail = next((n.node_id for n in b.nodes if n.is_next), "")
            table.add_row(
                b.title or b.branch_id,
                state,
                f"{b.nodes_completed}/{b.total_nodes} ({b.progress}%)",
                detail,
            )
        console.print(table)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
