"""Main CLI entry point for the project graveyard analysis service."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .completion import AnthropicCompletionClient
from .config import settings
from .dashboard import clear_analysis, load_dashboard, record_feedback
from .errors import GraveyardError
from .locks import build_analysis_lock
from .models import InsightFeedback
from .orchestrate import (
    AnalysisOrchestrator,
    AnalysisOutcome,
    CoachingResult,
    FullAnalysisResult,
    PostMortemResult,
    rejected_summary,
)
from .parsing import RejectedSection
from .store import SqlHistoryStore
from .sync import RowFailure

console = Console()
stderr_console = Console(stderr=True)

T = TypeVar("T")


def setup_logging(level: str) -> None:
    handler = RichHandler(console=stderr_console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.addHandler(handler)


def _run(operation: Callable[[AnalysisOrchestrator], Awaitable[T]]) -> T:
    """Run one orchestrator operation inside a session and map library errors."""

    async def runner() -> T:
        async with db.get_session() as session, AnthropicCompletionClient() as client:
            orchestrator = AnalysisOrchestrator(
                SqlHistoryStore(session), client, lock=build_analysis_lock()
            )
            return await operation(orchestrator)

    try:
        return asyncio.run(runner())
    except GraveyardError as exc:
        raise click.ClickException(str(exc)) from exc


def _print_rejected(rejected: list[RejectedSection]) -> None:
    if not rejected:
        return
    reasons = ", ".join(f"{reason}: {n}" for reason, n in rejected_summary(rejected).items())
    console.print(f"[dim]Filtered {len(rejected)} low-quality insight(s) ({reasons})[/dim]")


def _print_failures(failures: list[RowFailure]) -> None:
    for f in failures:
        console.print(f"[yellow]Could not save {f.table} row {f.key}: {f.error}[/yellow]")


def _print_full_result(result: FullAnalysisResult) -> None:
    if result.needs_more_data:
        console.print(
            Panel(
                f"Only {result.projects_analyzed} project(s) buried so far.\n"
                f"Bury at least {settings.min_projects_for_analysis} to detect patterns.",
                title="Not enough data yet",
                border_style="yellow",
            )
        )
        return

    if result.findings:
        table = Table(title=f"Patterns ({result.projects_analyzed} projects analyzed)")
        table.add_column("Pattern", style="cyan")
        table.add_column("Confidence", justify="right")
        table.add_column("Source")
        table.add_column("Evidence")
        for f in result.findings:
            table.add_row(f.pattern_name, f"{f.confidence:.0%}", f.source, f.evidence)
        console.print(table)

    if result.outcome is AnalysisOutcome.NO_PATTERNS:
        console.print(
            Panel(
                "No significant patterns in your history yet; coaching was skipped.",
                title="No patterns",
                border_style="yellow",
            )
        )
    elif result.outcome is AnalysisOutcome.ALL_FILTERED:
        console.print(
            Panel(
                "Coaching was generated, but every insight was filtered as too generic.",
                title="All insights filtered",
                border_style="yellow",
            )
        )
    else:
        _print_insights(result.insights)

    _print_rejected(result.rejected_insights)
    _print_failures(result.failed_rows)


def _print_insights(insights: list) -> None:
    for insight in insights:
        console.print(
            Panel(
                insight.insight_text,
                title=f"{insight.insight_type} ({insight.confidence_score:.0%})",
                subtitle=insight.id,
            )
        )


def _print_coaching_result(result: CoachingResult) -> None:
    if result.outcome is AnalysisOutcome.NEEDS_PATTERNS:
        console.print(
            Panel(
                "No active patterns yet. Run `graveyard analyze` first.",
                title="Pattern detection needed",
                border_style="yellow",
            )
        )
        return
    console.print(
        f"Coaching from {result.patterns_used} pattern(s) and "
        f"{result.projects_analyzed} recent project(s)"
    )
    if result.outcome is AnalysisOutcome.ALL_FILTERED:
        console.print("[yellow]Every generated insight was filtered as too generic.[/yellow]")
    _print_insights(result.insights)
    _print_rejected(result.rejected_insights)
    _print_failures(result.failed_rows)


def _print_post_mortem_result(result: PostMortemResult) -> None:
    for insight in result.insights:
        console.print(
            Panel(
                insight.content,
                title=f"{insight.insight_type} ({insight.confidence_score:.0%})",
            )
        )
    if result.all_filtered:
        console.print("[yellow]Every section was filtered as too generic.[/yellow]")
    elif not result.insights:
        console.print(
            Panel(
                "The response contained none of the expected sections; no insights were produced.",
                title="No insights produced",
                border_style="yellow",
            )
        )
    if result.missing_sections:
        console.print(f"[dim]Sections missing from the response: {', '.join(result.missing_sections)}[/dim]")
    _print_rejected(result.rejected_sections)
    _print_failures(result.failed_rows)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Project graveyard analysis CLI.

    Detect behavioral patterns across abandoned projects and generate coaching insights.
    """
    setup_logging(settings.log_level)


@main.command()
@click.argument("owner_id")
def analyze(owner_id: str) -> None:
    """Run the full two-pass analysis for a user.

    OWNER_ID: The user whose graveyard to analyze
    """
    _print_full_result(_run(lambda o: o.run_full_analysis(owner_id)))


@main.command()
@click.argument("owner_id")
def coach(owner_id: str) -> None:
    """Regenerate coaching insights from already detected patterns."""
    _print_coaching_result(_run(lambda o: o.run_coaching_only(owner_id)))


@main.command("post-mortem")
@click.argument("project_id")
@click.option("--post-mortem-id", default=None, help="Expected post-mortem id for the project")
def post_mortem(project_id: str, post_mortem_id: str | None) -> None:
    """Generate AI insights for one project's post-mortem.

    PROJECT_ID: The buried project
    """
    _print_post_mortem_result(
        _run(lambda o: o.analyze_post_mortem(project_id, post_mortem_id=post_mortem_id))
    )


@main.command()
@click.argument("owner_id")
def dashboard(owner_id: str) -> None:
    """Show active patterns, top insights and learning metrics."""

    async def show() -> None:
        async with db.get_session() as session:
            data = await load_dashboard(SqlHistoryStore(session), owner_id)

        if not data.patterns:
            console.print("[yellow]No active patterns.[/yellow]")
        else:
            table = Table(title="Active Patterns")
            table.add_column("Pattern", style="cyan")
            table.add_column("Type")
            table.add_column("Confidence", justify="right")
            table.add_column("Seen", justify="right")
            table.add_column("First detected")
            for p in data.patterns:
                table.add_row(
                    p.pattern_name,
                    p.pattern_type,
                    f"{p.confidence_score:.0%}",
                    str(p.frequency),
                    p.first_detected_at.strftime("%Y-%m-%d"),
                )
            console.print(table)

        _print_insights(data.insights)

        if data.metrics:
            table = Table(title="Learning Velocity")
            table.add_column("When")
            table.add_column("Lifespan trend")
            table.add_column("Scope", justify="right")
            table.add_column("Consistency", justify="right")
            table.add_column("Completion trend")
            for m in data.metrics:
                table.add_row(
                    m.created_at.strftime("%Y-%m-%d %H:%M"),
                    m.avg_project_lifespan_trend,
                    str(m.scope_management_score),
                    str(m.technology_consistency_score),
                    m.completion_rate_trend,
                )
            console.print(table)

    try:
        asyncio.run(show())
    except GraveyardError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("owner_id")
@click.argument("insight_id")
@click.argument("feedback", type=click.Choice([f.value for f in InsightFeedback]))
def feedback(owner_id: str, insight_id: str, feedback: str) -> None:
    """Record feedback on a coaching insight."""

    async def save() -> None:
        async with db.get_session() as session:
            await record_feedback(SqlHistoryStore(session), owner_id, insight_id, feedback)

    try:
        asyncio.run(save())
    except GraveyardError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Saved feedback '{feedback}' for insight {insight_id}[/green]")


@main.command()
@click.argument("owner_id")
@click.confirmation_option(prompt="Deactivate all patterns and insights for this user?")
def clear(owner_id: str) -> None:
    """Deactivate every pattern and insight of a user."""

    async def run() -> None:
        async with db.get_session() as session:
            report = await clear_analysis(SqlHistoryStore(session), owner_id)
        console.print(
            f"[green]Deactivated {report.patterns_deactivated} pattern(s) and "
            f"{report.insights_deactivated} insight(s)[/green]"
        )

    try:
        asyncio.run(run())
    except GraveyardError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("init-db")
def init_db() -> None:
    """Create all tables (for development/testing)."""
    asyncio.run(db.init_db())
    console.print("[green]Database tables created[/green]")


if __name__ == "__main__":
    main()
