"""Command-line interface for Goal Bingo.

This module provides a Typer-based CLI for operating a Goal Bingo database.

Commands:
- init: Create the database and tables
- status: Show configuration, table counts and pending outbox entries
- drain: Apply pending outbox entries to the event log once
- worker: Keep draining the outbox until interrupted
- feed: Print a user's feed
- metrics: Print Prometheus metrics

Example:
    $ goalbingo init
    $ goalbingo status
    $ goalbingo worker --poll-seconds 2
    $ goalbingo feed 3f2a... --scope watch
"""

import asyncio
import sys
from enum import StrEnum
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from goalbingo.app import GoalBingoApp
from goalbingo.config import settings
from goalbingo.errors import GoalBingoError
from goalbingo.feed import CommunityScope, PublicScope, WatchScope
from goalbingo.metrics import generate_metrics_output
from goalbingo.telemetry import shutdown_telemetry

# Initialize CLI app
app = typer.Typer(
    name="goalbingo",
    help="Goal Bingo boards, goals and community feed",
    add_completion=False,
)
console = Console()


class FeedScopeName(StrEnum):
    PUBLIC = "public"
    WATCH = "watch"
    COMMUNITY = "community"


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "{message}",
    )


def run_async(coro):
    """Run async coroutine in event loop."""
    return asyncio.run(coro)


def open_app() -> GoalBingoApp:
    return GoalBingoApp().initialize()


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Delete and recreate an existing database",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Initialize the database and create all tables.

    Examples:
        $ goalbingo init
        $ goalbingo init --force
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]Goal Bingo Initialization[/bold cyan]\n")

    try:
        db_path = Path(str(settings.database_path))
        if not settings.uses_memory_database and db_path.exists():
            if not force:
                console.print(
                    f"⚠️  Database already exists at {settings.database_path}\n"
                    "Use --force to recreate it."
                )
                return
            db_path.unlink()
            console.print(f"🗑️  Removed existing database at [yellow]{db_path}[/yellow]")

        bingo = open_app()
        bingo.close()

        console.print(f"✅ Database created at [yellow]{settings.database_path}[/yellow]")
        console.print("\n📋 Configuration:")
        console.print(f"  • Environment: {settings.environment.value}")
        console.print(f"  • Default board size: {settings.default_board_size}")
        console.print(f"  • Inline dispatch: {settings.dispatch_inline}")
        console.print(f"  • AI configured: {settings.ai_configured}")
        console.print("\n✅ [bold green]Initialization complete![/bold green]")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"\n❌ [bold red]Initialization failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show configuration, table counts and the outbox backlog.

    Examples:
        $ goalbingo status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]Goal Bingo Status[/bold cyan]\n")

    try:
        bingo = open_app()

        config_table = Table(title="Configuration", show_header=False)
        config_table.add_column("Key", style="cyan")
        config_table.add_column("Value", style="yellow")
        config_table.add_row("Environment", settings.environment.value)
        config_table.add_row("Database Path", str(settings.database_path))
        config_table.add_row("Inline Dispatch", str(settings.dispatch_inline))
        config_table.add_row("Inference Endpoint", settings.inference_base_url)
        config_table.add_row("Inference Token", settings.redact_token())
        console.print(config_table)
        console.print()

        counts = bingo.db.table_counts()
        stats_table = Table(title="Database Statistics")
        stats_table.add_column("Table", style="cyan")
        stats_table.add_column("Count", justify="right", style="green")
        for label, count in counts.items():
            stats_table.add_row(label.replace("_", " ").title(), f"{count:,}")
        console.print(stats_table)

        bingo.close()

    except Exception as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def drain(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum entries to process"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Apply pending outbox entries to the event log once.

    Examples:
        $ goalbingo drain --limit 500
    """
    setup_logging(verbose)

    try:
        bingo = open_app()
        report = bingo.dispatcher.drain(limit)
        bingo.close()
    except Exception as e:
        console.print(f"\n❌ [bold red]Drain failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(
        f"🚚 Processed [green]{report.processed}[/green] entries "
        f"({report.appended} appended, {report.skipped} skipped, {report.voided} voided)"
    )
    if report.failed:
        console.print(f"❌ [bold red]{report.failed} entry failed; see logs[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def worker(
    poll_seconds: Optional[float] = typer.Option(
        None, "--poll-seconds", help="Idle sleep between drains"
    ),
    max_cycles: Optional[int] = typer.Option(
        None, "--max-cycles", help="Stop after this many drain passes"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Continuously drain the outbox until interrupted.

    Examples:
        $ goalbingo worker
        $ goalbingo worker --poll-seconds 5 --max-cycles 10
    """
    setup_logging(verbose)

    console.print("🚚 [bold cyan]Goal Bingo Outbox Worker[/bold cyan]\n")

    async def _work() -> int:
        bingo = open_app()
        try:
            return await bingo.dispatcher.run(poll_seconds=poll_seconds, max_cycles=max_cycles)
        finally:
            await bingo.aclose()

    try:
        total = run_async(_work())
    except KeyboardInterrupt:
        console.print("\n⏹️  Worker stopped")
        return
    except Exception as e:
        console.print(f"\n❌ [bold red]Worker failed: {e}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        shutdown_telemetry()

    console.print(f"✅ Worker finished after processing {total} entries")


@app.command()
def feed(
    user_id: str = typer.Argument(..., help="Viewer user ID"),
    scope: FeedScopeName = typer.Option(FeedScopeName.PUBLIC, "--scope", "-s", help="Feed scope"),
    community_id: Optional[str] = typer.Option(
        None, "--community-id", "-c", help="Community for the community scope"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Print a user's feed.

    Examples:
        $ goalbingo feed 3f2a9c --scope public
        $ goalbingo feed 3f2a9c --scope community --community-id 81be77
    """
    setup_logging(verbose)

    if scope == FeedScopeName.COMMUNITY and not community_id:
        console.print("❌ [bold red]--community-id is required for the community scope[/bold red]")
        raise typer.Exit(code=1)

    visibility = {
        FeedScopeName.PUBLIC: lambda: PublicScope(),
        FeedScopeName.WATCH: lambda: WatchScope(),
        FeedScopeName.COMMUNITY: lambda: CommunityScope(community_id or ""),
    }[scope]()

    try:
        bingo = open_app()
        items = bingo.feed.assemble(user_id, visibility)
        bingo.close()
    except GoalBingoError as e:
        console.print(f"❌ [bold red]{e.message}[/bold red] ({e.code})")
        raise typer.Exit(code=1)

    if not items:
        console.print(f"📭 The {scope.value} feed is empty")
        return

    table = Table(title=f"{scope.value.title()} Feed")
    table.add_column("When", style="dim")
    table.add_column("Who", style="cyan")
    table.add_column("What", style="green")
    table.add_column("Board", style="yellow")
    table.add_column("👍/👎", justify="right")
    table.add_column("💬", justify="right")
    for item in items:
        what = item.kind.replace("_", " ")
        if item.goal_text:
            what = f"{what}: {item.goal_text}"
        table.add_row(
            item.created_at,
            item.user_name,
            what,
            item.board_name,
            f"{item.up_count}/{item.down_count}",
            str(item.comment_count),
        )
    console.print(table)


@app.command()
def metrics() -> None:
    """Print Prometheus metrics collected in this process."""
    sys.stdout.write(generate_metrics_output().decode("utf-8"))


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
