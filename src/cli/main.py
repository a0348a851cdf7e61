"""Pulse CLI: main entry point using Typer."""

import asyncio
import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from src.cli.metrics_cmd import app as metrics_app
from src.cli.sync_cmd import app as sync_app

app = typer.Typer(
    name="pulse",
    help="Linear sync and engineering health metrics.",
    no_args_is_help=True,
)
console = Console()

db_app = typer.Typer(no_args_is_help=True)

# Register subcommands
app.add_typer(sync_app, name="sync", help="Sync issues and projects from Linear")
app.add_typer(metrics_app, name="metrics", help="Capture and view health snapshots")
app.add_typer(db_app, name="db", help="Database maintenance")

DEFAULT_CONFIG = (
    "[general]\n"
    'db_url = "postgresql+asyncpg://localhost/pulse"\n'
    'log_level = "INFO"\n\n'
    "[linear]\n"
    '# api_key = ""  # Or set LINEAR_API_KEY env var\n\n'
    "[sync]\n"
    "interval_minutes = 10\n"
    "project_concurrency = 5\n"
    'ignored_team_keys = ""\n'
    'whitelist_team_keys = ""\n'
    'ignored_assignee_names = ""\n\n'
    "[mappings]\n"
    '# engineer_team_mapping = "Jane Doe:ENG,John Roe:APP"\n'
    "# team_domain_mappings = '{\"ENG\": \"Platform\"}'\n\n"
    "[getdx]\n"
    '# api_key = ""  # Or set GETDX_API_KEY env var\n'
    '# pr_throughput_feed_token = ""\n\n'
    "[metrics]\n"
    "capture_after_sync = true\n"
)


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
    )


@app.command()
def init(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Initialize Pulse: write a default config and create the schema."""
    _setup_logging(verbose)

    async def _init():
        from pathlib import Path

        from src.storage.db import close_db, init_db

        console.print("[bold]Welcome to Pulse[/bold]", style="green")

        config_dir = Path.home() / ".config/pulse"
        config_dir.mkdir(parents=True, exist_ok=True)
        console.print(f"  Config dir: {config_dir}")

        config_path = config_dir / "config.toml"
        if not config_path.exists():
            config_path.write_text(DEFAULT_CONFIG)
            console.print(f"  Config written: {config_path}")

        console.print("  Initializing database...")
        try:
            await init_db()
        finally:
            await close_db()
        console.print("  Database ready.")

        console.print("\n[bold green]Pulse initialized![/bold green]")
        console.print("\nNext steps:")
        console.print("  1. Set LINEAR_API_KEY or edit the config file")
        console.print("  2. Pull data from Linear:  [cyan]pulse sync[/cyan]")
        console.print("  3. See how teams are doing: [cyan]pulse metrics show[/cyan]")

    asyncio.run(_init())


@db_app.command("reset")
def db_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Drop and recreate every table."""
    _setup_logging(verbose)
    if not yes:
        typer.confirm("This deletes all synced data and snapshots. Continue?", abort=True)

    async def _reset():
        from src.storage.db import close_db, reset_db

        try:
            await reset_db()
        finally:
            await close_db()
        console.print("[bold green]Database reset.[/bold green]")

    asyncio.run(_reset())


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Show sync state, counts, and errors."""
    _setup_logging(verbose)

    async def _status():
        from rich.table import Table
        from sqlalchemy import func, select

        from src.storage import queries
        from src.storage.db import close_db, get_session
        from src.storage.models import Engineer, Initiative, Issue, MetricsSnapshot, Project

        try:
            async with get_session() as session:
                counts = {}
                for model, name in [
                    (Issue, "issues"),
                    (Project, "projects"),
                    (Engineer, "engineers"),
                    (Initiative, "initiatives"),
                    (MetricsSnapshot, "snapshots"),
                ]:
                    result = await session.execute(select(func.count()).select_from(model))
                    counts[name] = result.scalar()

                metadata = await queries.get_sync_metadata(session)
                checkpoint = await queries.get_partial_sync_state(session)
        finally:
            await close_db()

        console.print("\n[bold]Pulse Status[/bold]\n")

        table = Table(title="Data Counts")
        table.add_column("Entity", style="cyan")
        table.add_column("Count", style="green", justify="right")
        for name, count in counts.items():
            table.add_row(name, str(count))
        console.print(table)

        status_icon = (
            "[green]idle[/green]" if metadata.sync_status == "idle"
            else f"[red]{metadata.sync_status}[/red]"
        )
        last = metadata.last_sync_time.strftime("%Y-%m-%d %H:%M") if metadata.last_sync_time else "never"
        console.print(f"\n[bold]Sync:[/bold] {status_icon} (last: {last})")
        console.print(f"  API queries last run: {metadata.api_query_count or 0}")
        if metadata.sync_error:
            console.print(f"  [red]Error:[/red] {metadata.sync_error}")
        if checkpoint is not None:
            console.print("  [yellow]Interrupted sync will resume on next run[/yellow]")
            for bucket, progress in checkpoint.progress_summary().items():
                console.print(f"    {bucket}: {progress['completed']}/{progress['total']}")

    asyncio.run(_status())


@app.command()
def nudge(
    no_sync: bool = typer.Option(False, "--no-sync", help="Skip the issue refresh first"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Comment on started issues that have no assignee."""
    _setup_logging(verbose)

    async def _nudge():
        from src.nudge import comment_on_unassigned_issues
        from src.storage.db import close_db

        try:
            with console.status("[bold green]Checking unassigned issues..."):
                result = await comment_on_unassigned_issues(sync_first=not no_sync)
        finally:
            await close_db()

        if not result.success:
            console.print(f"[red]{result.message}[/red]")
            raise typer.Exit(1)
        for identifier in result.commented:
            console.print(f"  Commented on [cyan]{identifier}[/cyan]")
        if result.failed_count:
            console.print(f"  [yellow]{result.failed_count} comments failed[/yellow]")
        if result.message:
            console.print(result.message)

    asyncio.run(_nudge())


@app.command()
def daemon(
    interval: int = typer.Option(0, "--interval", "-i", help="Sync interval in minutes (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run Pulse as a background daemon (sync + snapshot on interval)."""
    _setup_logging(verbose)

    from src.daemon import run_daemon

    asyncio.run(run_daemon(interval_minutes=interval or None))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port", "-p"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Serve the HTTP API for sync control and metrics."""
    _setup_logging(verbose)

    import uvicorn

    uvicorn.run("src.api.routes:app", host=host, port=port, log_level="debug" if verbose else "info")


def main():
    app()


if __name__ == "__main__":
    main()
