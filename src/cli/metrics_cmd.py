"""CLI commands for health snapshots."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command()
def show(
    level: str = typer.Option("org", "--level", "-l", help="org, domain or team"),
    level_id: Optional[str] = typer.Option(None, "--id", help="Domain name or team key"),
    all_levels: bool = typer.Option(False, "--all", "-a", help="Latest snapshot for every level"),
):
    """Show the latest captured snapshot."""

    async def _show():
        from src.metrics.snapshot import get_metrics_summary
        from src.storage import snapshots
        from src.storage.db import close_db, get_session

        try:
            async with get_session() as session:
                if all_levels:
                    latest = await snapshots.get_all_latest(session)
                else:
                    found = await snapshots.get_latest(session, level, level_id)
                    latest = [found] if found else []
        finally:
            await close_db()

        if not latest:
            console.print("[yellow]No snapshot captured yet. Run 'pulse metrics capture'.[/yellow]")
            return

        for snapshot in latest:
            name = snapshot.level if snapshot.level_id is None else f"{snapshot.level} {snapshot.level_id}"
            console.print(f"\n[bold]{name}[/bold] [dim]({snapshot.captured_at:%Y-%m-%d %H:%M})[/dim]")
            console.print(get_metrics_summary(snapshot.metrics))

    try:
        asyncio.run(_show())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def capture(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Capture org, domain and team snapshots from the current data."""
    from src.cli.main import _setup_logging

    _setup_logging(verbose)

    async def _capture():
        from src.metrics.snapshot import capture_snapshots
        from src.storage.db import close_db, get_session

        try:
            with console.status("[bold green]Capturing snapshots..."):
                async with get_session() as session:
                    result = await capture_snapshots(session)
        finally:
            await close_db()

        console.print(f"[bold green]Captured {result.snapshots_created} snapshots[/bold green]")
        if result.domains:
            console.print(f"  Domains: {', '.join(result.domains)}")
        if result.teams:
            console.print(f"  Teams: {', '.join(result.teams)}")

    asyncio.run(_capture())


def _pillar_status(metrics: dict, pillar: str) -> str:
    value = (metrics.get(pillar) or {}).get("status", "-")
    colors = {"healthy": "green", "warning": "yellow", "critical": "red"}
    color = colors.get(value)
    return f"[{color}]{value}[/{color}]" if color else value


@app.command()
def trend(
    level: str = typer.Option("org", "--level", "-l", help="org, domain or team"),
    level_id: Optional[str] = typer.Option(None, "--id", help="Domain name or team key"),
    limit: int = typer.Option(10, "--limit", "-n", help="Max snapshots"),
):
    """Show pillar statuses over the most recent snapshots."""

    async def _trend():
        from src.storage import snapshots
        from src.storage.db import close_db, get_session

        try:
            async with get_session() as session:
                history = await snapshots.get_trend(session, level, level_id, limit=limit)
        finally:
            await close_db()

        if not history:
            console.print("[yellow]No snapshots for this level.[/yellow]")
            return

        table = Table(title=f"Trend: {level}" + (f" {level_id}" if level_id else ""))
        table.add_column("Captured", style="dim")
        table.add_column("Team")
        table.add_column("Velocity")
        table.add_column("Quality")
        table.add_column("Score", justify="right")
        table.add_column("Hygiene")
        table.add_column("Productivity")
        for snapshot in history:
            metrics = snapshot.metrics
            table.add_row(
                f"{snapshot.captured_at:%Y-%m-%d %H:%M}",
                _pillar_status(metrics, "team_health"),
                _pillar_status(metrics, "velocity_health"),
                _pillar_status(metrics, "quality"),
                str(metrics.get("quality", {}).get("composite_score", "-")),
                _pillar_status(metrics, "linear_hygiene"),
                _pillar_status(metrics, "team_productivity"),
            )
        console.print(table)

    try:
        asyncio.run(_trend())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
