"""CLI commands for syncing data from Linear."""

import asyncio
from typing import Optional

import typer
from rich.console import Console

app = typer.Typer(invoke_without_command=True)
console = Console()


@app.callback(invoke_without_command=True)
def sync(
    phase: Optional[list[str]] = typer.Option(None, "--phase", "-p", help="Run only these phases (repeatable)"),
    deep: bool = typer.Option(False, "--deep", help="Pull a year of updated issues instead of two weeks"),
    incremental: bool = typer.Option(False, "--incremental", help="Only issues updated since the last sync"),
    project: Optional[str] = typer.Option(None, "--project", help="Sync a single project by id"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Pull issues, projects and initiatives from Linear and recompute metrics."""
    from src.cli.main import _setup_logging

    _setup_logging(verbose)

    async def _sync():
        from src.storage.db import close_db
        from src.sync.events import EventChannel, PhaseChanged, StatsDelta
        from src.sync.orchestrator import perform_sync
        from src.sync.phases import SyncPhase
        from src.sync.project_sync import sync_single_project
        from src.sync.state import SyncOptions

        try:
            phases = [SyncPhase(p) for p in phase or []]
        except ValueError:
            valid = ", ".join(p.value for p in SyncPhase)
            console.print(f"[red]Unknown phase. Choose from: {valid}[/red]")
            raise typer.Exit(1)

        events = EventChannel()
        try:
            with console.status("[bold green]Syncing...") as status:

                def on_event(event):
                    if isinstance(event, PhaseChanged):
                        status.update(f"[bold green]{event.phase.label}...")
                    elif isinstance(event, StatsDelta) and event.current_project_name:
                        status.update(f"[bold green]Project: {event.current_project_name}")

                events.subscribe(on_event)
                if project:
                    result = await sync_single_project(project, events=events)
                else:
                    options = SyncOptions(
                        phases=phases,
                        deep_history_sync=deep,
                        incremental_sync=incremental,
                    )
                    result = await perform_sync(options, events=events)
        finally:
            await close_db()

        if not result.success:
            console.print(f"\n[bold red]Sync failed:[/bold red] {result.error}")
            raise typer.Exit(1)

        console.print(
            f"  Issues: {result.new_count} new, {result.updated_count} updated "
            f"({result.total_count} stored)"
        )
        console.print(
            f"  Projects: {result.project_count} synced, "
            f"{result.project_issue_count} project issues"
        )
        console.print(f"  API queries: {result.api_query_count}")
        console.print("\n[bold green]Sync complete![/bold green]")

    asyncio.run(_sync())
