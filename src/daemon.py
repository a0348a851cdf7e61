"""Pulse daemon: continuous background sync on an interval."""

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console

from src.config import get_settings
from src.storage.db import close_db
from src.sync.orchestrator import perform_sync
from src.sync.state import SyncOptions

logger = logging.getLogger(__name__)
console = Console()

_running = True


def _handle_shutdown(signum, frame):
    global _running
    _running = False
    logger.info("Shutdown signal received, finishing current cycle...")


async def run_daemon(interval_minutes: Optional[int] = None, max_cycles: Optional[int] = None) -> None:
    """Run a sync every interval until interrupted.

    Snapshots are captured by the sync itself. A failed cycle is logged
    and the loop keeps going; a rate-limited cycle resumes next time.
    """
    global _running
    _running = True

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    settings = get_settings()
    interval_minutes = interval_minutes or settings.sync.interval_minutes
    interval = interval_minutes * 60

    console.print(f"[bold]Pulse daemon started[/bold] (interval: {interval_minutes}m)")
    console.print("Press Ctrl+C to stop.\n")

    cycle = 0
    while _running:
        cycle += 1
        start = datetime.now(timezone.utc)
        logger.info("Daemon cycle %d starting at %s", cycle, start.isoformat())

        try:
            result = await perform_sync(SyncOptions(), settings=settings)
            if result.success:
                logger.info(
                    "Sync: %d new, %d updated, %d projects, %d API queries",
                    result.new_count,
                    result.updated_count,
                    result.project_count,
                    result.api_query_count,
                )
            else:
                logger.warning("Sync failed: %s", result.error)

            elapsed = (datetime.now(timezone.utc) - start).total_seconds()
            logger.info("Cycle %d complete in %.1fs", cycle, elapsed)

        except Exception as e:
            logger.error("Daemon cycle %d failed: %s", cycle, e, exc_info=True)

        if max_cycles is not None and cycle >= max_cycles:
            break

        # Wait for next cycle
        if _running:
            logger.info("Next sync in %d minutes...", interval_minutes)
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    await close_db()
    console.print("\n[bold]Pulse daemon stopped.[/bold]")
