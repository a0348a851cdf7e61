"""Starts syncs in the background and answers status polls."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from src.config import Settings, get_settings
from src.storage import queries
from src.storage.db import get_session
from src.sync.context import SessionFactory
from src.sync.events import EventChannel, RunStatus
from src.sync.orchestrator import perform_sync
from src.sync.project_sync import sync_single_project
from src.sync.state import SyncOptions, SyncResult

logger = logging.getLogger(__name__)


class SyncBusyError(Exception):
    """A sync is already running."""

    def __init__(self):
        super().__init__("A sync is already in progress")


class SyncTooSoonError(Exception):
    """The minimum interval since the last sync has not elapsed."""

    def __init__(self, retry_after: float):
        self.retry_after = max(0.0, retry_after)
        super().__init__(f"Sync ran too recently, retry in {self.retry_after:.0f}s")


class SyncManager:
    """One sync at a time, run as a background task.

    Status polls read the run's own RunStatus, fed by the event channel,
    so they never wait on the sync.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: SessionFactory = get_session,
        sync_fn: Callable[..., Awaitable[SyncResult]] = perform_sync,
        project_sync_fn: Callable[..., Awaitable[SyncResult]] = sync_single_project,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._sync_fn = sync_fn
        self._project_sync_fn = project_sync_fn
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._run_status: Optional[RunStatus] = None
        self._last_finished: Optional[float] = None
        self._last_project_finished: Optional[float] = None
        self.last_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _check_can_start(self, last_finished: Optional[float], min_interval: float) -> None:
        if self.is_running:
            raise SyncBusyError()
        if last_finished is not None:
            elapsed = self._clock() - last_finished
            if elapsed < min_interval:
                raise SyncTooSoonError(min_interval - elapsed)

    def _launch(self, make_run: Callable[[EventChannel], Awaitable[SyncResult]], project_id: Optional[str]) -> asyncio.Task:
        status = RunStatus(syncing_project_id=project_id)
        events = EventChannel()
        events.subscribe(status.apply)
        self._run_status = status
        self._task = asyncio.create_task(self._run(make_run(events), project_id is not None))
        return self._task

    async def _run(self, run: Awaitable[SyncResult], is_project: bool) -> SyncResult:
        try:
            result = await run
        except Exception as e:
            logger.error("Background sync crashed: %s", e, exc_info=True)
            result = SyncResult(success=False, error=str(e))
        finally:
            if is_project:
                self._last_project_finished = self._clock()
            else:
                self._last_finished = self._clock()
        self.last_result = result
        return result

    def start_sync(self, options: Optional[SyncOptions] = None) -> asyncio.Task:
        """Start a phased sync. Raises SyncBusyError or SyncTooSoonError."""
        self._check_can_start(self._last_finished, self.settings.sync.min_sync_interval_seconds)
        logger.info("Starting sync")
        return self._launch(
            lambda events: self._sync_fn(
                options or SyncOptions(),
                session_factory=self._session_factory,
                events=events,
                settings=self.settings,
            ),
            None,
        )

    def start_project_sync(self, project_id: str) -> asyncio.Task:
        self._check_can_start(
            self._last_project_finished, self.settings.sync.min_project_sync_interval_seconds
        )
        logger.info("Starting sync of project %s", project_id)
        return self._launch(
            lambda events: self._project_sync_fn(
                project_id,
                session_factory=self._session_factory,
                events=events,
                settings=self.settings,
            ),
            project_id,
        )

    async def wait(self) -> Optional[SyncResult]:
        if self._task is not None:
            return await self._task
        return self.last_result

    async def status(self) -> dict:
        async with self._session_factory() as session:
            metadata = await queries.get_sync_metadata(session)

        running = self.is_running
        run = (self._run_status if running and self._run_status else RunStatus()).snapshot()
        return {
            "status": "syncing" if running else metadata.sync_status,
            "is_running": running,
            "last_sync_time": metadata.last_sync_time,
            "error": metadata.sync_error,
            "progress_percent": run["progress_percent"] if running else (metadata.sync_progress_percent or 0),
            "current_phase": run["current_phase"],
            "phases": run["phases"],
            "stats": run["stats"],
            "status_message": run["status_message"],
            "syncing_project_id": run["syncing_project_id"],
            "api_query_count": run["api_query_count"] if running else (metadata.api_query_count or 0),
            "has_partial_sync": metadata.partial_sync_state is not None,
        }


_manager: Optional[SyncManager] = None


def get_sync_manager() -> SyncManager:
    global _manager
    if _manager is None:
        _manager = SyncManager()
    return _manager
