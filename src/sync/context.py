"""State owned by a single sync run."""

import asyncio
import logging
from datetime import datetime
from typing import AsyncContextManager, Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings
from src.linear.client import LinearClient
from src.linear.types import IssueData
from src.metrics.domains import DomainMap
from src.storage import queries
from src.storage.writer import WriteCounts
from src.sync.cache import ProjectDataCache
from src.sync.events import EventChannel, PhaseChanged, ProgressPercent, QueryCount, StatsDelta
from src.sync.limiter import CancelToken, ConcurrencyLimiter
from src.sync.phases import PHASE_PROGRESS, SyncPhase, build_should_run_phase
from src.sync.state import PartialSyncState, SyncOptions

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class SyncContext:
    """Everything one run shares between phases: client, cache, limiter,
    checkpoint and counters. Created at run start and dropped at run end.
    """

    def __init__(
        self,
        client: LinearClient,
        session_factory: SessionFactory,
        settings: Settings,
        options: Optional[SyncOptions] = None,
        events: Optional[EventChannel] = None,
        checkpoint: Optional[PartialSyncState] = None,
        last_sync_time: Optional[datetime] = None,
        persist_checkpoint: bool = True,
    ):
        self.client = client
        self.session = session_factory
        self.settings = settings
        self.options = options or SyncOptions()
        self.events = events or EventChannel()
        self.should_run = build_should_run_phase(self.options.phases)
        self.token = CancelToken()
        self.limiter = ConcurrencyLimiter(settings.sync.project_concurrency, self.token)
        self.cache = ProjectDataCache(client)
        self.domain_map = DomainMap.from_settings(settings.mappings)
        self.whitelist: Optional[set[str]] = set(settings.sync.whitelist_teams) or None
        self.last_sync_time = last_sync_time

        self.resumed = checkpoint is not None
        self.state = checkpoint or PartialSyncState()
        self._persist = persist_checkpoint
        self._lock = asyncio.Lock()

        self.started_issues: list[IssueData] = []
        self.recent_issues: list[IssueData] = []
        self.counts = WriteCounts()
        self.project_count = 0
        self.project_issue_count = 0
        # Projects whose issues are already complete in storage for this run
        self._covered: set[str] = set()

    # -- phases ------------------------------------------------------------

    async def enter_phase(self, phase: SyncPhase) -> None:
        """Point the checkpoint at `phase` and report progress."""
        logger.info("Sync phase: %s", phase.label)
        self.state.current_phase = phase
        self.events.emit(PhaseChanged(phase))
        self.events.emit(ProgressPercent(PHASE_PROGRESS[phase]))
        if self._persist:
            async with self._lock:
                async with self.session() as session:
                    await queries.update_sync_metadata(
                        session,
                        sync_progress_percent=PHASE_PROGRESS[phase],
                        partial_sync_state=self.state.model_dump(mode="json"),
                    )

    async def checkpoint(self) -> None:
        """Persist the in-memory checkpoint. Writes are serialized."""
        if not self._persist:
            return
        async with self._lock:
            async with self.session() as session:
                await queries.save_partial_sync_state(session, self.state)

    # -- already-fetched tracker --------------------------------------------

    def mark_covered(self, project_ids: Iterable[str]) -> None:
        self._covered.update(pid for pid in project_ids if pid)

    def is_covered(self, project_id: str) -> bool:
        return project_id in self._covered

    def note_issue_phase(self, issues: list[IssueData]) -> None:
        """In incremental mode storage plus the delta is complete for every
        project the issue-centric phases touched."""
        if self.options.incremental_sync:
            self.mark_covered(i.project_id for i in issues)

    # -- counters ----------------------------------------------------------

    def record_written(self, counts: WriteCounts, project_issues: int = 0) -> None:
        self.counts = self.counts + counts
        self.project_issue_count += project_issues
        self.events.emit(
            StatsDelta(
                new_count=counts.new_count,
                updated_count=counts.updated_count,
                project_issues=project_issues,
            )
        )
        self.report_queries()

    def report_queries(self) -> None:
        self.events.emit(QueryCount(self.client.query_count))
