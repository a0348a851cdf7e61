"""Typed progress events and the per-run status object they feed.

The orchestrator only emits events; whatever serves status polls
subscribes and keeps its own read-only view.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from src.sync.phases import SyncPhase, phase_statuses

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseChanged:
    phase: SyncPhase


@dataclass(frozen=True)
class ProgressPercent:
    percent: int


@dataclass(frozen=True)
class StatsDelta:
    """Increments (or absolute values via `set_`) for run statistics."""

    started_issues: int = 0
    project_issues: int = 0
    new_count: int = 0
    updated_count: int = 0
    projects_done: int = 0
    set_total_projects: Optional[int] = None
    current_project_name: Optional[str] = None


@dataclass(frozen=True)
class QueryCount:
    count: int


@dataclass(frozen=True)
class StatusMessage:
    message: str


SyncEvent = Union[PhaseChanged, ProgressPercent, StatsDelta, QueryCount, StatusMessage]
Listener = Callable[[SyncEvent], None]


class EventChannel:
    """Fan-out of sync events to subscribed listeners."""

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def emit(self, event: SyncEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Sync event listener failed on %s: %s", type(event).__name__, e)


@dataclass
class SyncStats:
    started_issues_count: int = 0
    total_projects_count: int = 0
    current_project_index: int = 0
    current_project_name: Optional[str] = None
    project_issues_count: int = 0
    new_count: int = 0
    updated_count: int = 0


@dataclass
class RunStatus:
    """Owned status of one sync run, built only from events."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    current_phase: Optional[SyncPhase] = None
    progress_percent: int = 0
    api_query_count: int = 0
    status_message: Optional[str] = None
    syncing_project_id: Optional[str] = None
    stats: SyncStats = field(default_factory=SyncStats)

    def apply(self, event: SyncEvent) -> None:
        if isinstance(event, PhaseChanged):
            self.current_phase = event.phase
        elif isinstance(event, ProgressPercent):
            self.progress_percent = max(0, min(100, event.percent))
        elif isinstance(event, QueryCount):
            self.api_query_count = event.count
        elif isinstance(event, StatusMessage):
            self.status_message = event.message
        elif isinstance(event, StatsDelta):
            s = self.stats
            s.started_issues_count += event.started_issues
            s.project_issues_count += event.project_issues
            s.new_count += event.new_count
            s.updated_count += event.updated_count
            s.current_project_index += event.projects_done
            if event.set_total_projects is not None:
                s.total_projects_count = event.set_total_projects
                s.current_project_index = 0
            if event.current_project_name is not None:
                s.current_project_name = event.current_project_name

    def snapshot(self) -> dict:
        """Plain-dict copy safe to hand to pollers."""
        return {
            "current_phase": self.current_phase.value if self.current_phase else None,
            "phases": phase_statuses(self.current_phase),
            "progress_percent": self.progress_percent,
            "api_query_count": self.api_query_count,
            "status_message": self.status_message,
            "syncing_project_id": self.syncing_project_id,
            "stats": {
                "started_issues_count": self.stats.started_issues_count,
                "total_projects_count": self.stats.total_projects_count,
                "current_project_index": self.stats.current_project_index,
                "current_project_name": self.stats.current_project_name,
                "project_issues_count": self.stats.project_issues_count,
                "new_count": self.stats.new_count,
                "updated_count": self.stats.updated_count,
            },
        }
