"""Sync phases and their fixed ordering."""

from enum import Enum
from typing import Callable, Iterable, Optional, Union


class SyncPhase(str, Enum):
    INITIAL_ISSUES = "initial_issues"
    RECENTLY_UPDATED_ISSUES = "recently_updated_issues"
    ACTIVE_PROJECTS = "active_projects"
    PLANNED_PROJECTS = "planned_projects"
    COMPLETED_PROJECTS = "completed_projects"
    INITIATIVES = "initiatives"
    INITIATIVE_PROJECTS = "initiative_projects"
    COMPUTING_METRICS = "computing_metrics"
    COMPLETE = "complete"

    @property
    def index(self) -> int:
        return PHASE_ORDER.index(self)

    @property
    def label(self) -> str:
        return PHASE_LABELS[self]

    def is_before(self, other: "SyncPhase") -> bool:
        return self.index < other.index


PHASE_ORDER: tuple[SyncPhase, ...] = (
    SyncPhase.INITIAL_ISSUES,
    SyncPhase.RECENTLY_UPDATED_ISSUES,
    SyncPhase.ACTIVE_PROJECTS,
    SyncPhase.PLANNED_PROJECTS,
    SyncPhase.COMPLETED_PROJECTS,
    SyncPhase.INITIATIVES,
    SyncPhase.INITIATIVE_PROJECTS,
    SyncPhase.COMPUTING_METRICS,
    SyncPhase.COMPLETE,
)

PHASE_LABELS: dict[SyncPhase, str] = {
    SyncPhase.INITIAL_ISSUES: "Initial Issues",
    SyncPhase.RECENTLY_UPDATED_ISSUES: "Recently Updated Issues",
    SyncPhase.ACTIVE_PROJECTS: "Active Projects",
    SyncPhase.PLANNED_PROJECTS: "Planned Projects",
    SyncPhase.COMPLETED_PROJECTS: "Completed Projects",
    SyncPhase.INITIATIVES: "Initiatives",
    SyncPhase.INITIATIVE_PROJECTS: "Initiative Projects",
    SyncPhase.COMPUTING_METRICS: "Computing Metrics",
    SyncPhase.COMPLETE: "Complete",
}

# Rough share of the progress bar reached when each phase starts
PHASE_PROGRESS: dict[SyncPhase, int] = {
    SyncPhase.INITIAL_ISSUES: 5,
    SyncPhase.RECENTLY_UPDATED_ISSUES: 20,
    SyncPhase.ACTIVE_PROJECTS: 30,
    SyncPhase.PLANNED_PROJECTS: 55,
    SyncPhase.COMPLETED_PROJECTS: 65,
    SyncPhase.INITIATIVES: 75,
    SyncPhase.INITIATIVE_PROJECTS: 80,
    SyncPhase.COMPUTING_METRICS: 90,
    SyncPhase.COMPLETE: 100,
}


def build_should_run_phase(
    phases: Optional[Iterable[Union[SyncPhase, str]]] = None,
) -> Callable[[SyncPhase], bool]:
    """Predicate over phases. No selection (None or empty) runs everything."""
    selected = {SyncPhase(p) for p in phases} if phases else set()
    if not selected:
        return lambda phase: True
    return lambda phase: phase in selected


def phase_statuses(current: Optional[SyncPhase]) -> list[dict]:
    """Per-phase pending/in_progress/complete list for status polls."""
    statuses = []
    for phase in PHASE_ORDER:
        status = "pending"
        if current is not None:
            if phase.is_before(current):
                status = "complete"
            elif phase == current:
                status = "in_progress"
        statuses.append({"phase": phase.value, "label": phase.label, "status": status})
    return statuses
