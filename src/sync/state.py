"""Checkpoint, options and result models for a sync run."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.sync.phases import SyncPhase


class UnitStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class ProjectBucket(str, Enum):
    """Which checkpoint list a project-level phase records into."""

    ACTIVE = "project_syncs"
    PLANNED = "planned_project_syncs"
    COMPLETED = "completed_project_syncs"
    INITIATIVE = "initiative_project_syncs"


class ProjectSyncEntry(BaseModel):
    project_id: str
    status: UnitStatus = UnitStatus.INCOMPLETE


class PartialSyncState(BaseModel):
    """Resumable checkpoint persisted in the sync metadata row."""

    current_phase: Optional[SyncPhase] = None
    initial_issues_sync: Optional[UnitStatus] = None
    project_syncs: list[ProjectSyncEntry] = Field(default_factory=list)
    planned_projects_sync: Optional[UnitStatus] = None
    planned_project_syncs: list[ProjectSyncEntry] = Field(default_factory=list)
    completed_projects_sync: Optional[UnitStatus] = None
    completed_project_syncs: list[ProjectSyncEntry] = Field(default_factory=list)
    initiatives_sync: Optional[UnitStatus] = None
    initiative_project_syncs: list[ProjectSyncEntry] = Field(default_factory=list)

    def entries(self, bucket: ProjectBucket) -> list[ProjectSyncEntry]:
        return getattr(self, bucket.value)

    def completed_ids(self, bucket: ProjectBucket) -> set[str]:
        return {e.project_id for e in self.entries(bucket) if e.status == UnitStatus.COMPLETE}

    def mark_project(self, bucket: ProjectBucket, project_id: str, status: UnitStatus) -> None:
        """Set a project's status in a bucket, replacing any earlier entry."""
        entries = self.entries(bucket)
        for entry in entries:
            if entry.project_id == project_id:
                entry.status = status
                return
        entries.append(ProjectSyncEntry(project_id=project_id, status=status))

    def progress_summary(self) -> dict:
        """Completed/total per bucket, for status display."""
        summary = {}
        for bucket in ProjectBucket:
            entries = self.entries(bucket)
            if entries:
                summary[bucket.value] = {
                    "completed": len(self.completed_ids(bucket)),
                    "total": len(entries),
                }
        return summary


class SyncOptions(BaseModel):
    phases: list[SyncPhase] = Field(default_factory=list)
    deep_history_sync: bool = False
    incremental_sync: bool = False


class SyncResult(BaseModel):
    success: bool
    new_count: int = 0
    updated_count: int = 0
    total_count: int = 0
    issue_count: int = 0
    project_count: int = 0
    project_issue_count: int = 0
    api_query_count: int = 0
    error: Optional[str] = None
