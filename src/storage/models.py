"""SQLAlchemy ORM models for Pulse."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import TypeAdapter
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from src.linear.types import IssueLabel, ProjectUpdate


class Base(DeclarativeBase):
    pass


class PydanticList(TypeDecorator):
    """JSONB column holding a list of pydantic models, decoded on load."""

    impl = JSONB
    cache_ok = True

    def __init__(self, model: type, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.model = model
        self._adapter = TypeAdapter(list[model])

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return self._adapter.dump_python(self._adapter.validate_python(value), mode="json")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self._adapter.validate_python(value)


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    identifier: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    team_id: Mapped[str] = mapped_column(Text, nullable=False)
    team_name: Mapped[str] = mapped_column(Text, nullable=False)
    team_key: Mapped[str] = mapped_column(Text, nullable=False)
    state_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_name: Mapped[str] = mapped_column(Text, nullable=False)
    state_type: Mapped[str] = mapped_column(
        String,
        CheckConstraint(
            "state_type IN ('triage','backlog','unstarted','started','completed','canceled')"
        ),
        nullable=False,
    )
    assignee_id: Mapped[Optional[str]] = mapped_column(Text)
    assignee_name: Mapped[Optional[str]] = mapped_column(Text)
    assignee_avatar_url: Mapped[Optional[str]] = mapped_column(Text)
    creator_id: Mapped[Optional[str]] = mapped_column(Text)
    creator_name: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    estimate: Mapped[Optional[float]] = mapped_column(Float)
    last_comment_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    comment_count: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    url: Mapped[str] = mapped_column(Text, default="")
    parent_id: Mapped[Optional[str]] = mapped_column(Text)
    project_id: Mapped[Optional[str]] = mapped_column(Text)
    project_name: Mapped[Optional[str]] = mapped_column(Text)
    project_state_category: Mapped[Optional[str]] = mapped_column(Text)
    project_status: Mapped[Optional[str]] = mapped_column(Text)
    project_health: Mapped[Optional[str]] = mapped_column(Text)
    project_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    project_lead_id: Mapped[Optional[str]] = mapped_column(Text)
    project_lead_name: Mapped[Optional[str]] = mapped_column(Text)
    project_target_date: Mapped[Optional[date]] = mapped_column(Date)
    project_start_date: Mapped[Optional[date]] = mapped_column(Date)
    project_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    labels: Mapped[Optional[list]] = mapped_column(PydanticList(IssueLabel), default=list)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_issues_state_type", "state_type"),
        Index("idx_issues_project", "project_id"),
        Index("idx_issues_assignee", "assignee_id"),
        Index("idx_issues_team_key", "team_key"),
    )


class Project(Base):
    __tablename__ = "projects"

    project_id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_name: Mapped[str] = mapped_column(Text, nullable=False)
    project_state_category: Mapped[Optional[str]] = mapped_column(Text)
    project_status: Mapped[Optional[str]] = mapped_column(Text)
    project_health: Mapped[Optional[str]] = mapped_column(Text)
    project_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    project_lead_id: Mapped[Optional[str]] = mapped_column(Text)
    project_lead_name: Mapped[Optional[str]] = mapped_column(Text)
    project_description: Mapped[Optional[str]] = mapped_column(Text)
    project_content: Mapped[Optional[str]] = mapped_column(Text)

    total_issues: Mapped[int] = mapped_column(Integer, default=0)
    completed_issues: Mapped[int] = mapped_column(Integer, default=0)
    in_progress_issues: Mapped[int] = mapped_column(Integer, default=0)
    engineer_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_estimate_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_priority_count: Mapped[int] = mapped_column(Integer, default=0)
    no_recent_comment_count: Mapped[int] = mapped_column(Integer, default=0)
    wip_age_violation_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_description_count: Mapped[int] = mapped_column(Integer, default=0)
    total_points: Mapped[float] = mapped_column(Float, default=0)
    missing_points: Mapped[int] = mapped_column(Integer, default=0)
    average_cycle_time: Mapped[Optional[float]] = mapped_column(Float)
    average_lead_time: Mapped[Optional[float]] = mapped_column(Float)
    linear_progress: Mapped[Optional[float]] = mapped_column(Float)
    velocity: Mapped[Optional[float]] = mapped_column(Float)
    days_per_story_point: Mapped[Optional[float]] = mapped_column(Float)

    has_status_mismatch: Mapped[bool] = mapped_column(Boolean, default=False)
    is_stale_update: Mapped[bool] = mapped_column(Boolean, default=False)
    missing_lead: Mapped[bool] = mapped_column(Boolean, default=False)
    has_violations: Mapped[bool] = mapped_column(Boolean, default=False)
    missing_health: Mapped[bool] = mapped_column(Boolean, default=False)
    has_date_discrepancy: Mapped[bool] = mapped_column(Boolean, default=False)

    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_activity_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    estimated_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    issues_by_state: Mapped[dict] = mapped_column(JSONB, default=dict)
    engineers: Mapped[list] = mapped_column(JSONB, default=list)
    teams: Mapped[list] = mapped_column(JSONB, default=list)
    velocity_by_team: Mapped[dict] = mapped_column(JSONB, default=dict)
    labels: Mapped[Optional[list]] = mapped_column(JSONB)
    project_updates: Mapped[Optional[list]] = mapped_column(PydanticList(ProjectUpdate))
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_projects_state", "project_state_category"),
    )


class Initiative(Base):
    __tablename__ = "initiatives"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text)
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    owner_id: Mapped[Optional[str]] = mapped_column(Text)
    owner_name: Mapped[Optional[str]] = mapped_column(Text)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_started: Mapped[bool] = mapped_column(Boolean, default=False)
    project_ids: Mapped[list] = mapped_column(JSONB, default=list)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Engineer(Base):
    __tablename__ = "engineers"

    assignee_id: Mapped[str] = mapped_column(Text, primary_key=True)
    assignee_name: Mapped[str] = mapped_column(Text, nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)
    team_ids: Mapped[list] = mapped_column(JSONB, default=list)
    team_names: Mapped[list] = mapped_column(JSONB, default=list)
    wip_issue_count: Mapped[int] = mapped_column(Integer, default=0)
    wip_total_points: Mapped[float] = mapped_column(Float, default=0)
    wip_limit_violation: Mapped[int] = mapped_column(Integer, default=0)
    oldest_wip_age_days: Mapped[Optional[float]] = mapped_column(Float)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    active_project_count: Mapped[int] = mapped_column(Integer, default=0)
    multi_project_violation: Mapped[int] = mapped_column(Integer, default=0)
    missing_estimate_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_priority_count: Mapped[int] = mapped_column(Integer, default=0)
    no_recent_comment_count: Mapped[int] = mapped_column(Integer, default=0)
    wip_age_violation_count: Mapped[int] = mapped_column(Integer, default=0)
    active_issues: Mapped[list] = mapped_column(JSONB, default=list)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SyncMetadata(Base):
    """Singleton row (id=1) holding sync status and the resumable checkpoint."""

    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    last_sync_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sync_status: Mapped[str] = mapped_column(
        String,
        CheckConstraint("sync_status IN ('idle','syncing','error')"),
        default="idle",
    )
    sync_error: Mapped[Optional[str]] = mapped_column(Text)
    sync_progress_percent: Mapped[Optional[int]] = mapped_column(Integer)
    api_query_count: Mapped[Optional[int]] = mapped_column(Integer)
    partial_sync_state: Mapped[Optional[dict]] = mapped_column(JSONB)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class MetricsSnapshot(Base):
    __tablename__ = "metrics_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    level: Mapped[str] = mapped_column(
        String,
        CheckConstraint("level IN ('org','domain','team')"),
        nullable=False,
    )
    level_id: Mapped[Optional[str]] = mapped_column(Text)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_snapshots_level_captured", "level", "level_id", "captured_at"),
    )


class CommentLog(Base):
    __tablename__ = "comment_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issue_id: Mapped[str] = mapped_column(Text, nullable=False)
    comment_type: Mapped[str] = mapped_column(Text, nullable=False)
    commented_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_comment_log_issue_type", "issue_id", "comment_type"),
    )
