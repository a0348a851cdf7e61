"""Typed records decoded from Linear GraphQL payloads."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class IssueLabel(BaseModel):
    id: Optional[str] = None
    name: str
    color: Optional[str] = None
    parent_name: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict) -> "IssueLabel":
        return cls(
            id=node.get("id"),
            name=node.get("name", ""),
            color=node.get("color"),
            parent_name=(node.get("parent") or {}).get("name"),
        )


class ProjectUpdate(BaseModel):
    id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    body: str = ""
    health: Optional[str] = None
    author_name: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict) -> "ProjectUpdate":
        return cls(
            id=node["id"],
            created_at=node["createdAt"],
            updated_at=node.get("updatedAt"),
            body=node.get("body") or "",
            health=node.get("health"),
            author_name=(node.get("user") or {}).get("name"),
        )


class IssueData(BaseModel):
    """One issue as fetched, with its project linkage flattened in."""

    id: str
    identifier: str
    title: str
    description: Optional[str] = None
    team_id: str
    team_name: str
    team_key: str
    state_id: str
    state_name: str
    state_type: str
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    assignee_avatar_url: Optional[str] = None
    creator_id: Optional[str] = None
    creator_name: Optional[str] = None
    priority: int = 0
    estimate: Optional[float] = None
    last_comment_at: Optional[datetime] = None
    comment_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    url: str = ""
    parent_id: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    project_state_category: Optional[str] = None
    project_status: Optional[str] = None
    project_health: Optional[str] = None
    project_updated_at: Optional[datetime] = None
    project_lead_id: Optional[str] = None
    project_lead_name: Optional[str] = None
    project_target_date: Optional[date] = None
    project_start_date: Optional[date] = None
    project_completed_at: Optional[datetime] = None
    labels: list[IssueLabel] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: dict) -> Optional["IssueData"]:
        """Decode an issue node. Returns None for nodes missing team or state."""
        team = node.get("team")
        state = node.get("state")
        if not team or not state:
            return None

        comments = (node.get("comments") or {}).get("nodes") or []
        assignee = node.get("assignee") or {}
        creator = node.get("creator") or {}
        project = node.get("project") or {}
        project_status = project.get("status") or {}
        lead = project.get("lead") or {}

        return cls(
            id=node["id"],
            identifier=node["identifier"],
            title=node.get("title") or "",
            description=node.get("description") or None,
            team_id=team["id"],
            team_name=team["name"],
            team_key=team["key"],
            state_id=state["id"],
            state_name=state["name"],
            state_type=state["type"],
            assignee_id=assignee.get("id"),
            assignee_name=assignee.get("name"),
            assignee_avatar_url=assignee.get("avatarUrl"),
            creator_id=creator.get("id"),
            creator_name=creator.get("name"),
            priority=node.get("priority") or 0,
            estimate=node.get("estimate"),
            last_comment_at=comments[0]["createdAt"] if comments else None,
            created_at=node["createdAt"],
            updated_at=node["updatedAt"],
            started_at=node.get("startedAt"),
            completed_at=node.get("completedAt"),
            canceled_at=node.get("canceledAt"),
            url=node.get("url") or "",
            parent_id=(node.get("parent") or {}).get("id"),
            project_id=project.get("id"),
            project_name=project.get("name"),
            project_state_category=project_status.get("type") or project.get("state"),
            project_status=project_status.get("name"),
            project_health=project.get("health"),
            project_updated_at=project.get("updatedAt"),
            project_lead_id=lead.get("id"),
            project_lead_name=lead.get("name"),
            project_target_date=project.get("targetDate"),
            project_start_date=project.get("startDate"),
            project_completed_at=project.get("completedAt"),
            labels=[IssueLabel.from_node(n) for n in (node.get("labels") or {}).get("nodes") or []],
        )


class ProjectFullData(BaseModel):
    """Project metadata plus narrative content and status updates."""

    id: str
    name: str = ""
    state_category: Optional[str] = None
    status: Optional[str] = None
    health: Optional[str] = None
    lead_id: Optional[str] = None
    lead_name: Optional[str] = None
    target_date: Optional[date] = None
    start_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    labels: list[str] = Field(default_factory=list)
    content: Optional[str] = None
    description: Optional[str] = None
    updates: list[ProjectUpdate] = Field(default_factory=list)
    team_keys: list[str] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: dict) -> "ProjectFullData":
        status = node.get("status") or {}
        lead = node.get("lead") or {}
        return cls(
            id=node["id"],
            name=node.get("name") or "",
            state_category=status.get("type") or node.get("state"),
            status=status.get("name"),
            health=node.get("health"),
            lead_id=lead.get("id"),
            lead_name=lead.get("name"),
            target_date=node.get("targetDate"),
            start_date=node.get("startDate"),
            completed_at=node.get("completedAt"),
            updated_at=node.get("updatedAt"),
            labels=[n["name"] for n in (node.get("labels") or {}).get("nodes") or []],
            content=node.get("content") or None,
            description=node.get("description") or None,
            updates=[
                ProjectUpdate.from_node(n)
                for n in (node.get("projectUpdates") or {}).get("nodes") or []
            ],
            team_keys=[n["key"] for n in (node.get("teams") or {}).get("nodes") or []],
        )


class InitiativeData(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: Optional[str] = None
    target_date: Optional[date] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    archived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    project_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: dict) -> "InitiativeData":
        owner = node.get("owner") or {}
        return cls(
            id=node["id"],
            name=node.get("name") or "",
            description=node.get("description") or None,
            status=node.get("status"),
            target_date=node.get("targetDate"),
            owner_id=owner.get("id"),
            owner_name=owner.get("name"),
            archived_at=node.get("archivedAt"),
            completed_at=node.get("completedAt"),
            started_at=node.get("startedAt"),
            project_ids=[n["id"] for n in (node.get("projects") or {}).get("nodes") or []],
        )
