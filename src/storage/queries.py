"""Storage reads and writes for issues, projects, engineers and sync state."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.linear.types import InitiativeData
from src.storage.models import CommentLog, Engineer, Initiative, Issue, Project, SyncMetadata
from src.sync.state import PartialSyncState

logger = logging.getLogger(__name__)

SYNC_METADATA_ID = 1


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

def _started_clause():
    return (
        (Issue.state_type == "started")
        & Issue.completed_at.is_(None)
        & Issue.canceled_at.is_(None)
        & ~func.lower(Issue.state_name).contains("done")
        & ~func.lower(Issue.state_name).contains("completed")
    )


async def get_all_issues(session: AsyncSession) -> list[Issue]:
    result = await session.execute(select(Issue))
    return list(result.scalars().all())


async def get_started_issues(session: AsyncSession) -> list[Issue]:
    """Issues in a started state that are not done in practice."""
    result = await session.execute(
        select(Issue)
        .where(_started_clause())
        .order_by(Issue.assignee_name, Issue.team_name, Issue.title)
    )
    return list(result.scalars().all())


async def get_issues_by_project(session: AsyncSession, project_id: str) -> list[Issue]:
    result = await session.execute(select(Issue).where(Issue.project_id == project_id))
    return list(result.scalars().all())


async def get_unassigned_started_issues(
    session: AsyncSession, excluded_states: tuple[str, ...] = ("Paused", "Blocked")
) -> list[Issue]:
    result = await session.execute(
        select(Issue).where(
            Issue.state_type == "started",
            Issue.assignee_id.is_(None),
            Issue.state_name.not_in(excluded_states),
        )
    )
    return list(result.scalars().all())


async def get_existing_issue_ids(session: AsyncSession, ids: Optional[list[str]] = None) -> set[str]:
    query = select(Issue.id)
    if ids is not None:
        query = query.where(Issue.id.in_(ids))
    result = await session.execute(query)
    return {row[0] for row in result.all()}


async def get_total_issue_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Issue))
    return result.scalar_one()


async def upsert_issue(session: AsyncSession, values: dict) -> Issue:
    """Insert or update an issue keyed by its remote id."""
    issue = await session.get(Issue, values["id"])
    if issue is None:
        issue = Issue(**values)
        session.add(issue)
    else:
        for key, value in values.items():
            setattr(issue, key, value)
    return issue


async def delete_issues_by_teams(session: AsyncSession, team_keys: list[str]) -> int:
    if not team_keys:
        return 0
    result = await session.execute(delete(Issue).where(Issue.team_key.in_(team_keys)))
    return result.rowcount or 0


async def delete_issues_not_in_teams(session: AsyncSession, team_keys: list[str]) -> int:
    if not team_keys:
        return 0
    result = await session.execute(delete(Issue).where(Issue.team_key.not_in(team_keys)))
    return result.rowcount or 0


async def delete_issues_by_assignee_names(session: AsyncSession, names: list[str]) -> int:
    if not names:
        return 0
    result = await session.execute(delete(Issue).where(Issue.assignee_name.in_(names)))
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

async def get_all_projects(session: AsyncSession) -> list[Project]:
    result = await session.execute(select(Project).order_by(Project.project_name))
    return list(result.scalars().all())


async def get_project(session: AsyncSession, project_id: str) -> Optional[Project]:
    return await session.get(Project, project_id)


async def get_existing_project_ids(session: AsyncSession) -> set[str]:
    result = await session.execute(select(Project.project_id))
    return {row[0] for row in result.all()}


async def upsert_project(session: AsyncSession, values: dict) -> Project:
    project = await session.get(Project, values["project_id"])
    if project is None:
        project = Project(**values)
        session.add(project)
    else:
        for key, value in values.items():
            setattr(project, key, value)
    return project


# ---------------------------------------------------------------------------
# Engineers
# ---------------------------------------------------------------------------

async def get_all_engineers(session: AsyncSession) -> list[Engineer]:
    result = await session.execute(select(Engineer).order_by(Engineer.assignee_name))
    return list(result.scalars().all())


async def upsert_engineer(session: AsyncSession, values: dict) -> Engineer:
    engineer = await session.get(Engineer, values["assignee_id"])
    if engineer is None:
        engineer = Engineer(**values)
        session.add(engineer)
    else:
        for key, value in values.items():
            setattr(engineer, key, value)
    return engineer


async def delete_engineers_by_names(session: AsyncSession, names: list[str]) -> int:
    if not names:
        return 0
    result = await session.execute(delete(Engineer).where(Engineer.assignee_name.in_(names)))
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Initiatives
# ---------------------------------------------------------------------------

async def get_all_initiatives(session: AsyncSession) -> list[Initiative]:
    result = await session.execute(select(Initiative).order_by(Initiative.name))
    return list(result.scalars().all())


async def upsert_initiative(session: AsyncSession, data: InitiativeData) -> Initiative:
    values = {
        "id": data.id,
        "name": data.name,
        "description": data.description,
        "status": data.status,
        "target_date": data.target_date,
        "owner_id": data.owner_id,
        "owner_name": data.owner_name,
        "is_archived": data.archived_at is not None,
        "is_completed": data.completed_at is not None,
        "is_started": data.started_at is not None,
        "project_ids": data.project_ids,
    }
    initiative = await session.get(Initiative, data.id)
    if initiative is None:
        initiative = Initiative(**values)
        session.add(initiative)
    else:
        for key, value in values.items():
            setattr(initiative, key, value)
    return initiative


# ---------------------------------------------------------------------------
# Sync metadata and checkpoint
# ---------------------------------------------------------------------------

async def get_sync_metadata(session: AsyncSession) -> SyncMetadata:
    """Return the singleton metadata row, creating it on first use."""
    metadata = await session.get(SyncMetadata, SYNC_METADATA_ID)
    if metadata is None:
        metadata = SyncMetadata(id=SYNC_METADATA_ID, sync_status="idle")
        session.add(metadata)
        await session.flush()
    return metadata


async def update_sync_metadata(session: AsyncSession, **updates) -> SyncMetadata:
    metadata = await get_sync_metadata(session)
    for key, value in updates.items():
        setattr(metadata, key, value)
    await session.flush()
    return metadata


async def mark_sync_succeeded(session: AsyncSession, query_count: int) -> None:
    await update_sync_metadata(
        session,
        sync_status="idle",
        sync_error=None,
        sync_progress_percent=None,
        api_query_count=query_count,
        last_sync_time=datetime.now(timezone.utc),
        partial_sync_state=None,
    )


async def get_partial_sync_state(session: AsyncSession) -> Optional[PartialSyncState]:
    metadata = await get_sync_metadata(session)
    if not metadata.partial_sync_state:
        return None
    try:
        return PartialSyncState.model_validate(metadata.partial_sync_state)
    except ValueError as e:
        logger.warning("Discarding unreadable partial sync state: %s", e)
        return None


async def save_partial_sync_state(session: AsyncSession, state: PartialSyncState) -> None:
    await update_sync_metadata(session, partial_sync_state=state.model_dump(mode="json"))


async def clear_partial_sync_state(session: AsyncSession) -> None:
    await update_sync_metadata(session, partial_sync_state=None)


# ---------------------------------------------------------------------------
# Comment log
# ---------------------------------------------------------------------------

async def has_recent_comment_log(
    session: AsyncSession, issue_id: str, comment_type: str, hours_ago: int = 24
) -> bool:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    result = await session.execute(
        select(func.count())
        .select_from(CommentLog)
        .where(
            CommentLog.issue_id == issue_id,
            CommentLog.comment_type == comment_type,
            CommentLog.commented_at > cutoff,
        )
    )
    return (result.scalar() or 0) > 0


async def log_comment(session: AsyncSession, issue_id: str, comment_type: str) -> None:
    session.add(
        CommentLog(issue_id=issue_id, comment_type=comment_type, commented_at=datetime.now(timezone.utc))
    )
    await session.flush()


async def cleanup_comment_logs(session: AsyncSession, days_to_keep: int = 30) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    result = await session.execute(delete(CommentLog).where(CommentLog.commented_at < cutoff))
    return result.rowcount or 0
