"""On-demand sync of a single project, outside the phased run."""

import logging
from typing import Optional

from src.config import Settings, get_settings
from src.linear.client import LinearClient, RateLimitError
from src.metrics.engineers import compute_and_store_engineers
from src.storage import queries
from src.storage.db import get_session
from src.sync.context import SessionFactory, SyncContext
from src.sync.events import EventChannel
from src.sync.orchestrator import CONNECTION_ERROR, RATE_LIMIT_ERROR, SCHEMA_HINT, is_schema_error
from src.sync.projects import sync_project
from src.sync.state import ProjectBucket, SyncResult

logger = logging.getLogger(__name__)


async def _record_status(ctx: SyncContext, error: Optional[str]) -> None:
    async with ctx.session() as session:
        await queries.update_sync_metadata(
            session,
            sync_status="error" if error else "idle",
            sync_error=error,
            sync_progress_percent=None,
            api_query_count=ctx.client.query_count,
        )


async def sync_single_project(
    project_id: str,
    client: Optional[LinearClient] = None,
    session_factory: SessionFactory = get_session,
    events: Optional[EventChannel] = None,
    settings: Optional[Settings] = None,
) -> SyncResult:
    """Refetch one project's issues and metadata and recompute engineers.

    Status and error land on the metadata row like a full sync, but the
    checkpoint and last sync time of the phased sync are left untouched.
    """
    settings = settings or get_settings()
    owns_client = client is None
    client = client or LinearClient.from_settings(settings.linear)
    try:
        return await _sync_single_project(project_id, client, session_factory, events, settings)
    finally:
        if owns_client:
            await client.close()


async def _sync_single_project(
    project_id: str,
    client: LinearClient,
    session_factory: SessionFactory,
    events: Optional[EventChannel],
    settings: Settings,
) -> SyncResult:
    client.reset_query_count()
    ctx = SyncContext(client, session_factory, settings, events=events, persist_checkpoint=False)
    async with ctx.session() as session:
        await queries.update_sync_metadata(
            session, sync_status="syncing", sync_error=None, sync_progress_percent=0
        )

    if not await client.test_connection():
        logger.error(CONNECTION_ERROR)
        await _record_status(ctx, CONNECTION_ERROR)
        return SyncResult(success=False, error=CONNECTION_ERROR, api_query_count=client.query_count)

    try:
        await sync_project(ctx, project_id, ProjectBucket.ACTIVE)
        async with ctx.session() as session:
            await compute_and_store_engineers(session, settings)
    except RateLimitError:
        logger.warning("Project sync %s stopped by rate limit", project_id)
        await _record_status(ctx, RATE_LIMIT_ERROR)
        return SyncResult(success=False, error=RATE_LIMIT_ERROR, api_query_count=client.query_count)
    except Exception as e:
        message = str(e)
        if is_schema_error(e):
            message = f"{message} {SCHEMA_HINT}"
        logger.error("Project sync %s failed: %s", project_id, message, exc_info=True)
        await _record_status(ctx, message)
        return SyncResult(success=False, error=message, api_query_count=client.query_count)

    await _record_status(ctx, None)
    logger.info("Synced project %s (%d issues)", project_id, ctx.project_issue_count)
    return SyncResult(
        success=True,
        new_count=ctx.counts.new_count,
        updated_count=ctx.counts.updated_count,
        project_count=1,
        project_issue_count=ctx.project_issue_count,
        api_query_count=client.query_count,
    )
