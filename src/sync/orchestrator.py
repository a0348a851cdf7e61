"""Sync orchestrator: runs the phases in order and owns failure handling.

Rate limits leave a checkpoint behind so the next run resumes where this
one stopped. Every other failure clears it.
"""

import logging
from typing import Optional

from src.config import Settings, get_settings
from src.linear.client import LinearClient, RateLimitError, is_rate_limit_message
from src.metrics.snapshot import capture_snapshots
from src.storage import queries
from src.storage.db import get_session
from src.sync.cleanup import cleanup_excluded_data
from src.sync.context import SessionFactory, SyncContext
from src.sync.events import EventChannel, PhaseChanged, ProgressPercent
from src.sync.initiatives import run_computing_metrics, run_initiative_projects, run_initiatives
from src.sync.issues import run_initial_issues, run_recently_updated
from src.sync.phases import SyncPhase
from src.sync.projects import run_active_projects, run_completed_projects, run_planned_projects
from src.sync.state import SyncOptions, SyncResult

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Failed to connect to Linear. Check your API key."
RATE_LIMIT_ERROR = "Rate limit exceeded during sync"
SCHEMA_HINT = "Try resetting the database (pulse db reset)."

_SCHEMA_MARKERS = (
    "no such column",
    "table_info",
    "undefinedcolumn",
    "undefinedtable",
)

PHASES = (
    run_initial_issues,
    run_recently_updated,
    run_active_projects,
    run_planned_projects,
    run_completed_projects,
    run_initiatives,
    run_initiative_projects,
    run_computing_metrics,
)


def is_schema_error(error: BaseException) -> bool:
    """Storage shape no longer matches the models."""
    text = f"{type(error).__name__} {error}".lower()
    orig = getattr(error, "orig", None)
    if orig is not None:
        text += f" {type(orig).__name__}".lower()
    if "values for" in text and "columns" in text:
        return True
    if "does not exist" in text and ("column" in text or "relation" in text):
        return True
    return any(marker in text for marker in _SCHEMA_MARKERS)


def _result(ctx: SyncContext, success: bool, error: Optional[str] = None, total: int = 0) -> SyncResult:
    return SyncResult(
        success=success,
        new_count=ctx.counts.new_count,
        updated_count=ctx.counts.updated_count,
        total_count=total,
        issue_count=len(ctx.started_issues) + len(ctx.recent_issues),
        project_count=ctx.project_count,
        project_issue_count=ctx.project_issue_count,
        api_query_count=ctx.client.query_count,
        error=error,
    )


async def _record_failure(ctx: SyncContext, message: str, keep_checkpoint: bool) -> None:
    async with ctx.session() as session:
        if keep_checkpoint:
            await queries.save_partial_sync_state(session, ctx.state)
        else:
            await queries.clear_partial_sync_state(session)
        await queries.update_sync_metadata(
            session,
            sync_status="error",
            sync_error=message,
            api_query_count=ctx.client.query_count,
        )


async def _load_checkpoint(session_factory: SessionFactory):
    """Resume only from a checkpoint left by a rate-limited run."""
    async with session_factory() as session:
        metadata = await queries.get_sync_metadata(session)
        last_sync_time = metadata.last_sync_time
        checkpoint = await queries.get_partial_sync_state(session)
        if checkpoint is not None and not is_rate_limit_message(metadata.sync_error):
            logger.info("Discarding checkpoint left by a non-rate-limit failure")
            await queries.clear_partial_sync_state(session)
            checkpoint = None
        await queries.update_sync_metadata(
            session, sync_status="syncing", sync_error=None, sync_progress_percent=0
        )
    return checkpoint, last_sync_time


async def perform_sync(
    options: Optional[SyncOptions] = None,
    client: Optional[LinearClient] = None,
    session_factory: SessionFactory = get_session,
    events: Optional[EventChannel] = None,
    settings: Optional[Settings] = None,
) -> SyncResult:
    """Run one full sync. Never raises; failures come back in the result."""
    settings = settings or get_settings()
    owns_client = client is None
    client = client or LinearClient.from_settings(settings.linear)
    try:
        return await _perform_sync(options or SyncOptions(), client, session_factory, events, settings)
    finally:
        if owns_client:
            await client.close()


async def _perform_sync(
    options: SyncOptions,
    client: LinearClient,
    session_factory: SessionFactory,
    events: Optional[EventChannel],
    settings: Settings,
) -> SyncResult:
    client.reset_query_count()
    checkpoint, last_sync_time = await _load_checkpoint(session_factory)
    ctx = SyncContext(
        client,
        session_factory,
        settings,
        options,
        events,
        checkpoint,
        last_sync_time,
    )
    if checkpoint is not None:
        phase = checkpoint.current_phase.label if checkpoint.current_phase else "start"
        logger.info("Resuming interrupted sync from %s", phase)

    if not await client.test_connection():
        logger.error(CONNECTION_ERROR)
        await _record_failure(ctx, CONNECTION_ERROR, keep_checkpoint=False)
        return _result(ctx, False, CONNECTION_ERROR)

    try:
        async with ctx.session() as session:
            await cleanup_excluded_data(session, settings.sync)
        for run_phase in PHASES:
            await run_phase(ctx)
        ctx.token.raise_if_cancelled()
    except Exception as e:
        message = str(e)
        if isinstance(e, RateLimitError) or is_rate_limit_message(message):
            ctx.token.cancel(message)
            logger.warning("Sync stopped by rate limit; checkpoint saved for resume")
            await _record_failure(ctx, RATE_LIMIT_ERROR, keep_checkpoint=True)
            return _result(ctx, False, RATE_LIMIT_ERROR)
        if is_schema_error(e):
            message = f"{message} {SCHEMA_HINT}"
        logger.error("Sync failed: %s", message, exc_info=True)
        await _record_failure(ctx, message, keep_checkpoint=False)
        return _result(ctx, False, message)

    async with ctx.session() as session:
        await queries.mark_sync_succeeded(session, client.query_count)
        total = await queries.get_total_issue_count(session)
    ctx.events.emit(PhaseChanged(SyncPhase.COMPLETE))
    ctx.events.emit(ProgressPercent(100))
    logger.info(
        "Sync complete: %d new, %d updated, %d projects, %d API queries",
        ctx.counts.new_count,
        ctx.counts.updated_count,
        ctx.project_count,
        client.query_count,
    )

    if settings.metrics.capture_after_sync:
        try:
            async with ctx.session() as session:
                await capture_snapshots(session, settings)
        except Exception as e:
            logger.warning("Metrics snapshot capture failed: %s", e, exc_info=True)

    return _result(ctx, True, total=total)
