"""Issue-centric phases: started issues and the recently-updated window."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.config import SyncSettings
from src.linear.client import LinearAPIError, RateLimitError
from src.linear.types import IssueData
from src.storage import queries
from src.storage.writer import filter_ignored_teams, issue_from_row, write_issues
from src.sync.context import SyncContext
from src.sync.events import StatsDelta, StatusMessage
from src.sync.phases import SyncPhase
from src.sync.state import SyncOptions, UnitStatus

logger = logging.getLogger(__name__)

LIMITED_RECENT_WINDOW_DAYS = 0.5


def recent_window_start(
    sync_settings: SyncSettings,
    options: SyncOptions,
    last_sync_time: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """Lower bound on `updatedAt` for the recently-updated phase."""
    now = now or datetime.now(timezone.utc)
    if options.incremental_sync and last_sync_time is not None:
        return last_sync_time
    if options.deep_history_sync:
        return now - timedelta(days=sync_settings.deep_history_days)
    if sync_settings.limit_sync:
        return now - timedelta(days=LIMITED_RECENT_WINDOW_DAYS)
    return now - timedelta(days=sync_settings.recent_window_days)


async def _load_started_from_storage(ctx: SyncContext) -> list[IssueData]:
    async with ctx.session() as session:
        rows = await queries.get_started_issues(session)
    return [issue_from_row(row) for row in rows]


async def run_initial_issues(ctx: SyncContext) -> None:
    if not ctx.should_run(SyncPhase.INITIAL_ISSUES):
        ctx.started_issues = await _load_started_from_storage(ctx)
        return

    await ctx.enter_phase(SyncPhase.INITIAL_ISSUES)
    if ctx.state.initial_issues_sync == UnitStatus.COMPLETE:
        logger.info("Started issues already synced in this run, loading from storage")
        issues = await _load_started_from_storage(ctx)
    else:
        ctx.token.raise_if_cancelled()
        ctx.events.emit(StatusMessage("Fetching started issues"))
        issues = await ctx.client.fetch_started_issues()
        issues = filter_ignored_teams(issues, ctx.settings.sync.ignored_teams)
        async with ctx.session() as session:
            counts = await write_issues(session, issues)
        ctx.record_written(counts)
        ctx.state.initial_issues_sync = UnitStatus.COMPLETE
        await ctx.checkpoint()
        logger.info("Synced %d started issues", len(issues))

    ctx.started_issues = issues
    ctx.note_issue_phase(issues)
    ctx.events.emit(StatsDelta(started_issues=len(issues)))


async def run_recently_updated(ctx: SyncContext) -> None:
    if not ctx.should_run(SyncPhase.RECENTLY_UPDATED_ISSUES):
        return

    await ctx.enter_phase(SyncPhase.RECENTLY_UPDATED_ISSUES)
    since = recent_window_start(ctx.settings.sync, ctx.options, ctx.last_sync_time)
    ctx.token.raise_if_cancelled()
    try:
        fetched = await ctx.client.fetch_recently_updated_issues(since)
    except RateLimitError:
        raise
    except LinearAPIError as e:
        logger.error("Fetching recently updated issues failed, continuing: %s", e)
        return

    started_ids = {i.id for i in ctx.started_issues}
    issues = [i for i in fetched if i.id not in started_ids]
    issues = filter_ignored_teams(issues, ctx.settings.sync.ignored_teams)
    async with ctx.session() as session:
        counts = await write_issues(session, issues)
    ctx.record_written(counts)
    ctx.recent_issues = issues
    ctx.note_issue_phase(issues)
    logger.info("Synced %d issues updated since %s", len(issues), since.isoformat())
