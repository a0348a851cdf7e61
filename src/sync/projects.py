"""Project-level phases, fanned out through the concurrency limiter."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.linear.client import LinearAPIError, RateLimitError
from src.linear.types import ProjectFullData
from src.metrics.projects import build_empty_project_row, build_project_row
from src.storage import queries
from src.storage.writer import filter_ignored_teams, write_issues
from src.sync.context import SyncContext
from src.sync.events import StatsDelta
from src.sync.limiter import raise_for_rate_limit
from src.sync.phases import SyncPhase
from src.sync.state import ProjectBucket, UnitStatus

logger = logging.getLogger(__name__)


def _unique(ids) -> list[str]:
    return list(dict.fromkeys(pid for pid in ids if pid))


def _allowed_by_whitelist(ctx: SyncContext, data: ProjectFullData) -> bool:
    return ctx.whitelist is None or bool(ctx.whitelist.intersection(data.team_keys))


async def sync_project(ctx: SyncContext, project_id: str, bucket: ProjectBucket) -> None:
    """Fetch one project's issues and metadata, then store its row."""
    if not ctx.is_covered(project_id):
        ctx.token.raise_if_cancelled()
        fetched = await ctx.client.fetch_issues_by_projects([project_id])
        fetched = filter_ignored_teams(fetched, ctx.settings.sync.ignored_teams)
        async with ctx.session() as session:
            counts = await write_issues(session, fetched)
        ctx.mark_covered([project_id])
        ctx.record_written(counts, project_issues=len(fetched))

    ctx.token.raise_if_cancelled()
    full_data = await ctx.cache.get_optional(project_id)

    async with ctx.session() as session:
        issues = await queries.get_issues_by_project(session, project_id)
        if issues:
            existing = await queries.get_project(session, project_id)
            row = build_project_row(
                project_id,
                issues,
                ctx.settings.thresholds,
                ctx.domain_map,
                full_data,
                existing,
                ctx.whitelist,
            )
            await queries.upsert_project(session, row)
        elif full_data is not None and _allowed_by_whitelist(ctx, full_data):
            row = build_empty_project_row(
                full_data, ctx.settings.thresholds, ctx.domain_map, ctx.whitelist
            )
            await queries.upsert_project(session, row)

    ctx.project_count += 1
    ctx.state.mark_project(bucket, project_id, UnitStatus.COMPLETE)
    await ctx.checkpoint()
    name = full_data.name if full_data else (issues[0].project_name if issues else project_id)
    ctx.events.emit(StatsDelta(projects_done=1, current_project_name=name))
    ctx.report_queries()


async def _prefetch_project_data(ctx: SyncContext, project_ids: list[str]) -> None:
    """Warm the cache in batches; a failed batch falls back to single fetches."""
    ctx.token.raise_if_cancelled()
    try:
        await ctx.cache.prefetch(project_ids)
    except RateLimitError:
        raise
    except LinearAPIError as e:
        logger.warning("Batched project fetch failed, fetching one by one: %s", e)


async def process_projects_in_parallel(
    ctx: SyncContext, project_ids: list[str], bucket: ProjectBucket
) -> int:
    """Sync projects at most `project_concurrency` at a time.

    Projects already complete in the checkpoint are skipped. Failures are
    settled; only a rate limit escalates. Returns the number attempted.
    """
    done = ctx.state.completed_ids(bucket)
    pending = [pid for pid in _unique(project_ids) if pid not in done]
    if done:
        logger.info("Skipping %d projects already synced in %s", len(project_ids) - len(pending), bucket.value)

    limit = ctx.settings.sync.project_limit
    if limit is not None and len(pending) > limit:
        logger.info("Limit mode: syncing %d of %d projects", limit, len(pending))
        pending = pending[:limit]

    for pid in pending:
        ctx.state.mark_project(bucket, pid, UnitStatus.INCOMPLETE)
    await ctx.checkpoint()
    ctx.events.emit(StatsDelta(set_total_projects=len(pending)))
    await _prefetch_project_data(ctx, pending)

    results = await ctx.limiter.run_all(pending, lambda pid: sync_project(ctx, pid, bucket))
    raise_for_rate_limit(results)
    return len(pending)


async def run_active_projects(ctx: SyncContext) -> None:
    if not ctx.should_run(SyncPhase.ACTIVE_PROJECTS):
        return
    await ctx.enter_phase(SyncPhase.ACTIVE_PROJECTS)
    ids = _unique(i.project_id for i in ctx.started_issues + ctx.recent_issues)
    count = await process_projects_in_parallel(ctx, ids, ProjectBucket.ACTIVE)
    logger.info("Synced %d active projects", count)


async def _run_listed_projects(
    ctx: SyncContext,
    phase: SyncPhase,
    bucket: ProjectBucket,
    flag_name: str,
    fetch,
) -> None:
    if not ctx.should_run(phase):
        return
    if getattr(ctx.state, flag_name) == UnitStatus.COMPLETE:
        logger.info("%s already synced in this run", phase.label)
        return

    await ctx.enter_phase(phase)
    ctx.token.raise_if_cancelled()
    projects = [p for p in await fetch() if _allowed_by_whitelist(ctx, p)]
    ctx.cache.put_many(projects)
    count = await process_projects_in_parallel(ctx, [p.id for p in projects], bucket)
    setattr(ctx.state, flag_name, UnitStatus.COMPLETE)
    await ctx.checkpoint()
    logger.info("Synced %d %s", count, phase.label.lower())


async def run_planned_projects(ctx: SyncContext) -> None:
    await _run_listed_projects(
        ctx,
        SyncPhase.PLANNED_PROJECTS,
        ProjectBucket.PLANNED,
        "planned_projects_sync",
        ctx.client.fetch_planned_projects,
    )


def completed_projects_since(months: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=30 * months)


async def run_completed_projects(ctx: SyncContext) -> None:
    since = completed_projects_since(ctx.settings.sync.completed_project_months)

    async def fetch():
        return await ctx.client.fetch_completed_projects(since)

    await _run_listed_projects(
        ctx,
        SyncPhase.COMPLETED_PROJECTS,
        ProjectBucket.COMPLETED,
        "completed_projects_sync",
        fetch,
    )
