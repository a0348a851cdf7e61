"""Initiative phases and the final metrics computation."""

import logging

from src.metrics.engineers import compute_and_store_engineers
from src.metrics.projects import compute_and_store_projects
from src.storage import queries
from src.sync.context import SyncContext
from src.sync.phases import SyncPhase
from src.sync.projects import process_projects_in_parallel
from src.sync.state import ProjectBucket, UnitStatus

logger = logging.getLogger(__name__)


async def run_initiatives(ctx: SyncContext) -> None:
    if not ctx.should_run(SyncPhase.INITIATIVES):
        return
    if ctx.state.initiatives_sync == UnitStatus.COMPLETE:
        logger.info("Initiatives already synced in this run")
        return

    await ctx.enter_phase(SyncPhase.INITIATIVES)
    ctx.token.raise_if_cancelled()
    initiatives = await ctx.client.fetch_initiatives()
    async with ctx.session() as session:
        for initiative in initiatives:
            await queries.upsert_initiative(session, initiative)
    ctx.state.initiatives_sync = UnitStatus.COMPLETE
    await ctx.checkpoint()
    ctx.report_queries()
    logger.info("Synced %d initiatives", len(initiatives))


async def run_initiative_projects(ctx: SyncContext) -> None:
    """Sync projects linked from initiatives that aren't stored yet."""
    if not ctx.should_run(SyncPhase.INITIATIVE_PROJECTS):
        return

    await ctx.enter_phase(SyncPhase.INITIATIVE_PROJECTS)
    async with ctx.session() as session:
        initiatives = await queries.get_all_initiatives(session)
        known = await queries.get_existing_project_ids(session)

    if initiatives:
        linked = [pid for i in initiatives for pid in (i.project_ids or [])]
    else:
        ctx.token.raise_if_cancelled()
        linked = [pid for i in await ctx.client.fetch_initiatives() for pid in i.project_ids]

    missing = [pid for pid in dict.fromkeys(linked) if pid not in known]
    count = await process_projects_in_parallel(ctx, missing, ProjectBucket.INITIATIVE)
    logger.info("Synced %d initiative projects", count)


async def run_computing_metrics(ctx: SyncContext) -> None:
    """Recompute every project row, then every engineer row."""
    if not ctx.should_run(SyncPhase.COMPUTING_METRICS):
        return

    await ctx.enter_phase(SyncPhase.COMPUTING_METRICS)
    project_data = ctx.cache.all()
    async with ctx.session() as session:
        issues = await queries.get_all_issues(session)
        await compute_and_store_projects(
            session,
            issues,
            project_data,
            ctx.settings,
            empty_projects=list(project_data.values()),
        )
        await compute_and_store_engineers(session, ctx.settings)
