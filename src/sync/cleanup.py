"""Start-of-sync removal of data that configuration now excludes."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import SyncSettings
from src.storage import queries

logger = logging.getLogger(__name__)


async def cleanup_excluded_data(session: AsyncSession, settings: SyncSettings) -> dict[str, int]:
    """Delete issues from ignored or non-whitelisted teams and from ignored
    assignees, plus those assignees' engineer rows.

    Returns removal counts keyed by what was removed.
    """
    removed: dict[str, int] = {}
    if settings.ignored_teams:
        removed["ignored_team_issues"] = await queries.delete_issues_by_teams(
            session, settings.ignored_teams
        )
    if settings.whitelist_teams:
        removed["non_whitelisted_issues"] = await queries.delete_issues_not_in_teams(
            session, settings.whitelist_teams
        )
    if settings.ignored_assignees:
        removed["ignored_assignee_issues"] = await queries.delete_issues_by_assignee_names(
            session, settings.ignored_assignees
        )
        removed["ignored_engineers"] = await queries.delete_engineers_by_names(
            session, settings.ignored_assignees
        )

    for what, count in removed.items():
        if count:
            logger.info("Cleanup removed %d %s", count, what.replace("_", " "))
    return removed
