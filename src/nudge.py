"""Warn on started issues that have no assignee.

Each issue is commented on at most once per 24 hours. The local comment
log is checked first and Linear itself second, so comments made from
another machine are not duplicated.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from src.config import Settings, get_settings
from src.linear.client import LinearClient, RateLimitError
from src.storage import queries
from src.storage.db import get_session
from src.sync.context import SessionFactory
from src.sync.orchestrator import perform_sync
from src.sync.phases import SyncPhase
from src.sync.state import SyncOptions

logger = logging.getLogger(__name__)

UNASSIGNED_WARNING = "unassigned_warning"
RECENT_HOURS = 24
MESSAGE_MARKER = "This issue requires an assignee"
UNASSIGNED_MESSAGE = (
    f"**{MESSAGE_MARKER}**\n\n"
    "This started issue is currently unassigned. Please assign an owner to "
    "ensure it gets proper attention and tracking."
)


@dataclass
class NudgeResult:
    success: bool
    commented: list[str] = field(default_factory=list)
    failed_count: int = 0
    message: Optional[str] = None


async def comment_on_unassigned_issues(
    client: Optional[LinearClient] = None,
    session_factory: SessionFactory = get_session,
    settings: Optional[Settings] = None,
    sync_first: bool = True,
) -> NudgeResult:
    """Comment on every unassigned started issue not warned in the last day."""
    settings = settings or get_settings()
    owns_client = client is None
    client = client or LinearClient.from_settings(settings.linear)
    try:
        if sync_first:
            result = await perform_sync(
                SyncOptions(phases=[SyncPhase.INITIAL_ISSUES]),
                client=client,
                session_factory=session_factory,
                settings=settings,
            )
            if not result.success:
                return NudgeResult(success=False, message="Failed to sync issues before commenting")
        return await _comment(client, session_factory)
    finally:
        if owns_client:
            await client.close()


async def _comment(client: LinearClient, session_factory: SessionFactory) -> NudgeResult:
    async with session_factory() as session:
        await queries.cleanup_comment_logs(session)
        issues = await queries.get_unassigned_started_issues(session)
        candidates = [
            issue for issue in issues
            if not await queries.has_recent_comment_log(session, issue.id, UNASSIGNED_WARNING, RECENT_HOURS)
        ]

    if not issues:
        return NudgeResult(success=True, message="No unassigned started issues")

    result = NudgeResult(success=True)
    try:
        for issue in candidates:
            if await client.has_recent_comment_with_text(issue.id, MESSAGE_MARKER, RECENT_HOURS):
                continue
            if await client.comment_on_issue(issue.id, UNASSIGNED_MESSAGE):
                async with session_factory() as session:
                    await queries.log_comment(session, issue.id, UNASSIGNED_WARNING)
                result.commented.append(issue.identifier)
                logger.info("Commented on unassigned issue %s", issue.identifier)
            else:
                result.failed_count += 1
    except RateLimitError as e:
        logger.warning("Stopped commenting: %s", e)
        result.success = False
        result.message = str(e)
        return result

    if not result.commented and not result.failed_count:
        result.message = f"All {len(issues)} unassigned issues already have recent warnings"
    return result
