"""Derived per-engineer WIP rows."""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, ThresholdSettings, get_settings
from src.metrics import violations
from src.metrics.domains import DomainMap
from src.storage import queries

logger = logging.getLogger(__name__)

IDLE_ENGINEER = {
    "wip_issue_count": 0,
    "wip_total_points": 0,
    "wip_limit_violation": 0,
    "oldest_wip_age_days": None,
    "active_project_count": 0,
    "multi_project_violation": 0,
    "missing_estimate_count": 0,
    "missing_priority_count": 0,
    "no_recent_comment_count": 0,
    "wip_age_violation_count": 0,
    "active_issues": [],
}


def _issue_summary(issue) -> dict:
    return {
        "id": issue.id,
        "identifier": issue.identifier,
        "title": issue.title,
        "state_name": issue.state_name,
        "estimate": issue.estimate,
        "priority": issue.priority,
        "project_id": issue.project_id,
        "project_name": issue.project_name,
        "team_key": issue.team_key,
        "url": issue.url,
        "started_at": issue.started_at.isoformat() if issue.started_at else None,
        "last_comment_at": issue.last_comment_at.isoformat() if issue.last_comment_at else None,
    }


def build_engineer_row(
    assignee_id: str,
    issues: list,
    thresholds: ThresholdSettings,
    now: datetime,
) -> dict:
    """One engineer's WIP metrics from their started issues."""
    first = issues[0]
    teams: dict[str, str] = {}
    projects: set[str] = set()
    points = 0.0
    oldest_started: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    for issue in issues:
        teams[issue.team_id] = issue.team_name
        if issue.project_id:
            projects.add(issue.project_id)
        points += issue.estimate or 0
        started = violations.as_utc(issue.started_at)
        if started and (oldest_started is None or started < oldest_started):
            oldest_started = started
        updated = violations.as_utc(issue.updated_at)
        if updated and (last_activity is None or updated > last_activity):
            last_activity = updated

    counts = {"missing_estimate": 0, "missing_priority": 0, "no_recent_comment": 0, "wip_age": 0}
    for issue in issues:
        counts["missing_estimate"] += violations.missing_estimate(issue)
        counts["missing_priority"] += violations.missing_priority(issue)
        counts["no_recent_comment"] += violations.no_recent_comment(
            issue, now, thresholds.comment_business_days
        )
        counts["wip_age"] += violations.wip_age_violation(issue, now, thresholds.wip_age_days)

    return {
        "assignee_id": assignee_id,
        "assignee_name": first.assignee_name,
        "avatar_url": getattr(first, "assignee_avatar_url", None),
        "team_ids": sorted(teams),
        "team_names": sorted(set(teams.values())),
        "wip_issue_count": len(issues),
        "wip_total_points": points,
        "wip_limit_violation": 1 if len(issues) > thresholds.wip_limit else 0,
        "oldest_wip_age_days": (
            round((now - oldest_started).total_seconds() / 86400, 1) if oldest_started else None
        ),
        "last_activity_at": last_activity,
        "active_project_count": len(projects),
        "multi_project_violation": 1 if len(projects) > thresholds.multi_project_limit else 0,
        "missing_estimate_count": counts["missing_estimate"],
        "missing_priority_count": counts["missing_priority"],
        "no_recent_comment_count": counts["no_recent_comment"],
        "wip_age_violation_count": counts["wip_age"],
        "active_issues": [_issue_summary(i) for i in issues],
    }


def build_engineer_rows(
    started_issues: list,
    domain_map: DomainMap,
    thresholds: ThresholdSettings,
    now: Optional[datetime] = None,
) -> list[dict]:
    now = now or datetime.now(timezone.utc)
    by_assignee: dict[str, list] = defaultdict(list)
    for issue in started_issues:
        if not issue.assignee_id or not domain_map.is_engineer(issue.assignee_name):
            continue
        by_assignee[issue.assignee_id].append(issue)

    return [
        build_engineer_row(assignee_id, issues, thresholds, now)
        for assignee_id, issues in by_assignee.items()
    ]


async def compute_and_store_engineers(
    session: AsyncSession,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> int:
    """Recompute every engineer. Rows are never deleted.

    Engineers with no started work left keep their row with WIP zeroed.
    """
    settings = settings or get_settings()
    started = await queries.get_started_issues(session)
    rows = build_engineer_rows(
        started, DomainMap.from_settings(settings.mappings), settings.thresholds, now
    )
    for row in rows:
        await queries.upsert_engineer(session, row)

    computed = {row["assignee_id"] for row in rows}
    for engineer in await queries.get_all_engineers(session):
        if engineer.assignee_id not in computed and engineer.wip_issue_count:
            await queries.upsert_engineer(session, {"assignee_id": engineer.assignee_id, **IDLE_ENGINEER})
    await session.flush()
    logger.info("Computed metrics for %d engineers", len(rows))
    return len(rows)
