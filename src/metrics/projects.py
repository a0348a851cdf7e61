"""Derived per-project rows: counts, flow metrics, flags and projections."""

import calendar
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, ThresholdSettings, get_settings
from src.linear.types import ProjectFullData, ProjectUpdate
from src.metrics import violations
from src.metrics.domains import DomainMap
from src.storage import queries

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400
NO_VELOCITY_MONTHS = 6


def end_of_month(value: datetime) -> datetime:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=last_day, hour=23, minute=59, second=59, microsecond=0)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _days(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    start, end = violations.as_utc(start), violations.as_utc(end)
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / DAY_SECONDS


def _mean(values: list[float]) -> Optional[float]:
    values = [v for v in values if v is not None and v >= 0]
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def weekly_velocity(completed: int, earliest_created: Optional[datetime], now: datetime) -> float:
    """Completed issues per week since the first issue was created."""
    elapsed_days = max(1.0, _days(earliest_created, now) or 1.0)
    return completed / (elapsed_days / 7)


def projected_end_date(
    total: int, completed: int, earliest_created: Optional[datetime], now: datetime
) -> Optional[datetime]:
    """Extrapolate remaining issues at current velocity, rounded to month end.

    With no completions yet the projection is six months out.
    """
    if earliest_created is None:
        return None
    velocity = weekly_velocity(completed, earliest_created, now)
    if velocity > 0:
        weeks_left = (total - completed) / velocity
        return end_of_month(now + timedelta(weeks=weeks_left))
    return end_of_month(add_months(now, NO_VELOCITY_MONTHS))


def sort_updates(updates: Iterable[ProjectUpdate]) -> list[ProjectUpdate]:
    return sorted(updates, key=lambda u: violations.as_utc(u.created_at), reverse=True)


def _latest_update_at(updates: Optional[list[ProjectUpdate]]) -> Optional[datetime]:
    if not updates:
        return None
    return max(violations.as_utc(u.created_at) for u in updates)


def _metadata_fields(
    project_id: str,
    first_issue,
    full_data: Optional[ProjectFullData],
    existing,
) -> dict:
    """Raw project columns. Fresh full data wins, then issue linkage, then the stored row."""
    fields = {"project_id": project_id}
    if first_issue is not None:
        fields.update(
            project_name=first_issue.project_name or "",
            project_state_category=first_issue.project_state_category,
            project_status=first_issue.project_status,
            project_health=first_issue.project_health,
            project_updated_at=first_issue.project_updated_at,
            project_lead_id=first_issue.project_lead_id,
            project_lead_name=first_issue.project_lead_name,
            target_date=first_issue.project_target_date,
            completed_at=first_issue.project_completed_at,
        )
    if full_data is not None:
        fields.update(
            project_name=full_data.name or fields.get("project_name", ""),
            project_state_category=full_data.state_category or fields.get("project_state_category"),
            project_status=full_data.status or fields.get("project_status"),
            project_health=full_data.health,
            project_updated_at=full_data.updated_at or fields.get("project_updated_at"),
            project_lead_id=full_data.lead_id,
            project_lead_name=full_data.lead_name,
            target_date=full_data.target_date or fields.get("target_date"),
            completed_at=full_data.completed_at or fields.get("completed_at"),
            labels=full_data.labels,
            project_description=full_data.description,
            project_content=full_data.content,
            project_updates=sort_updates(full_data.updates),
        )
    elif existing is not None:
        fields.update(
            labels=existing.labels,
            project_description=existing.project_description,
            project_content=existing.project_content,
            project_updates=existing.project_updates,
        )
        if first_issue is None:
            fields.setdefault("project_name", existing.project_name)
    fields.setdefault("project_name", "")
    return fields


def build_project_row(
    project_id: str,
    issues: list,
    thresholds: ThresholdSettings,
    domain_map: DomainMap,
    full_data: Optional[ProjectFullData] = None,
    existing=None,
    whitelist: Optional[set[str]] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Compute a project's derived columns from all of its issues."""
    now = now or datetime.now(timezone.utc)
    row = _metadata_fields(project_id, issues[0] if issues else None, full_data, existing)

    issues_by_state: Counter = Counter()
    engineers: set[str] = set()
    teams: set[str] = set()
    team_issues: dict[str, list] = defaultdict(list)
    completed = in_progress = 0
    last_activity = earliest_created = earliest_started = None

    for issue in issues:
        issues_by_state[issue.state_name] += 1
        done = violations.is_completed(issue)
        if done:
            completed += 1
        elif violations.is_started(issue):
            in_progress += 1
        if issue.assignee_name and domain_map.is_engineer(issue.assignee_name):
            engineers.add(issue.assignee_name)
        if not whitelist or issue.team_key in whitelist:
            teams.add(issue.team_key)
        team_issues[issue.team_key].append(issue)

        updated = violations.as_utc(issue.updated_at)
        if updated and (last_activity is None or updated > last_activity):
            last_activity = updated
        created = violations.as_utc(issue.created_at)
        if created and (earliest_created is None or created < earliest_created):
            earliest_created = created
        started = violations.as_utc(issue.started_at)
        if started and (earliest_started is None or started < earliest_started):
            earliest_started = started

    counts = {"missing_estimate": 0, "missing_priority": 0, "no_recent_comment": 0, "wip_age": 0}
    missing_description = 0
    for issue in issues:
        counts["missing_estimate"] += violations.missing_estimate(issue)
        counts["missing_priority"] += violations.missing_priority(issue)
        counts["no_recent_comment"] += violations.no_recent_comment(
            issue, now, thresholds.comment_business_days
        )
        counts["wip_age"] += violations.wip_age_violation(issue, now, thresholds.wip_age_days)
        missing_description += violations.missing_description(issue)

    state = row.get("project_state_category")
    started_count = sum(1 for i in issues if violations.is_started(i))
    planning = violations.is_planned_project(state)

    cycle_times, lead_times = [], []
    points_done = days_spent = 0.0
    for issue in issues:
        if not violations.is_completed(issue):
            continue
        finished = issue.completed_at or issue.updated_at
        cycle_times.append(_days(issue.started_at, finished))
        lead_times.append(_days(issue.created_at, finished))
        if issue.estimate:
            spent = _days(issue.started_at or issue.created_at, finished)
            if spent and spent > 0:
                points_done += issue.estimate
                days_spent += spent

    total = len(issues)
    estimated_end = projected_end_date(total, completed, earliest_created, now)
    target = row.get("target_date")
    discrepancy = False
    if target is not None and estimated_end is not None:
        target_dt = datetime(target.year, target.month, target.day, tzinfo=timezone.utc)
        discrepancy = abs((estimated_end - target_dt).days) > thresholds.date_discrepancy_days

    missing_rice = violations.has_missing_project_scoped_labels(row.get("labels"))
    update_at = _latest_update_at(row.get("project_updates"))

    row.update(
        total_issues=total,
        completed_issues=completed,
        in_progress_issues=in_progress,
        engineer_count=len(engineers),
        missing_estimate_count=counts["missing_estimate"],
        missing_priority_count=counts["missing_priority"],
        no_recent_comment_count=counts["no_recent_comment"],
        wip_age_violation_count=counts["wip_age"],
        missing_description_count=missing_description,
        total_points=sum(i.estimate or 0 for i in issues),
        missing_points=counts["missing_estimate"],
        average_cycle_time=_mean(cycle_times),
        average_lead_time=_mean(lead_times),
        linear_progress=round(completed / total * 100, 1) if total else None,
        velocity=round(weekly_velocity(completed, earliest_created, now), 2) if total else None,
        days_per_story_point=round(days_spent / points_done, 2) if points_done else None,
        has_status_mismatch=violations.has_status_mismatch(state, issues),
        is_stale_update=violations.is_stale_update(update_at, now, thresholds.stale_update_days),
        missing_lead=violations.is_missing_lead(state, row.get("project_lead_name"), issues),
        has_violations=violations.has_violations(issues, now) or missing_rice,
        missing_health=not row.get("project_health") and not (planning and started_count == 0),
        has_date_discrepancy=discrepancy,
        start_date=earliest_started,
        last_activity_date=last_activity,
        estimated_end_date=estimated_end,
        issues_by_state=dict(issues_by_state),
        engineers=sorted(engineers),
        teams=sorted(teams),
        velocity_by_team={
            team: round(
                weekly_velocity(
                    sum(1 for i in team_list if violations.is_completed(i)), earliest_created, now
                ),
                2,
            )
            for team, team_list in team_issues.items()
        },
    )
    return row


def build_empty_project_row(
    full_data: ProjectFullData,
    thresholds: ThresholdSettings,
    domain_map: DomainMap,
    whitelist: Optional[set[str]] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Metadata-only row for a project with no issues."""
    row = build_project_row(full_data.id, [], thresholds, domain_map, full_data, None, whitelist, now)
    row["teams"] = sorted(
        k for k in full_data.team_keys if not whitelist or k in whitelist
    )
    return row


async def compute_and_store_projects(
    session: AsyncSession,
    issues: list,
    project_data: Optional[dict[str, ProjectFullData]] = None,
    settings: Optional[Settings] = None,
    empty_projects: Optional[list[ProjectFullData]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Recompute and upsert a row for every project referenced by `issues`.

    Projects in `empty_projects` with no issues get metadata-only rows,
    restricted to whitelisted teams when a whitelist is configured.
    """
    settings = settings or get_settings()
    project_data = project_data or {}
    domain_map = DomainMap.from_settings(settings.mappings)
    whitelist = set(settings.sync.whitelist_teams) or None

    grouped: dict[str, list] = defaultdict(list)
    for issue in issues:
        if issue.project_id:
            grouped[issue.project_id].append(issue)

    stored = 0
    for project_id, project_issues in grouped.items():
        existing = await queries.get_project(session, project_id)
        row = build_project_row(
            project_id,
            project_issues,
            settings.thresholds,
            domain_map,
            project_data.get(project_id),
            existing,
            whitelist,
            now,
        )
        await queries.upsert_project(session, row)
        stored += 1

    for full_data in empty_projects or []:
        if full_data.id in grouped:
            continue
        if whitelist and not whitelist.intersection(full_data.team_keys):
            continue
        row = build_empty_project_row(full_data, settings.thresholds, domain_map, whitelist, now)
        await queries.upsert_project(session, row)
        stored += 1

    await session.flush()
    logger.info("Computed metrics for %d projects", stored)
    return stored
