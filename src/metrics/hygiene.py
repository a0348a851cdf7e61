"""Linear hygiene pillar: how many tracked discipline checks pass.

score = 100 * (1 - total_gaps / max_possible_gaps), where every active
engineer's WIP issue can fail 4 checks and every active project 5.
"""

from typing import Callable, Optional

from src.metrics.domains import DomainMap, in_teams
from src.metrics.status import pillar_status

ENGINEER_GAP_TYPES = 4
PROJECT_GAP_TYPES = 5

_ENGINEER_GAPS = (
    "missing_estimate_count",
    "missing_priority_count",
    "no_recent_comment_count",
    "wip_age_violation_count",
)
_PROJECT_GAPS = (
    "missing_lead",
    "is_stale_update",
    "has_status_mismatch",
    "missing_health",
    "has_date_discrepancy",
)


def engineer_gaps(engineer) -> int:
    return sum(int(getattr(engineer, field) or 0) for field in _ENGINEER_GAPS)


def project_gaps(project) -> int:
    return sum(int(bool(getattr(project, field))) for field in _PROJECT_GAPS)


def _active_engineers(engineers: list) -> list:
    return [e for e in engineers if e.wip_issue_count > 0]


def _active_projects(projects: list) -> list:
    return [p for p in projects if p.in_progress_issues > 0]


def calculate_hygiene_health(
    engineers: list,
    projects: list,
    engineer_filter: Optional[Callable] = None,
    project_filter: Optional[Callable] = None,
) -> dict:
    if engineer_filter is not None:
        engineers = [e for e in engineers if engineer_filter(e)]
    if project_filter is not None:
        projects = [p for p in projects if project_filter(p)]
    engineers = _active_engineers(engineers)
    projects = _active_projects(projects)

    breakdown = {field: 0 for field in _ENGINEER_GAPS + _PROJECT_GAPS}
    for engineer in engineers:
        for field in _ENGINEER_GAPS:
            breakdown[field] += int(getattr(engineer, field) or 0)
    for project in projects:
        for field in _PROJECT_GAPS:
            breakdown[field] += int(bool(getattr(project, field)))

    total_gaps = sum(breakdown.values())
    wip_issues = sum(e.wip_issue_count for e in engineers)
    max_gaps = wip_issues * ENGINEER_GAP_TYPES + len(projects) * PROJECT_GAP_TYPES

    if max_gaps == 0:
        score = 100.0
    else:
        score = round(max(0.0, min(100.0, (1 - total_gaps / max_gaps) * 100)), 1)

    return {
        "hygiene_score": score,
        "total_gaps": total_gaps,
        "max_possible_gaps": max_gaps,
        "missing_estimate_count": breakdown["missing_estimate_count"],
        "missing_priority_count": breakdown["missing_priority_count"],
        "no_recent_comment_count": breakdown["no_recent_comment_count"],
        "wip_age_violation_count": breakdown["wip_age_violation_count"],
        "missing_lead_count": breakdown["missing_lead"],
        "stale_update_count": breakdown["is_stale_update"],
        "status_mismatch_count": breakdown["has_status_mismatch"],
        "missing_health_count": breakdown["missing_health"],
        "date_discrepancy_count": breakdown["has_date_discrepancy"],
        "engineers_with_gaps": sum(1 for e in engineers if engineer_gaps(e)),
        "total_engineers": len(engineers),
        "projects_with_gaps": sum(1 for p in projects if project_gaps(p)),
        "total_projects": len(projects),
        "status": pillar_status(score),
    }


def calculate_hygiene_health_for_teams(
    team_keys: list[str], engineers: list, projects: list, domain_map: DomainMap
) -> dict:
    """Hygiene scoped to a team or a domain's teams.

    Engineers are scoped through the engineer mapping when one exists;
    otherwise every engineer is counted.
    """
    engineer_filter = None
    if domain_map.has_engineer_mapping:
        names = domain_map.engineers_for_teams(team_keys)

        def engineer_filter(engineer) -> bool:
            return (engineer.assignee_name or "").lower() in names

    return calculate_hygiene_health(
        engineers,
        projects,
        engineer_filter,
        lambda p: in_teams(p.teams, team_keys),
    )


def engineers_with_gaps(engineers: list, limit: int = 20) -> list[tuple]:
    """(engineer, gap_count) pairs, worst first."""
    ranked = [(e, engineer_gaps(e)) for e in _active_engineers(engineers)]
    ranked = [pair for pair in ranked if pair[1]]
    ranked.sort(key=lambda pair: pair[1], reverse=True)
    return ranked[:limit]


def projects_with_gaps(projects: list, limit: int = 20) -> list[tuple]:
    """(project, gap_count) pairs, worst first."""
    ranked = [(p, project_gaps(p)) for p in _active_projects(projects)]
    ranked = [pair for pair in ranked if pair[1]]
    ranked.sort(key=lambda pair: pair[1], reverse=True)
    return ranked[:limit]
