"""Team health pillar: share of ICs with a healthy workload.

An IC is healthy when they are within the WIP limit AND not spread across
several active projects. Projects count as impacted when any engineer on
them is unhealthy.
"""

from typing import Optional

from src.metrics.domains import DomainMap, in_teams
from src.metrics.status import percent, pillar_status


def is_healthy_workload(engineer) -> bool:
    return not engineer.wip_limit_violation and not engineer.multi_project_violation


def _by_name(engineers: list) -> dict:
    return {e.assignee_name: e for e in engineers}


def get_project_engineers_in_violation(project, engineers: list) -> list:
    """Engineers on `project` whose workload is unhealthy, each listed once."""
    lookup = _by_name(engineers)
    found = []
    for name in dict.fromkeys(project.engineers or []):
        engineer = lookup.get(name)
        if engineer is not None and not is_healthy_workload(engineer):
            found.append(engineer)
    return found


def has_project_violation(project, engineers: list) -> bool:
    return bool(get_project_engineers_in_violation(project, engineers))


def _engineers_to_analyze(engineers: list, active_projects: list, domain_map: DomainMap) -> list:
    with_wip = [e for e in engineers if e.wip_issue_count > 0]
    if domain_map.has_engineer_mapping:
        return [e for e in with_wip if domain_map.is_engineer(e.assignee_name)]

    # Without a mapping, analyse engineers seen on active projects.
    on_projects = {name for p in active_projects for name in (p.engineers or [])}
    relevant = [e for e in engineers if e.assignee_name in on_projects]
    return relevant or with_wip


def calculate_team_health(engineers: list, projects: list, domain_map: DomainMap) -> dict:
    active_projects = [p for p in projects if p.in_progress_issues > 0]
    analysed = _engineers_to_analyze(engineers, active_projects, domain_map)

    healthy = sum(1 for e in analysed if is_healthy_workload(e))
    total = len(analysed)
    impacted = sum(1 for p in active_projects if has_project_violation(p, engineers))
    healthy_percent = percent(healthy, total)

    return {
        "healthy_workload_percent": healthy_percent,
        "healthy_ic_count": healthy,
        "total_ic_count": total,
        "wip_violation_count": sum(1 for e in analysed if e.wip_limit_violation),
        "multi_project_violation_count": sum(1 for e in analysed if e.multi_project_violation),
        "impacted_project_count": impacted,
        "healthy_project_count": len(active_projects) - impacted,
        "total_project_count": len(active_projects),
        "project_violation_percent": percent(impacted, len(active_projects), default=0.0),
        "status": pillar_status(healthy_percent),
    }


def _scoped_engineers(
    team_keys: list[str],
    engineers: list,
    domain_map: DomainMap,
    team_names: Optional[dict[str, str]],
) -> list:
    if domain_map.has_engineer_mapping:
        names = domain_map.engineers_for_teams(team_keys)
        return [e for e in engineers if (e.assignee_name or "").lower() in names]

    # Fall back to the team names recorded on each engineer.
    team_names = {k.upper(): v.upper() for k, v in (team_names or {}).items()}
    wanted = {team_names[k.upper()] for k in team_keys if k.upper() in team_names}
    return [
        e for e in engineers
        if any(name.upper() in wanted for name in e.team_names or [])
    ]


def calculate_team_health_for_teams(
    team_keys: list[str],
    engineers: list,
    projects: list,
    domain_map: DomainMap,
    team_names: Optional[dict[str, str]] = None,
) -> dict:
    """Team health scoped to a team or a domain's teams.

    `team_names` maps team key to display name and is only needed when
    no engineer mapping is configured.
    """
    scoped_projects = [p for p in projects if in_teams(p.teams, team_keys)]
    scoped_engineers = _scoped_engineers(team_keys, engineers, domain_map, team_names)
    return calculate_team_health(scoped_engineers, scoped_projects, domain_map)
