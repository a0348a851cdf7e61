"""Tests for the team health pillar."""

from src.metrics.domains import DomainMap
from src.metrics.team_health import (
    calculate_team_health,
    calculate_team_health_for_teams,
    get_project_engineers_in_violation,
    is_healthy_workload,
)
from tests.conftest import make_engineer, make_project

NO_MAPPING = DomainMap({}, {})


def _team():
    engineers = [
        make_engineer(assignee_name="Ann"),
        make_engineer(assignee_name="Bob"),
        make_engineer(assignee_name="Cat"),
        make_engineer(assignee_name="Dan", wip_issue_count=8, wip_limit_violation=1),
    ]
    projects = [
        make_project(project_id="p1", engineers=["Ann", "Bob"], teams=["ENG"]),
        make_project(project_id="p2", engineers=["Cat", "Dan"], teams=["APP"]),
    ]
    return engineers, projects


class TestWorkload:
    def test_healthy_requires_both_limits(self):
        assert is_healthy_workload(make_engineer()) is True
        assert is_healthy_workload(make_engineer(wip_limit_violation=1)) is False
        assert is_healthy_workload(make_engineer(multi_project_violation=1)) is False

    def test_violating_engineer_listed_once(self):
        dan = make_engineer(assignee_name="Dan", wip_limit_violation=1)
        project = make_project(engineers=["Dan", "Dan", "Ann"])
        found = get_project_engineers_in_violation(project, [dan, make_engineer(assignee_name="Ann")])
        assert found == [dan]


class TestCalculateTeamHealth:
    def test_one_of_four_unhealthy(self):
        engineers, projects = _team()
        result = calculate_team_health(engineers, projects, NO_MAPPING)
        assert result["healthy_workload_percent"] == 75.0
        assert result["healthy_ic_count"] == 3
        assert result["total_ic_count"] == 4
        assert result["wip_violation_count"] == 1
        assert result["impacted_project_count"] == 1
        assert result["healthy_project_count"] == 1
        assert result["project_violation_percent"] == 50.0
        assert result["status"] == "warning"

    def test_no_engineers_is_fully_healthy(self):
        result = calculate_team_health([], [], NO_MAPPING)
        assert result["healthy_workload_percent"] == 100.0
        assert result["total_ic_count"] == 0
        assert result["project_violation_percent"] == 0.0
        assert result["status"] == "healthy"

    def test_inactive_projects_ignored(self):
        engineers, projects = _team()
        projects[1].in_progress_issues = 0
        result = calculate_team_health(engineers, projects, NO_MAPPING)
        assert result["total_project_count"] == 1
        # Only Ann and Bob are on active projects
        assert result["total_ic_count"] == 2
        assert result["status"] == "healthy"

    def test_mapping_restricts_analysis(self):
        engineers, projects = _team()
        domain_map = DomainMap({}, {"ann": "ENG", "dan": "APP"})
        result = calculate_team_health(engineers, projects, domain_map)
        assert result["total_ic_count"] == 2
        assert result["healthy_workload_percent"] == 50.0
        assert result["status"] == "critical"


class TestTeamScope:
    def test_scoped_through_mapping(self):
        engineers, projects = _team()
        domain_map = DomainMap({"ENG": "Platform"}, {"ann": "ENG", "bob": "ENG", "dan": "APP"})
        result = calculate_team_health_for_teams(["ENG"], engineers, projects, domain_map)
        assert result["total_ic_count"] == 2
        assert result["total_project_count"] == 1
        assert result["status"] == "healthy"

    def test_scoped_through_team_names_without_mapping(self):
        engineers, projects = _team()
        for e in engineers[2:]:
            e.team_names = ["Apps"]
        result = calculate_team_health_for_teams(
            ["app"], engineers, projects, NO_MAPPING, {"APP": "Apps"}
        )
        assert result["total_ic_count"] == 2
        assert result["wip_violation_count"] == 1
        assert result["impacted_project_count"] == 1
