"""Tests for per-engineer WIP rows."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from src.config import ThresholdSettings
from src.metrics.domains import DomainMap
from src.metrics.engineers import build_engineer_rows, compute_and_store_engineers
from tests.conftest import NOW, make_issue, make_issue_data


def _issues(count: int, **overrides) -> list:
    return [make_issue(id=f"i{n}", identifier=f"ENG-{n}", **overrides) for n in range(count)]


NO_MAPPING = DomainMap({}, {})


class TestWipLimit:
    def test_six_started_issues_within_limit(self):
        rows = build_engineer_rows(_issues(6), NO_MAPPING, ThresholdSettings(), NOW)
        assert rows[0]["wip_issue_count"] == 6
        assert rows[0]["wip_limit_violation"] == 0

    def test_seven_started_issues_violate(self):
        rows = build_engineer_rows(_issues(7), NO_MAPPING, ThresholdSettings(), NOW)
        assert rows[0]["wip_limit_violation"] == 1

    def test_eight_issues_in_one_project_single_row(self):
        rows = build_engineer_rows(_issues(8, project_id="P"), NO_MAPPING, ThresholdSettings(), NOW)
        assert len(rows) == 1
        row = rows[0]
        assert row["wip_limit_violation"] == 1
        assert row["active_project_count"] == 1
        assert row["multi_project_violation"] == 0
        assert len(row["active_issues"]) == 8


class TestMultiProject:
    def test_two_projects_is_violation(self):
        issues = [make_issue(project_id="A"), make_issue(project_id="B")]
        row = build_engineer_rows(issues, NO_MAPPING, ThresholdSettings(), NOW)[0]
        assert row["active_project_count"] == 2
        assert row["multi_project_violation"] == 1

    def test_issues_without_project_do_not_count(self):
        issues = [make_issue(project_id="A"), make_issue(project_id=None)]
        row = build_engineer_rows(issues, NO_MAPPING, ThresholdSettings(), NOW)[0]
        assert row["active_project_count"] == 1


class TestRowContents:
    def test_aggregates(self):
        issues = [
            make_issue(estimate=2.0, started_at=NOW - timedelta(days=20), priority=0),
            make_issue(estimate=None, started_at=NOW - timedelta(days=2), last_comment_at=None),
        ]
        row = build_engineer_rows(issues, NO_MAPPING, ThresholdSettings(), NOW)[0]
        assert row["wip_total_points"] == 2.0
        assert row["oldest_wip_age_days"] == 20.0
        assert row["missing_estimate_count"] == 1
        assert row["missing_priority_count"] == 1
        assert row["no_recent_comment_count"] == 1
        assert row["wip_age_violation_count"] == 1
        assert row["team_names"] == ["Engineering"]

    def test_unassigned_issues_skipped(self):
        rows = build_engineer_rows([make_issue(assignee_id=None)], NO_MAPPING, ThresholdSettings(), NOW)
        assert rows == []

    def test_mapping_filters_engineers(self):
        domain_map = DomainMap({}, {"jane doe": "ENG"})
        issues = [
            make_issue(assignee_id="u1", assignee_name="Jane Doe"),
            make_issue(assignee_id="u2", assignee_name="Contractor"),
        ]
        rows = build_engineer_rows(issues, domain_map, ThresholdSettings(), NOW)
        assert [r["assignee_name"] for r in rows] == ["Jane Doe"]


class TestComputeAndStore:
    @pytest.mark.asyncio
    async def test_idle_engineer_zeroed_not_deleted(self, fake_store, mock_session, settings):
        fake_store.engineers["gone"] = SimpleNamespace(
            assignee_id="gone", assignee_name="Old Timer", wip_issue_count=3, wip_limit_violation=0
        )
        fake_store.add_issues(make_issue_data(assignee_id="u1", assignee_name="Jane Doe"))

        computed = await compute_and_store_engineers(mock_session, settings, NOW)

        assert computed == 1
        assert fake_store.engineers["u1"].wip_issue_count == 1
        assert fake_store.engineers["gone"].wip_issue_count == 0
        assert fake_store.engineers["gone"].active_issues == []
