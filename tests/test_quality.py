"""Tests for the quality pillar's composite bug score."""

from datetime import timedelta

import pytest

from src.metrics.quality import (
    bug_trends,
    calculate_quality_health,
    composite_score,
    oldest_open_bugs,
)
from tests.conftest import NOW, bug_label, make_issue


def _bug(**overrides):
    defaults = dict(labels=[bug_label()], created_at=NOW - timedelta(days=60))
    defaults.update(overrides)
    return make_issue(**defaults)


class TestCompositeScore:
    def test_no_bugs_is_perfect(self):
        assert composite_score(0, 0, 0.0) == 100.0

    def test_at_bug_threshold_loses_thirty(self):
        # 8 open bugs per engineer with no net change and brand-new bugs
        assert composite_score(8, 0, 0.0, engineer_count=1) == 70.0

    def test_scaled_per_engineer(self):
        assert composite_score(8, 0, 0.0, engineer_count=2) == 85.0

    def test_shrinking_backlog_earns_points_back(self):
        assert composite_score(8, -1, 0.0) == 100.0

    def test_clamped_to_zero(self):
        assert composite_score(100, 10, 400.0) == 0.0

    def test_zero_engineers_treated_as_one(self):
        assert composite_score(8, 0, 0.0, engineer_count=0) == 70.0


class TestCalculateQualityHealth:
    def test_counts_and_score(self):
        issues = [
            _bug(state_type="started"),
            _bug(state_type="unstarted", created_at=NOW - timedelta(days=5)),
            _bug(
                state_type="completed",
                created_at=NOW - timedelta(days=30),
                completed_at=NOW - timedelta(days=3),
            ),
            make_issue(labels=[]),
        ]
        result = calculate_quality_health(issues, engineer_count=4, now=NOW)
        assert result["open_bug_count"] == 2
        assert result["bugs_opened_in_period"] == 1
        assert result["bugs_closed_in_period"] == 1
        assert result["net_bug_change"] == 0
        assert result["average_bug_age_days"] == 32.5
        assert result["max_bug_age_days"] == 60.0
        assert result["engineer_count"] == 4
        assert result["composite_score"] == pytest.approx(93.25, abs=0.1)
        assert result["status"] == "healthy"

    def test_no_bugs_is_healthy(self):
        result = calculate_quality_health([make_issue()], now=NOW)
        assert result["composite_score"] == 100.0
        assert result["status"] == "healthy"

    def test_team_scope(self):
        issues = [_bug(team_key="ENG"), _bug(team_key="APP"), _bug(team_key="APP")]
        assert calculate_quality_health(issues, team_keys=["ENG"], now=NOW)["open_bug_count"] == 1
        assert calculate_quality_health(issues, team_keys=["app"], now=NOW)["open_bug_count"] == 2


class TestBugLists:
    def test_oldest_open_bugs(self):
        old = _bug(created_at=NOW - timedelta(days=90))
        new = _bug(created_at=NOW - timedelta(days=2))
        closed = _bug(state_type="completed", created_at=NOW - timedelta(days=200))
        ranked = oldest_open_bugs([new, closed, old], limit=5, now=NOW)
        assert [issue for issue, _ in ranked] == [old, new]
        assert ranked[0][1] == pytest.approx(90.0)

    def test_bug_trends_oldest_period_first(self):
        issues = [
            _bug(created_at=NOW - timedelta(days=1)),
            _bug(created_at=NOW - timedelta(days=20), completed_at=NOW - timedelta(days=2), state_type="completed"),
        ]
        trends = bug_trends(issues, periods=4, period_days=7, now=NOW)
        assert len(trends) == 4
        assert trends[0]["period_start"] < trends[-1]["period_start"]
        # Last week: one opened, one closed
        assert trends[-1]["net_change"] == 0
        # Third week back: one opened
        assert trends[1]["net_change"] == 1
