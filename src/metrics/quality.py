"""Quality pillar: composite 0-100 bug score, scaled per engineer.

Three penalties subtract from 100, each capped at its weight:

- open bugs per engineer, reaching the full 30 at `quality_bug_threshold`
- net bug change (opened - closed over the period) per engineer, 40 at
  `quality_net_threshold`; shrinking backlogs earn up to 40 back
- average open-bug age, reaching the full 30 at `quality_age_threshold_days`

The result is clamped to [0, 100].
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from src.config import ThresholdSettings
from src.metrics import violations
from src.metrics.domains import in_teams
from src.metrics.status import pillar_status

BUG_WEIGHT = 30.0
NET_WEIGHT = 40.0
AGE_WEIGHT = 30.0


def is_open(issue) -> bool:
    return issue.state_type not in ("completed", "canceled")


def issue_age_days(issue, now: datetime) -> float:
    return (now - violations.as_utc(issue.created_at)).total_seconds() / 86400


def composite_score(
    open_count: int,
    net_change: int,
    average_age_days: float,
    engineer_count: int = 1,
    thresholds: Optional[ThresholdSettings] = None,
) -> float:
    thresholds = thresholds or ThresholdSettings()
    engineers = max(1, engineer_count)

    bug_ratio = min(1.0, (open_count / engineers) / thresholds.quality_bug_threshold)
    net_ratio = max(-1.0, min(1.0, (net_change / engineers) / thresholds.quality_net_threshold))
    age_ratio = min(1.0, average_age_days / thresholds.quality_age_threshold_days)

    score = 100 - BUG_WEIGHT * bug_ratio - NET_WEIGHT * net_ratio - AGE_WEIGHT * age_ratio
    return round(max(0.0, min(100.0, score)), 1)


def calculate_quality_health(
    issues: list,
    engineer_count: int = 1,
    thresholds: Optional[ThresholdSettings] = None,
    team_keys: Optional[list[str]] = None,
    now: Optional[datetime] = None,
) -> dict:
    thresholds = thresholds or ThresholdSettings()
    now = now or datetime.now(timezone.utc)
    period_start = now - timedelta(days=thresholds.quality_period_days)

    bugs = [i for i in issues if violations.is_bug(i) and in_teams([i.team_key], team_keys)]
    open_bugs = [b for b in bugs if is_open(b)]
    opened = sum(1 for b in bugs if violations.as_utc(b.created_at) >= period_start)
    closed = sum(
        1 for b in bugs
        if b.completed_at is not None and violations.as_utc(b.completed_at) >= period_start
    )
    ages = [issue_age_days(b, now) for b in open_bugs]
    average_age = sum(ages) / len(ages) if ages else 0.0
    net_change = opened - closed
    score = composite_score(len(open_bugs), net_change, average_age, engineer_count, thresholds)

    return {
        "open_bug_count": len(open_bugs),
        "bugs_opened_in_period": opened,
        "bugs_closed_in_period": closed,
        "net_bug_change": net_change,
        "average_bug_age_days": round(average_age, 1),
        "max_bug_age_days": round(max(ages), 1) if ages else 0.0,
        "engineer_count": max(1, engineer_count),
        "composite_score": score,
        "status": pillar_status(score),
    }


def oldest_open_bugs(issues: list, limit: int = 10, now: Optional[datetime] = None) -> list[tuple]:
    """(issue, age_days) pairs for the oldest open bugs."""
    now = now or datetime.now(timezone.utc)
    aged = [(i, issue_age_days(i, now)) for i in issues if violations.is_bug(i) and is_open(i)]
    aged.sort(key=lambda pair: pair[1], reverse=True)
    return aged[:limit]


def bug_trends(
    issues: list,
    periods: int = 4,
    period_days: int = 7,
    now: Optional[datetime] = None,
) -> list[dict]:
    """Net bug change per period, oldest period first."""
    now = now or datetime.now(timezone.utc)
    bugs = [i for i in issues if violations.is_bug(i)]
    trends = []
    for back in range(periods - 1, -1, -1):
        end = now - timedelta(days=back * period_days)
        start = end - timedelta(days=period_days)
        opened = sum(1 for b in bugs if start <= violations.as_utc(b.created_at) < end)
        closed = sum(
            1 for b in bugs
            if b.completed_at is not None and start <= violations.as_utc(b.completed_at) < end
        )
        trends.append({"period_start": start, "period_end": end, "net_change": opened - closed})
    return trends
