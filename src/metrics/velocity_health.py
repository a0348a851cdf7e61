"""Velocity health pillar: share of in-progress projects on track.

Effective health is a hybrid of the human-reported project health and a
velocity projection. A pessimistic human status is always trusted. An
optimistic one is overridden when the projected end date slips past the
target by more than the at-risk or off-track thresholds.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from src.config import ThresholdSettings
from src.metrics import violations
from src.metrics.domains import in_teams
from src.metrics.status import percent, pillar_status

ON_TRACK = "onTrack"
AT_RISK = "atRisk"
OFF_TRACK = "offTrack"

SOURCE_HUMAN = "human"
SOURCE_VELOCITY = "velocity"


@dataclass
class EffectiveHealth:
    effective_health: str
    calculated_health: str
    health_source: str
    days_off_target: Optional[int]


def _as_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return violations.as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


def days_off_target(project) -> Optional[int]:
    """Days the projected end lands after the target (negative = early)."""
    target = _as_datetime(project.target_date)
    predicted = _as_datetime(project.estimated_end_date)
    if target is None or predicted is None:
        return None
    return round((predicted - target).total_seconds() / 86400)


def velocity_based_health(
    days_off: Optional[int],
    at_risk_days: int = 14,
    off_track_days: int = 28,
) -> str:
    if days_off is None or days_off <= 0:
        return ON_TRACK
    if days_off > off_track_days:
        return OFF_TRACK
    if days_off > at_risk_days:
        return AT_RISK
    return ON_TRACK


def normalize_health(health: Optional[str]) -> Optional[str]:
    """Map Linear's health strings ("offTrack", "At risk", ...) onto ours."""
    if not health:
        return None
    lowered = health.lower().replace(" ", "").replace("_", "")
    if "risk" in lowered:
        return AT_RISK
    if "off" in lowered:
        return OFF_TRACK
    if "on" in lowered and "track" in lowered:
        return ON_TRACK
    return health


def effective_health(project, thresholds: Optional[ThresholdSettings] = None) -> EffectiveHealth:
    thresholds = thresholds or ThresholdSettings()
    days_off = days_off_target(project)
    calculated = velocity_based_health(days_off, thresholds.at_risk_days, thresholds.off_track_days)
    human = normalize_health(project.project_health)

    if human in (OFF_TRACK, AT_RISK):
        return EffectiveHealth(human, calculated, SOURCE_HUMAN, days_off)
    if calculated in (OFF_TRACK, AT_RISK):
        return EffectiveHealth(calculated, calculated, SOURCE_VELOCITY, days_off)
    return EffectiveHealth(human or ON_TRACK, calculated, SOURCE_HUMAN, days_off)


def _project_status(project, thresholds: Optional[ThresholdSettings]) -> dict:
    result = effective_health(project, thresholds)
    return {
        "project_id": project.project_id,
        "project_name": project.project_name,
        "linear_health": project.project_health,
        "calculated_health": result.calculated_health,
        "effective_health": result.effective_health,
        "days_off_target": result.days_off_target,
        "health_source": result.health_source,
    }


def _in_progress(projects: list) -> list:
    return [p for p in projects if violations.is_active_state(p.project_state_category)]


def calculate_velocity_health(
    projects: list,
    thresholds: Optional[ThresholdSettings] = None,
    team_keys: Optional[list[str]] = None,
) -> dict:
    """Velocity pillar over in-progress projects, optionally scoped to teams."""
    scoped = [p for p in projects if in_teams(p.teams, team_keys)]
    statuses = [_project_status(p, thresholds) for p in _in_progress(scoped)]

    total = len(statuses)
    on_track = sum(1 for s in statuses if s["effective_health"] == ON_TRACK)
    at_risk = sum(1 for s in statuses if s["effective_health"] == AT_RISK)
    off_track = sum(1 for s in statuses if s["effective_health"] == OFF_TRACK)
    on_track_percent = percent(on_track, total)

    return {
        "on_track_percent": on_track_percent,
        "at_risk_percent": percent(at_risk, total, default=0.0),
        "off_track_percent": percent(off_track, total, default=0.0),
        "project_statuses": statuses,
        "status": pillar_status(on_track_percent),
    }


def projects_needing_attention(
    projects: list, thresholds: Optional[ThresholdSettings] = None
) -> list[dict]:
    """Off-track projects first, then at-risk; most overdue first within each."""
    flagged = [
        s for s in (_project_status(p, thresholds) for p in _in_progress(projects))
        if s["effective_health"] in (OFF_TRACK, AT_RISK)
    ]
    flagged.sort(
        key=lambda s: (s["effective_health"] != OFF_TRACK, -(s["days_off_target"] or 0))
    )
    return flagged
