"""Hygiene rules for single issues and projects.

Every function here is pure: it reads attributes off an issue/project
(ORM row or fetched record) and an explicit `now`, and returns a bool.
Sub-issues and canceled/duplicate issues are exempt from the estimate and
priority rules.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

WIP_AGE_DAYS = 14
STALE_UPDATE_DAYS = 7
COMMENT_BUSINESS_DAYS = 3
COMPLETED_PROJECT_MONTHS = 6

SCOPED_LABEL_PARENT = "scoped"
SCOPED_LABEL_PREFIX = "type:"
BUG_LABEL = "type:bug"
RICE_LABELS = ("reach", "impact", "confidence", "effort")

_TERMINAL_NEGATIVE_STATES = ("canceled", "cancelled", "duplicate")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _label_name(label) -> str:
    return (label.get("name") if isinstance(label, dict) else label.name) or ""


def _label_parent(label) -> str:
    parent = label.get("parent_name") if isinstance(label, dict) else label.parent_name
    return parent or ""


def _normalize(text: str) -> str:
    return "".join(text.lower().split())


# ---------------------------------------------------------------------------
# Issue classification
# ---------------------------------------------------------------------------

def is_sub_issue(issue) -> bool:
    return bool(issue.parent_id)


def is_started(issue) -> bool:
    return issue.state_type == "started"


def is_terminal_negative(issue) -> bool:
    """Canceled or duplicate: alerts are suppressed for these."""
    if issue.state_type == "canceled":
        return True
    return (issue.state_name or "").lower() in _TERMINAL_NEGATIVE_STATES


def is_completed(issue) -> bool:
    if issue.state_type == "completed":
        return True
    name = (issue.state_name or "").lower()
    return "done" in name or "completed" in name


def _exempt(issue) -> bool:
    return is_sub_issue(issue) or is_terminal_negative(issue)


# ---------------------------------------------------------------------------
# Issue rules
# ---------------------------------------------------------------------------

def missing_estimate(issue) -> bool:
    if _exempt(issue):
        return False
    return issue.estimate is None


def missing_priority(issue) -> bool:
    if _exempt(issue):
        return False
    return (issue.priority or 0) == 0


def business_day_cutoff(now: Optional[datetime] = None, business_days: int = COMMENT_BUSINESS_DAYS) -> datetime:
    """Earliest instant a comment can have and still count as current.

    The comment's day and today both count toward the window, weekends
    excluded: with 3 business days a Friday comment is current on Monday
    (Fri, Mon) and stale on Tuesday (Fri, Mon, Tue).
    """
    now = _now(now)
    day = now.date()
    remaining = business_days - 1
    while remaining > 0:
        day -= timedelta(days=1)
        if day.weekday() < 5:
            remaining -= 1
    # Comments from `day` itself would complete the window, so the cutoff
    # is the start of the following day.
    next_day = day + timedelta(days=1)
    return datetime(next_day.year, next_day.month, next_day.day, tzinfo=now.tzinfo or timezone.utc)


def no_recent_comment(
    issue, now: Optional[datetime] = None, business_days: int = COMMENT_BUSINESS_DAYS
) -> bool:
    """Started issues whose last comment is absent or older than the cutoff."""
    if not is_started(issue):
        return False
    last = as_utc(issue.last_comment_at)
    if last is None:
        return True
    return last < business_day_cutoff(now, business_days)


def wip_age_violation(issue, now: Optional[datetime] = None, max_days: int = WIP_AGE_DAYS) -> bool:
    if not is_started(issue):
        return False
    started = as_utc(issue.started_at)
    if started is None:
        return False
    return started < _now(now) - timedelta(days=max_days)


def missing_scoped_label(issue) -> bool:
    """No `type:` label under the scoped parent group."""
    for label in issue.labels or []:
        if (
            _label_parent(label).lower() == SCOPED_LABEL_PARENT
            and _label_name(label).lower().startswith(SCOPED_LABEL_PREFIX)
        ):
            return False
    return True


def missing_description(issue) -> bool:
    return not (issue.description or "").strip()


def is_bug(issue) -> bool:
    return any(_normalize(_label_name(label)) == BUG_LABEL for label in issue.labels or [])


def has_violations(issues: Iterable, now: Optional[datetime] = None) -> bool:
    return any(
        missing_estimate(i) or missing_priority(i) or no_recent_comment(i, now)
        for i in issues
    )


def count_violations(issues: Iterable, now: Optional[datetime] = None) -> dict[str, int]:
    counts = {
        "missing_estimate": 0,
        "missing_priority": 0,
        "no_recent_comment": 0,
        "wip_age": 0,
    }
    for issue in issues:
        counts["missing_estimate"] += missing_estimate(issue)
        counts["missing_priority"] += missing_priority(issue)
        counts["no_recent_comment"] += no_recent_comment(issue, now)
        counts["wip_age"] += wip_age_violation(issue, now)
    return counts


# ---------------------------------------------------------------------------
# Project rules
# ---------------------------------------------------------------------------

def is_active_state(state_category: Optional[str]) -> bool:
    state = (state_category or "").lower()
    return "progress" in state or "started" in state


def has_status_mismatch(state_category: Optional[str], issues: Iterable) -> bool:
    """Started issues under a project that isn't itself started."""
    if not any(is_started(i) for i in issues):
        return False
    return not is_active_state(state_category)


def is_stale_update(
    last_update: Optional[datetime],
    now: Optional[datetime] = None,
    max_days: int = STALE_UPDATE_DAYS,
) -> bool:
    last_update = as_utc(last_update)
    if last_update is None:
        return True
    return last_update < _now(now) - timedelta(days=max_days)


def is_missing_lead(state_category: Optional[str], lead_name: Optional[str], issues: Iterable) -> bool:
    """Active work (started issues or an active project state) with no lead."""
    if lead_name:
        return False
    return is_active_state(state_category) or any(is_started(i) for i in issues)


def has_missing_project_scoped_labels(labels: Optional[Iterable[str]]) -> bool:
    """True unless every RICE sizing label (reach/impact/confidence/effort) is present."""
    present = set()
    for label in labels or []:
        name = label.lower()
        for rice in RICE_LABELS:
            if name == rice or name.startswith(f"{rice}:") or name.startswith(f"{rice} "):
                present.add(rice)
    return len(present) < len(RICE_LABELS)


def is_planned_project(state_category: Optional[str]) -> bool:
    return "planned" in (state_category or "").lower()


def is_completed_project(
    state_category: Optional[str],
    completed_at: Optional[datetime],
    now: Optional[datetime] = None,
    months: int = COMPLETED_PROJECT_MONTHS,
) -> bool:
    """Completed within the last `months` months."""
    if "completed" not in (state_category or "").lower():
        return False
    completed_at = as_utc(completed_at)
    if completed_at is None:
        return False
    return completed_at >= _now(now) - timedelta(days=30 * months)


def days_between(start: Optional[date], end: Optional[date]) -> Optional[float]:
    if start is None or end is None:
        return None
    if isinstance(start, datetime) and isinstance(end, datetime):
        return (as_utc(end) - as_utc(start)).total_seconds() / 86400
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    return float((end - start).days)
