"""Productivity pillar: GetDX throughput per IC against a target.

Unconfigured deployments report `pending` with a note, and configured
ones without usable data report `unknown`. Neither is an error.
"""

from typing import Optional

from src.metrics.getdx import TeamThroughput
from src.metrics.status import PENDING, UNKNOWN, pillar_status

DEFAULT_TARGET = 6.0
NOT_CONFIGURED_NOTE = "GetDX throughput feed not configured"
TEAM_PENDING_NOTE = "Team-level GetDX integration pending"


def productivity_pending(notes: str) -> dict:
    return {"status": PENDING, "notes": notes}


def status_for_throughput(per_ic: Optional[float], target: float = DEFAULT_TARGET) -> str:
    """Band throughput as a percentage of target, capped at 100."""
    if per_ic is None or target <= 0:
        return UNKNOWN
    return pillar_status(min(per_ic / target * 100, 100.0))


def _summarize(metrics: list[TeamThroughput], ic_count: Optional[int], target: float) -> dict:
    total = sum(m.true_throughput for m in metrics)
    per_ic = total / ic_count if ic_count else None
    return {
        "true_throughput": round(total, 1),
        "engineer_count": ic_count,
        "true_throughput_per_engineer": round(per_ic, 2) if per_ic is not None else None,
        "target": target,
        "status": status_for_throughput(per_ic, target),
    }


def calculate_productivity_for_org(
    metrics: Optional[list[TeamThroughput]],
    ic_count: Optional[int],
    target: float = DEFAULT_TARGET,
) -> Optional[dict]:
    if not metrics:
        return None
    return _summarize(metrics, ic_count, target)


def calculate_productivity_for_domain(
    domain: str,
    metrics: Optional[list[TeamThroughput]],
    ic_count: Optional[int],
    target: float = DEFAULT_TARGET,
) -> Optional[dict]:
    """GetDX team names map onto domain names, case-insensitively."""
    matching = [m for m in metrics or [] if m.team_name.lower() == domain.lower()]
    if not matching:
        return None
    return _summarize(matching, ic_count, target)


def productivity_or_fallback(result: Optional[dict], configured: bool) -> dict:
    if result is not None:
        return result
    if not configured:
        return productivity_pending(NOT_CONFIGURED_NOTE)
    return {"status": UNKNOWN, "notes": "No GetDX throughput data for this scope"}
