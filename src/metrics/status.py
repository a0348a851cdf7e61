"""Unified status banding shared by every pillar."""

from typing import Optional

HEALTHY_MIN = 90.0
WARNING_MIN = 75.0

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"
UNKNOWN = "unknown"
PENDING = "pending"


def pillar_status(favorable_percent: Optional[float]) -> str:
    """Band a favorable percentage: ≥90 healthy, 75–90 warning, <75 critical."""
    if favorable_percent is None:
        return UNKNOWN
    if favorable_percent >= HEALTHY_MIN:
        return HEALTHY
    if favorable_percent >= WARNING_MIN:
        return WARNING
    return CRITICAL


def percent(part: float, whole: float, default: float = 100.0) -> float:
    """part/whole as a percentage rounded to one decimal; `default` when whole is 0."""
    if not whole:
        return default
    return round(part / whole * 100, 1)
