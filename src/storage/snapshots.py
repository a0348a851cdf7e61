"""Append-only metrics snapshot store."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.storage.models import MetricsSnapshot

logger = logging.getLogger(__name__)

LEVELS = ("org", "domain", "team")


def _level_filter(level: str, level_id: Optional[str]):
    if level not in LEVELS:
        raise ValueError(f"Unknown snapshot level: {level}")
    if level_id is None:
        return and_(MetricsSnapshot.level == level, MetricsSnapshot.level_id.is_(None))
    return and_(MetricsSnapshot.level == level, MetricsSnapshot.level_id == level_id)


async def write_snapshot(
    session: AsyncSession,
    level: str,
    level_id: Optional[str],
    metrics: dict,
    schema_version: int,
    captured_at: Optional[datetime] = None,
) -> MetricsSnapshot:
    """Append a snapshot. Existing rows are never touched."""
    if level not in LEVELS:
        raise ValueError(f"Unknown snapshot level: {level}")
    snapshot = MetricsSnapshot(
        level=level,
        level_id=level_id,
        metrics=metrics,
        schema_version=schema_version,
        captured_at=captured_at or datetime.now(timezone.utc),
    )
    session.add(snapshot)
    await session.flush()
    logger.debug("Stored %s snapshot for %s", level, level_id or "org")
    return snapshot


async def get_latest(
    session: AsyncSession, level: str, level_id: Optional[str] = None
) -> Optional[MetricsSnapshot]:
    result = await session.execute(
        select(MetricsSnapshot)
        .where(_level_filter(level, level_id))
        .order_by(MetricsSnapshot.captured_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_all_latest(session: AsyncSession) -> list[MetricsSnapshot]:
    """Newest snapshot for every (level, level_id) pair."""
    latest = (
        select(
            MetricsSnapshot.level,
            MetricsSnapshot.level_id,
            func.max(MetricsSnapshot.captured_at).label("captured_at"),
        )
        .group_by(MetricsSnapshot.level, MetricsSnapshot.level_id)
        .subquery()
    )
    result = await session.execute(
        select(MetricsSnapshot)
        .join(
            latest,
            and_(
                MetricsSnapshot.level == latest.c.level,
                MetricsSnapshot.level_id.is_not_distinct_from(latest.c.level_id),
                MetricsSnapshot.captured_at == latest.c.captured_at,
            ),
        )
        .order_by(MetricsSnapshot.level, MetricsSnapshot.level_id)
    )
    return list(result.scalars().all())


async def get_trend(
    session: AsyncSession,
    level: str,
    level_id: Optional[str] = None,
    limit: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[MetricsSnapshot]:
    """Snapshots oldest-first, bounded by a count or a date range."""
    query = select(MetricsSnapshot).where(_level_filter(level, level_id))
    if since is not None:
        query = query.where(MetricsSnapshot.captured_at >= since)
    if until is not None:
        query = query.where(MetricsSnapshot.captured_at <= until)

    if limit is not None:
        query = query.order_by(MetricsSnapshot.captured_at.desc()).limit(limit)
        result = await session.execute(query)
        return list(reversed(result.scalars().all()))

    result = await session.execute(query.order_by(MetricsSnapshot.captured_at.asc()))
    return list(result.scalars().all())
