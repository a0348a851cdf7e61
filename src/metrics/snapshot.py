"""Capture pillar bundles at org, domain and team level."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, get_settings
from src.metrics import getdx
from src.metrics.domains import DomainMap
from src.metrics.hygiene import calculate_hygiene_health, calculate_hygiene_health_for_teams
from src.metrics.productivity import (
    TEAM_PENDING_NOTE,
    calculate_productivity_for_domain,
    calculate_productivity_for_org,
    productivity_or_fallback,
    productivity_pending,
)
from src.metrics.quality import calculate_quality_health
from src.metrics.team_health import calculate_team_health, calculate_team_health_for_teams
from src.metrics.velocity_health import calculate_velocity_health
from src.storage import queries, snapshots

logger = logging.getLogger(__name__)

# v1 had no hygiene pillar.
SCHEMA_VERSION = 2


@dataclass
class CaptureResult:
    snapshots_created: int = 0
    org: bool = False
    domains: list[str] = field(default_factory=list)
    teams: list[str] = field(default_factory=list)


def all_team_keys(projects: list) -> list[str]:
    return sorted({team for p in projects for team in (p.teams or [])})


def team_names_from_issues(issues: list) -> dict[str, str]:
    return {i.team_key.upper(): i.team_name for i in issues if i.team_key and i.team_name}


def build_snapshot(
    level: str,
    level_id: Optional[str],
    engineers: list,
    projects: list,
    issues: list,
    settings: Settings,
    domain_map: DomainMap,
    throughput: Optional[list] = None,
    captured_at: Optional[datetime] = None,
    synced_at: Optional[datetime] = None,
) -> dict:
    """One pillar bundle. `level_id` is a domain name or a team key."""
    thresholds = settings.thresholds
    captured_at = captured_at or datetime.now(timezone.utc)

    if level == "org":
        team_keys = None
        team_health = calculate_team_health(engineers, projects, domain_map)
        hygiene = calculate_hygiene_health(engineers, projects)
    else:
        team_keys = domain_map.teams_for_domain(level_id) if level == "domain" else [level_id]
        team_health = calculate_team_health_for_teams(
            team_keys, engineers, projects, domain_map, team_names_from_issues(issues)
        )
        hygiene = calculate_hygiene_health_for_teams(team_keys, engineers, projects, domain_map)

    ic_count = team_health["total_ic_count"]
    target = settings.getdx.throughput_per_ic_target
    if level == "org":
        productivity = productivity_or_fallback(
            calculate_productivity_for_org(throughput, ic_count, target),
            settings.getdx.configured,
        )
    elif level == "domain":
        productivity = productivity_or_fallback(
            calculate_productivity_for_domain(level_id, throughput, ic_count, target),
            settings.getdx.configured,
        )
    else:
        productivity = productivity_pending(TEAM_PENDING_NOTE)

    return {
        "schema_version": SCHEMA_VERSION,
        "team_health": team_health,
        "velocity_health": calculate_velocity_health(projects, thresholds, team_keys),
        "team_productivity": productivity,
        "quality": calculate_quality_health(issues, ic_count, thresholds, team_keys, captured_at),
        "linear_hygiene": hygiene,
        "metadata": {
            "captured_at": captured_at.isoformat(),
            "synced_at": synced_at.isoformat() if synced_at else None,
            "level": level,
            "level_id": level_id,
        },
    }


async def capture_snapshots(
    session: AsyncSession,
    settings: Optional[Settings] = None,
    throughput: Optional[list] = None,
    now: Optional[datetime] = None,
) -> CaptureResult:
    """Write one org snapshot, one per configured domain and one per team key.

    Throughput is fetched from GetDX when not supplied and the feed is
    configured.
    """
    settings = settings or get_settings()
    domain_map = DomainMap.from_settings(settings.mappings)
    captured_at = now or datetime.now(timezone.utc)

    projects = await queries.get_all_projects(session)
    engineers = await queries.get_all_engineers(session)
    issues = await queries.get_all_issues(session)
    metadata = await queries.get_sync_metadata(session)
    if throughput is None and settings.getdx.configured:
        throughput = await getdx.fetch_productivity_metrics(settings.getdx)

    result = CaptureResult()

    def build(level: str, level_id: Optional[str]) -> dict:
        return build_snapshot(
            level,
            level_id,
            engineers,
            projects,
            issues,
            settings,
            domain_map,
            throughput,
            captured_at,
            metadata.last_sync_time,
        )

    await snapshots.write_snapshot(session, "org", None, build("org", None), SCHEMA_VERSION, captured_at)
    result.org = True
    result.snapshots_created += 1

    if domain_map.has_domains:
        for domain in domain_map.all_domains():
            await snapshots.write_snapshot(
                session, "domain", domain, build("domain", domain), SCHEMA_VERSION, captured_at
            )
            result.domains.append(domain)
            result.snapshots_created += 1
    else:
        logger.debug("No domain mappings configured, skipping domain snapshots")

    for team_key in all_team_keys(projects):
        await snapshots.write_snapshot(
            session, "team", team_key, build("team", team_key), SCHEMA_VERSION, captured_at
        )
        result.teams.append(team_key)
        result.snapshots_created += 1

    logger.info("Captured %d metrics snapshots", result.snapshots_created)
    return result


def get_metrics_summary(metrics: dict) -> str:
    """Human-readable one-line-per-pillar summary of a snapshot bundle."""
    team = metrics["team_health"]
    velocity = metrics["velocity_health"]
    quality = metrics["quality"]
    productivity = metrics["team_productivity"]
    lines = [
        f"Team Health: {team['status'].upper()} "
        f"({team['healthy_ic_count']}/{team['total_ic_count']} ICs healthy, "
        f"{team['healthy_project_count']}/{team['total_project_count']} projects healthy)",
        f"Velocity: {velocity['status'].upper()} "
        f"({velocity['on_track_percent']:.1f}% on track, "
        f"{velocity['at_risk_percent']:.1f}% at risk, "
        f"{velocity['off_track_percent']:.1f}% off track)",
        f"Quality: {quality['status'].upper()} "
        f"(score {quality['composite_score']}, {quality['open_bug_count']} open bugs, "
        f"{quality['net_bug_change']:+d} net)",
        f"Productivity: {productivity['status'].upper()}"
        + (f" ({productivity['notes']})" if productivity.get("notes") else ""),
    ]
    hygiene = metrics.get("linear_hygiene")
    if hygiene:
        lines.append(
            f"Hygiene: {hygiene['status'].upper()} "
            f"(score {hygiene['hygiene_score']}, {hygiene['total_gaps']} gaps)"
        )
    return "\n".join(lines)
