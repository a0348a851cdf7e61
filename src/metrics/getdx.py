"""GetDX client for the PR-throughput datafeed."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx

from src.config import GetDXSettings, get_settings

logger = logging.getLogger(__name__)

PRODUCTIVITY_PERIOD_DAYS = 14


class GetDXError(Exception):
    """GetDX request failed or returned an unusable payload."""


@dataclass
class ThroughputRow:
    day: date
    team_name: str
    throughput: float
    pr_count: int


@dataclass
class TeamThroughput:
    team_name: str
    true_throughput: float
    pr_count: int
    average_daily: float


def _parse_row(row: list) -> Optional[ThroughputRow]:
    """Datafeed rows are [day, team, throughput, pr_count] strings."""
    try:
        day = date.fromisoformat(str(row[0]).split(" ")[0].split("T")[0])
    except (IndexError, ValueError):
        return None
    try:
        throughput = float(row[2])
    except (IndexError, TypeError, ValueError):
        throughput = 0.0
    try:
        pr_count = int(row[3])
    except (IndexError, TypeError, ValueError):
        pr_count = 0
    return ThroughputRow(day=day, team_name=str(row[1]), throughput=throughput, pr_count=pr_count)


class GetDXClient:
    def __init__(
        self,
        api_key: str,
        feed_token: str,
        base_url: str = "https://api.getdx.com",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._feed_token = feed_token
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_http = http_client is None

    @classmethod
    def from_settings(cls, settings: Optional[GetDXSettings] = None) -> Optional["GetDXClient"]:
        """None when the API key or datafeed token is missing."""
        settings = settings or get_settings().getdx
        if not settings.configured:
            return None
        return cls(settings.api_key, settings.pr_throughput_feed_token, settings.base_url)

    async def __aenter__(self) -> "GetDXClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        try:
            resp = await self._http.get(
                endpoint,
                params=params,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise GetDXError(f"GetDX request failed: {e}") from e
        if resp.status_code >= 400:
            logger.error("GetDX API error (%d): %s", resp.status_code, resp.text[:200])
            raise GetDXError(f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise GetDXError("GetDX returned invalid JSON") from e

    async def fetch_pr_throughput(self) -> list[ThroughputRow]:
        payload = await self._get("/queries.datafeed", {"feed_token": self._feed_token})
        rows = (payload.get("data") or {}).get("rows") or []
        parsed = [_parse_row(row) for row in rows]
        return [row for row in parsed if row is not None]

    async def fetch_throughput_by_team(
        self, days: int = PRODUCTIVITY_PERIOD_DAYS, today: Optional[date] = None
    ) -> list[TeamThroughput]:
        """Per-team throughput totals over the last `days` days."""
        today = today or datetime.now(timezone.utc).date()
        cutoff = today - timedelta(days=days)

        totals: dict[str, float] = defaultdict(float)
        prs: dict[str, int] = defaultdict(int)
        active_days: dict[str, set] = defaultdict(set)
        for row in await self.fetch_pr_throughput():
            if row.day < cutoff:
                continue
            totals[row.team_name] += row.throughput
            prs[row.team_name] += row.pr_count
            active_days[row.team_name].add(row.day)

        return [
            TeamThroughput(
                team_name=team,
                true_throughput=round(total, 2),
                pr_count=prs[team],
                average_daily=round(total / (len(active_days[team]) or 1), 2),
            )
            for team, total in sorted(totals.items())
        ]


async def fetch_productivity_metrics(
    settings: Optional[GetDXSettings] = None,
) -> Optional[list[TeamThroughput]]:
    """Team throughput from GetDX, or None when unconfigured or unavailable."""
    client = GetDXClient.from_settings(settings)
    if client is None:
        logger.debug("GetDX not configured, skipping productivity fetch")
        return None
    async with client:
        try:
            return await client.fetch_throughput_by_team()
        except GetDXError as e:
            logger.warning("GetDX throughput unavailable: %s", e)
            return None
