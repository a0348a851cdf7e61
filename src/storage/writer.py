"""Write layer: deduplicating upsert of fetched issues."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.linear.types import IssueData
from src.storage import queries
from src.storage.models import Issue

logger = logging.getLogger(__name__)


@dataclass
class WriteCounts:
    new_count: int = 0
    updated_count: int = 0

    def __add__(self, other: "WriteCounts") -> "WriteCounts":
        return WriteCounts(
            self.new_count + other.new_count,
            self.updated_count + other.updated_count,
        )


def filter_ignored_teams(issues: list[IssueData], ignored_team_keys: list[str]) -> list[IssueData]:
    """Drop issues whose team is administratively excluded."""
    if not ignored_team_keys:
        return issues
    ignored = set(ignored_team_keys)
    kept = [i for i in issues if i.team_key not in ignored]
    if len(kept) != len(issues):
        logger.info("Filtered out %d issues from ignored teams", len(issues) - len(kept))
    return kept


def issue_values(issue: IssueData) -> dict:
    """Column values for an Issue row. Labels stay typed; the column encodes them."""
    values = issue.model_dump(exclude={"labels"})
    values["labels"] = list(issue.labels)
    return values


def issue_from_row(row: Issue) -> IssueData:
    """Rebuild the fetched shape from a stored row (used when a phase is skipped)."""
    fields = {name: getattr(row, name) for name in IssueData.model_fields if name != "labels"}
    return IssueData(**fields, labels=row.labels or [])


async def write_issues(session: AsyncSession, issues: list[IssueData]) -> WriteCounts:
    """Upsert issues by id, counting which were new versus updates.

    Writing the same issue twice leaves one row; the second write only
    refreshes its columns.
    """
    counts = WriteCounts()
    if not issues:
        return counts

    existing = await queries.get_existing_issue_ids(session, [i.id for i in issues])
    seen: set[str] = set()
    for issue in issues:
        if issue.id in existing or issue.id in seen:
            counts.updated_count += 1
        else:
            counts.new_count += 1
        seen.add(issue.id)
        await queries.upsert_issue(session, issue_values(issue))

    await session.flush()
    logger.debug("Wrote %d issues (%d new, %d updated)", len(issues), counts.new_count, counts.updated_count)
    return counts
