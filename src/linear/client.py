"""Linear GraphQL client: paginated, rate-limit aware, query counting.

Every request goes through _request(), which increments the query counter
and turns rate-limit responses into RateLimitError. Nothing here retries;
the sync orchestrator owns checkpointing and resumption.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from src.config import LinearSettings, get_settings
from src.linear.types import InitiativeData, IssueData, ProjectFullData

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_RATE_LIMIT_MARKERS = ("rate limit", "ratelimited")


class LinearAPIError(Exception):
    """Non-rate-limit failure talking to Linear."""


class RateLimitError(LinearAPIError):
    """Linear answered with a rate-limit response."""

    def __init__(self, message: str = "Linear API rate limit exceeded"):
        super().__init__(message)


def is_rate_limit_message(message: Optional[str]) -> bool:
    """True if an error string reads like a rate-limit failure."""
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _graphql_errors_rate_limited(errors: list[dict]) -> bool:
    for error in errors:
        extensions = error.get("extensions") or {}
        if extensions.get("code") == "RATELIMITED" or extensions.get("statusCode") == 429:
            return True
        if extensions.get("type", "").lower() == "ratelimited":
            return True
        if is_rate_limit_message(error.get("message")):
            return True
    return False


ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    estimate
    url
    createdAt
    updatedAt
    startedAt
    completedAt
    canceledAt
    parent { id }
    comments(first: 1, orderBy: createdAt) { nodes { createdAt } }
    team { id name key }
    state { id name type }
    assignee { id name avatarUrl }
    creator { id name }
    labels { nodes { id name color parent { name } } }
    project {
        id
        name
        state
        status { name type }
        health
        updatedAt
        targetDate
        startDate
        completedAt
        lead { id name }
    }
"""

PROJECT_FIELDS = """
    id
    name
    state
    status { name type }
    health
    updatedAt
    targetDate
    startDate
    completedAt
    content
    description
    lead { id name }
    labels { nodes { name } }
    teams { nodes { key } }
    projectUpdates(first: 25) {
        nodes { id createdAt updatedAt body health user { name } }
    }
"""

ISSUES_QUERY = (
    """
query Issues($first: Int!, $after: String, $filter: IssueFilter) {
    issues(first: $first, after: $after, filter: $filter) {
        nodes {"""
    + ISSUE_FIELDS
    + """}
        pageInfo { hasNextPage endCursor }
    }
}
"""
)

PROJECTS_QUERY = (
    """
query Projects($first: Int!, $after: String, $filter: ProjectFilter) {
    projects(first: $first, after: $after, filter: $filter) {
        nodes {"""
    + PROJECT_FIELDS
    + """}
        pageInfo { hasNextPage endCursor }
    }
}
"""
)

INITIATIVES_QUERY = """
query Initiatives($first: Int!, $after: String) {
    initiatives(first: $first, after: $after) {
        nodes {
            id
            name
            description
            status
            targetDate
            archivedAt
            completedAt
            startedAt
            owner { id name }
            projects { nodes { id } }
        }
        pageInfo { hasNextPage endCursor }
    }
}
"""

VIEWER_QUERY = "query Viewer { viewer { id name } }"

COMMENT_MUTATION = """
mutation CreateComment($issueId: String!, $body: String!) {
    commentCreate(input: { issueId: $issueId, body: $body }) {
        success
        comment { id }
    }
}
"""

ISSUE_COMMENTS_QUERY = """
query IssueComments($issueId: String!) {
    issue(id: $issueId) {
        comments(first: 50, orderBy: createdAt) {
            nodes { id body createdAt user { name isMe } }
        }
    }
}
"""


def _batched_project_query(count: int) -> str:
    """One query fetching `count` projects through aliases p0..pN."""
    params = ", ".join(f"$id{i}: String!" for i in range(count))
    body = "\n".join(f"    p{i}: project(id: $id{i}) {{{PROJECT_FIELDS}}}" for i in range(count))
    return f"query ProjectsFullData({params}) {{\n{body}\n}}"


class LinearClient:
    """Async client over the Linear GraphQL API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.linear.app/graphql",
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        page_size: int = 100,
        max_pages: int = 100,
        batch_size: int = 10,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise LinearAPIError("LINEAR_API_KEY is not set")
        self._api_key = api_key
        self._api_url = api_url
        self._connect_timeout = connect_timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self.batch_size = batch_size
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self._query_count = 0

    @classmethod
    def from_settings(cls, settings: Optional[LinearSettings] = None, **kwargs) -> "LinearClient":
        settings = settings or get_settings().linear
        return cls(
            api_key=settings.api_key,
            api_url=settings.api_url,
            timeout=settings.timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            batch_size=settings.full_data_batch_size,
            **kwargs,
        )

    async def __aenter__(self) -> "LinearClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def query_count(self) -> int:
        return self._query_count

    def reset_query_count(self) -> None:
        self._query_count = 0

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, query: str, variables: Optional[dict] = None) -> dict:
        """POST one GraphQL document and return its `data` payload."""
        self._query_count += 1
        try:
            resp = await self._http.post(
                self._api_url,
                json={"query": query, "variables": variables or {}},
                headers={
                    "Authorization": self._api_key,
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise LinearAPIError(f"Linear request failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError()

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        errors = payload.get("errors") or []
        if errors and _graphql_errors_rate_limited(errors):
            raise RateLimitError()
        if resp.status_code >= 400:
            detail = errors[0].get("message") if errors else resp.text[:200]
            raise LinearAPIError(f"HTTP {resp.status_code}: {detail}")
        if errors:
            raise LinearAPIError(errors[0].get("message", "Unknown GraphQL error"))

        return payload.get("data") or {}

    async def _paginate(
        self,
        query: str,
        root: str,
        variables: Optional[dict] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[dict]:
        """Walk a connection with first/after until exhausted or max_pages."""
        nodes: list[dict] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            data = await self._request(
                query, {**(variables or {}), "first": self.page_size, "after": cursor}
            )
            connection = data.get(root) or {}
            page = connection.get("nodes") or []
            nodes.extend(page)
            pages += 1

            if on_progress:
                on_progress(len(nodes), len(page))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
            if pages >= self.max_pages:
                logger.warning("Fetched %d pages of %s, stopping", pages, root)
                break

        return nodes

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def fetch_issues(
        self,
        issue_filter: Optional[dict] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[IssueData]:
        """Fetch every issue matching a Linear IssueFilter."""
        nodes = await self._paginate(
            ISSUES_QUERY, "issues", {"filter": issue_filter or {}}, on_progress
        )
        issues = []
        for node in nodes:
            issue = IssueData.from_node(node)
            if issue is not None:
                issues.append(issue)
        return issues

    async def fetch_started_issues(
        self, on_progress: Optional[ProgressCallback] = None
    ) -> list[IssueData]:
        return await self.fetch_issues({"state": {"type": {"eq": "started"}}}, on_progress)

    async def fetch_recently_updated_issues(
        self,
        since: datetime,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[IssueData]:
        return await self.fetch_issues(
            {"updatedAt": {"gt": since.isoformat()}}, on_progress
        )

    async def fetch_issues_by_projects(
        self,
        project_ids: list[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[IssueData]:
        """Fetch all issues of the given projects, one filter per project."""
        issues: list[IssueData] = []
        for project_id in project_ids:
            issues.extend(
                await self.fetch_issues({"project": {"id": {"eq": project_id}}}, on_progress)
            )
        return issues

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def fetch_project_full_data(self, project_id: str) -> ProjectFullData:
        data = await self.fetch_multiple_projects_full_data([project_id])
        if project_id not in data:
            raise LinearAPIError(f"Project not found: {project_id}")
        return data[project_id]

    async def fetch_multiple_projects_full_data(
        self, project_ids: list[str]
    ) -> dict[str, ProjectFullData]:
        """Fetch full data for many projects, batch_size ids per request."""
        results: dict[str, ProjectFullData] = {}
        for start in range(0, len(project_ids), self.batch_size):
            batch = project_ids[start:start + self.batch_size]
            data = await self._request(
                _batched_project_query(len(batch)),
                {f"id{i}": pid for i, pid in enumerate(batch)},
            )
            for i, pid in enumerate(batch):
                node = data.get(f"p{i}")
                if node:
                    results[pid] = ProjectFullData.from_node(node)
                else:
                    logger.debug("No full data returned for project %s", pid)
        return results

    async def fetch_planned_projects(self) -> list[ProjectFullData]:
        nodes = await self._paginate(
            PROJECTS_QUERY, "projects", {"filter": {"status": {"type": {"eq": "planned"}}}}
        )
        return [ProjectFullData.from_node(n) for n in nodes]

    async def fetch_completed_projects(self, since: datetime) -> list[ProjectFullData]:
        nodes = await self._paginate(
            PROJECTS_QUERY,
            "projects",
            {
                "filter": {
                    "status": {"type": {"eq": "completed"}},
                    "completedAt": {"gt": since.isoformat()},
                }
            },
        )
        return [ProjectFullData.from_node(n) for n in nodes]

    # ------------------------------------------------------------------
    # Initiatives
    # ------------------------------------------------------------------

    async def fetch_initiatives(self) -> list[InitiativeData]:
        nodes = await self._paginate(INITIATIVES_QUERY, "initiatives")
        return [InitiativeData.from_node(n) for n in nodes]

    # ------------------------------------------------------------------
    # Connection and comments
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Check credentials with a viewer query. Never raises."""
        try:
            data = await asyncio.wait_for(
                self._request(VIEWER_QUERY), timeout=self._connect_timeout
            )
        except (LinearAPIError, asyncio.TimeoutError) as e:
            logger.error("Linear connection test failed: %s", e)
            return False
        return bool(data.get("viewer"))

    async def comment_on_issue(self, issue_id: str, body: str) -> bool:
        try:
            data = await self._request(COMMENT_MUTATION, {"issueId": issue_id, "body": body})
        except RateLimitError:
            raise
        except LinearAPIError as e:
            logger.error("Failed to comment on issue %s: %s", issue_id, e)
            return False
        return bool((data.get("commentCreate") or {}).get("success"))

    async def has_recent_comment_with_text(
        self, issue_id: str, text: str, hours_ago: int = 24
    ) -> bool:
        """True if a comment containing `text` was posted within `hours_ago`."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
        try:
            data = await self._request(ISSUE_COMMENTS_QUERY, {"issueId": issue_id})
        except RateLimitError:
            raise
        except LinearAPIError as e:
            logger.error("Error checking comments for issue %s: %s", issue_id, e)
            return False

        comments = ((data.get("issue") or {}).get("comments") or {}).get("nodes") or []
        for comment in comments:
            created = datetime.fromisoformat(comment["createdAt"].replace("Z", "+00:00"))
            if created >= cutoff and text in (comment.get("body") or ""):
                return True
        return False


def create_linear_client(api_key: Optional[str] = None, **kwargs: Any) -> LinearClient:
    """Build a client from settings, optionally overriding the API key."""
    settings = get_settings().linear
    if api_key:
        settings = settings.model_copy(update={"api_key": api_key})
    return LinearClient.from_settings(settings, **kwargs)
