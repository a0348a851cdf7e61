"""Per-run memo of project full data, shared by every phase of one sync."""

import asyncio
import logging
from typing import Optional

from src.linear.client import LinearClient, RateLimitError
from src.linear.types import ProjectFullData

logger = logging.getLogger(__name__)


class ProjectDataCache:
    """Caches fetched project metadata by id for the lifetime of one run.

    Concurrent requests for the same id share one in-flight fetch.
    """

    def __init__(self, client: LinearClient):
        self._client = client
        self._data: dict[str, ProjectFullData] = {}
        self._inflight: dict[str, asyncio.Future] = {}
        # Ids a batched fetch came back empty for
        self._absent: set[str] = set()

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._data

    def __len__(self) -> int:
        return len(self._data)

    def get(self, project_id: str) -> Optional[ProjectFullData]:
        return self._data.get(project_id)

    def put(self, data: ProjectFullData) -> None:
        self._data[data.id] = data

    def put_many(self, items: list[ProjectFullData]) -> None:
        for item in items:
            self.put(item)

    def all(self) -> dict[str, ProjectFullData]:
        return dict(self._data)

    async def get_or_fetch(self, project_id: str) -> ProjectFullData:
        """Return cached data or fetch it once. Errors propagate to the caller."""
        if project_id in self._data:
            return self._data[project_id]
        if project_id in self._inflight:
            return await self._inflight[project_id]

        future = asyncio.get_running_loop().create_future()
        self._inflight[project_id] = future
        try:
            data = await self._client.fetch_project_full_data(project_id)
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited future doesn't warn
            future.exception()
            raise
        else:
            self._data[project_id] = data
            future.set_result(data)
            return data
        finally:
            self._inflight.pop(project_id, None)

    async def get_optional(self, project_id: str) -> Optional[ProjectFullData]:
        """Like get_or_fetch, but non-rate-limit failures log and return None."""
        if project_id in self._absent:
            return None
        try:
            return await self.get_or_fetch(project_id)
        except RateLimitError:
            raise
        except Exception as e:
            logger.warning("Project data for %s unavailable (optional): %s", project_id, e)
            return None

    async def prefetch(self, project_ids: list[str]) -> None:
        """Batch-fetch ids not cached yet. Errors propagate to the caller."""
        missing = [pid for pid in project_ids if pid not in self._data and pid not in self._absent]
        if not missing:
            return
        found = await self._client.fetch_multiple_projects_full_data(missing)
        self._data.update(found)
        self._absent.update(pid for pid in missing if pid not in found)

    def clear(self) -> None:
        self._data.clear()
        self._absent.clear()
