"""Bounded project-level concurrency with a shared cancel token."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar, Union

from src.linear.client import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONCURRENCY = 5


class SyncCancelled(Exception):
    """Raised by a worker that observed the cancel token."""


class CancelToken:
    """Cooperative cancellation flag scoped to one sync run."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "") -> None:
        if not self._cancelled:
            logger.warning("Cancelling outstanding sync work: %s", reason or "requested")
        self._cancelled = True
        self.reason = self.reason or reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SyncCancelled(self.reason or "cancelled")


class ConcurrencyLimiter:
    """Runs coroutines at most `limit` at a time and settles them all.

    The first RateLimitError cancels the token; workers still queued see
    the token and return early instead of calling the API.
    """

    def __init__(self, limit: int = DEFAULT_CONCURRENCY, token: Optional[CancelToken] = None):
        self.limit = limit
        self.token = token or CancelToken()
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            self.token.raise_if_cancelled()
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                return await fn()
            except RateLimitError as e:
                self.token.cancel(str(e))
                raise
            finally:
                self.in_flight -= 1

    async def run_all(
        self, items: Iterable[Any], worker: Callable[[Any], Awaitable[T]]
    ) -> list[Union[T, BaseException]]:
        """Run worker(item) for each item; results in input order, errors as values."""
        return await asyncio.gather(
            *[self.run(lambda item=item: worker(item)) for item in items],
            return_exceptions=True,
        )


def raise_for_rate_limit(results: list[Any]) -> None:
    """Escalate a rate limit from settled results. Other errors are logged."""
    rate_limited = None
    for result in results:
        if isinstance(result, RateLimitError):
            rate_limited = rate_limited or result
        elif isinstance(result, SyncCancelled):
            continue
        elif isinstance(result, BaseException):
            logger.error("Project sync failed: %s", result)
    if rate_limited is not None:
        raise rate_limited
