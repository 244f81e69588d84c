"""
Request Budget
==============
Process-wide handle bounding outbound metadata requests.

One budget is created per invocation and passed explicitly into the
RunFetcher; every listing call acquires it, regardless of which workflow,
run or job it serves. It also keeps the counters reported in the final
summary.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class RequestBudget:
    """
    Semaphore-backed concurrency bound plus request/retry counters.

    Usage:
        budget = RequestBudget(max_concurrent=6)
        async with budget.slot():
            page = await source.list_runs(workflow)
    """

    def __init__(self, max_concurrent: int = 6) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0
        self.peak_in_flight = 0
        self.requests = 0
        self.retries = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one request slot for the duration of the block."""
        async with self._semaphore:
            self._in_flight += 1
            self.requests += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1

    def record_retry(self) -> None:
        self.retries += 1
