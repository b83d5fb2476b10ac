import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, TypeVar

T = TypeVar('T')


class CrawlScheduler:
    """Admission control for outbound fetches.

    A request first waits for one of ``max_concurrent`` slots (asyncio.Semaphore
    wakes waiters in FIFO order), then for the per-domain spacing gate. The slot
    is released on every exit path of the wrapped call.
    """

    def __init__(self, max_concurrent: int = 25, request_delay: float = 0.1,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        if max_concurrent < 1:
            raise ValueError('max_concurrent must be at least 1')
        self.max_concurrent = max_concurrent
        self.request_delay = request_delay
        self.clock = clock
        self.logger = logger or logging.getLogger('crawler.scheduler')
        self._slots = asyncio.Semaphore(max_concurrent)
        self._domain_locks: Dict[str, asyncio.Lock] = {}
        self._last_request: Dict[str, float] = {}
        self.active_requests = 0
        self.peak_requests = 0

    async def _wait_for_domain(self, domain: str) -> None:
        lock = self._domain_locks.setdefault(domain, asyncio.Lock())
        async with lock:
            last = self._last_request.get(domain)
            if last is not None:
                # The loop may wake a little early, so re-check until the spacing has elapsed
                remaining = last + self.request_delay - self.clock()
                if remaining > 0:
                    self.logger.debug(f"Spacing requests to {domain}: waiting {remaining:.3f}s")
                while remaining > 0:
                    await asyncio.sleep(remaining)
                    remaining = last + self.request_delay - self.clock()
            self._last_request[domain] = self.clock()

    async def schedule(self, domain: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn once both gates admit it"""
        async with self._slots:
            await self._wait_for_domain(domain)
            self.active_requests += 1
            self.peak_requests = max(self.peak_requests, self.active_requests)
            try:
                return await fn()
            finally:
                self.active_requests -= 1
