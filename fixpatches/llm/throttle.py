"""
Request Throttle
================
Process-wide minimum spacing between oracle requests.

The endpoint allows ORACLE_REQUESTS_PER_MINUTE requests per minute, so every
call (including backoff retries) waits until 60 / rpm seconds have passed
since the previous one. One throttle instance is shared by every OracleClient
in the process.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from fixpatches.core.config import ORACLE_REQUESTS_PER_MINUTE

logger = logging.getLogger(__name__)


class RequestThrottle:

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        """Lazy-initialise the lock inside the running event loop."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def wait(self) -> float:
        """Block until the next request may be sent. Returns seconds waited."""
        async with self._get_lock():
            waited = 0.0
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.info("Rate limiting: waiting %.1fs before next oracle request", waited)
                    await self._sleep(waited)
            self._last_request = self._clock()
            return waited

    def reset(self) -> None:
        self._last_request = None
        self._lock = None


_throttle: Optional[RequestThrottle] = None


def get_throttle() -> RequestThrottle:
    global _throttle
    if _throttle is None:
        _throttle = RequestThrottle(60.0 / max(ORACLE_REQUESTS_PER_MINUTE, 1))
    return _throttle
