"""Request throttle for the ad-interest search API."""
import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RequestThrottle:
    """Pause every N requests.

    After ``batch_size`` requests have been let through, every caller
    waits until ``pause_seconds`` have elapsed before the next request.
    Concurrent callers share the same pause window.

    Usage:
        throttle = RequestThrottle(batch_size=100, pause_seconds=5)
        await throttle.acquire()
        await client.search(...)
    """

    def __init__(
        self,
        batch_size: int = 100,
        pause_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.batch_size = batch_size
        self.pause_seconds = pause_seconds
        self._clock = clock
        self._sleep = sleep
        self._count = 0
        self._paused_until = 0.0

    @property
    def request_count(self) -> int:
        return self._count

    async def acquire(self) -> float:
        """Wait for a request slot.

        Returns:
            Seconds spent waiting
        """
        self._count += 1
        if self.batch_size > 0 and self._count > 1 and (self._count - 1) % self.batch_size == 0:
            self._paused_until = max(self._paused_until, self._clock() + self.pause_seconds)
            logger.info(
                "Throttle: %d requests sent, pausing %.1fs",
                self._count - 1, self.pause_seconds,
            )

        wait = self._paused_until - self._clock()
        if wait <= 0:
            return 0.0
        await self._sleep(wait)
        return wait

    def reset(self) -> None:
        self._count = 0
        self._paused_until = 0.0
