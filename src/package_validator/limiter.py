"""Bounded-parallelism gate for outbound work."""

import asyncio
from typing import Optional


class ConcurrencyLimiter:
    """Counting gate that admits at most `maximum` operations at a time.

    Blocked callers poll every `granularity` seconds and suspend only their
    own task while waiting. Admission order is not guaranteed.

    Use as an async context manager:

        async with limiter:
            await do_request()
    """

    def __init__(self, maximum: int = 1, granularity: float = 0.01) -> None:
        if maximum < 1:
            raise ValueError("maximum must be at least 1")
        self.maximum = maximum
        self.granularity = granularity
        self._current = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        return self._current

    @property
    def peak(self) -> int:
        """Highest number of operations admitted at the same time."""
        return self._peak

    @property
    def available(self) -> bool:
        return self._current < self.maximum

    async def acquire(self) -> None:
        # No await between the check and the increment, so this is atomic
        # with respect to other tasks on the loop.
        while not self.available:
            await asyncio.sleep(self.granularity)
        self._current += 1
        self._peak = max(self._peak, self._current)

    def release(self) -> None:
        if self._current == 0:
            raise RuntimeError("release() called more often than acquire()")
        self._current -= 1

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        self.release()
        return None
