"""
Rate Limiter - Request Budget Shared by All Outbound Calls

Token reservoir with periodic replenishment, a concurrency cap and a minimum
spacing between dispatches. The remote API allows roughly 100 requests per
20 seconds per service account, so every HTTP attempt of a run goes through
one limiter instance.

Rules:
- The reservoir starts full and loses one token per granted permit
- Every increase_interval seconds it gains increase_amount, up to increase_maximum
- Releasing a permit frees a concurrency slot; it never gives a token back
- Waiters are served in FIFO order

Usage:
    limiter = RateLimiter(reservoir=20, increase_interval=1.0, increase_amount=5,
                          increase_maximum=20, max_concurrent=10, min_time=0.5)

    async with limiter.limit():
        response = await client.get(url)
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class RateLimiter:
    """Reservoir + concurrency + spacing limiter for asyncio callers."""

    def __init__(
        self,
        reservoir: Optional[int] = None,
        increase_interval: Optional[float] = None,
        increase_amount: int = 0,
        increase_maximum: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        min_time: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            reservoir: Starting token count, None for no token budget
            increase_interval: Seconds between replenishments, None to disable
            increase_amount: Tokens added per replenishment
            increase_maximum: Ceiling for replenishment, None for no ceiling
            max_concurrent: Maximum permits outstanding at once, None for no cap
            min_time: Minimum seconds between two dispatches
            clock: Monotonic time source
            sleep: Coroutine used to wait; injectable for tests
            logger: Logger for budget events
        """
        self._reservoir = reservoir
        self._increase_interval = increase_interval
        self._increase_amount = increase_amount
        self._increase_maximum = increase_maximum
        self._max_concurrent = max_concurrent
        self._min_time = max(0.0, min_time)
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self._queue_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_concurrent) if max_concurrent else None
        self._last_increase = clock()
        self._next_dispatch: Optional[float] = None
        self._in_flight = 0

    @property
    def reservoir(self) -> Optional[int]:
        return self._reservoir

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _replenish(self, now: float) -> None:
        if self._reservoir is None or not self._increase_interval:
            return
        elapsed = now - self._last_increase
        if elapsed < self._increase_interval:
            return
        ticks = int(elapsed // self._increase_interval)
        self._last_increase += ticks * self._increase_interval
        if self._increase_maximum is not None and self._reservoir >= self._increase_maximum:
            return
        refilled = self._reservoir + ticks * self._increase_amount
        if self._increase_maximum is not None:
            refilled = min(refilled, self._increase_maximum)
        self._reservoir = refilled

    async def _wait_for_token(self, cost: int) -> None:
        while True:
            now = self._clock()
            self._replenish(now)
            if self._reservoir is None or self._reservoir >= cost:
                return
            if not self._increase_interval or self._increase_amount <= 0:
                # Exhausted for good; callers wait indefinitely rather than fail
                self.logger.warning("Rate limit reservoir exhausted with no replenishment configured")
                await asyncio.get_running_loop().create_future()
            await self._sleep(self._last_increase + self._increase_interval - now)

    async def _wait_for_spacing(self) -> None:
        if self._next_dispatch is None:
            return
        delay = self._next_dispatch - self._clock()
        if delay > 0:
            await self._sleep(delay)

    async def acquire(self, cost: int = 1) -> None:
        """Wait until a permit can be granted, then take it.

        Args:
            cost: Reservoir tokens the permit consumes
        """
        if cost < 1:
            raise ValueError(f"Permit cost must be at least 1, got {cost}")
        ceiling = self._increase_maximum
        if ceiling is not None and self._reservoir is not None and cost > max(ceiling, self._reservoir):
            raise ValueError(f"Permit cost {cost} exceeds the reservoir ceiling {ceiling}")
        async with self._queue_lock:
            if self._slots is not None:
                await self._slots.acquire()
            try:
                await self._wait_for_token(cost)
                await self._wait_for_spacing()
            except BaseException:
                if self._slots is not None:
                    self._slots.release()
                raise

            if self._reservoir is not None:
                self._reservoir -= cost
            self._next_dispatch = self._clock() + self._min_time
            self._in_flight += 1

    def release(self) -> None:
        """Free the concurrency slot held by a finished call."""
        self._in_flight -= 1
        if self._slots is not None:
            self._slots.release()

    @asynccontextmanager
    async def limit(self, cost: int = 1) -> AsyncIterator[None]:
        await self.acquire(cost)
        try:
            yield
        finally:
            self.release()

    def wrap(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Return a coroutine function that runs func under a permit."""

        async def limited(*args: Any, **kwargs: Any) -> T:
            async with self.limit():
                return await func(*args, **kwargs)

        return limited

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "RateLimiter":
        return cls(
            reservoir=settings.RATE_RESERVOIR,
            increase_interval=settings.RATE_INCREASE_INTERVAL,
            increase_amount=settings.RATE_INCREASE_AMOUNT,
            increase_maximum=settings.RATE_INCREASE_MAXIMUM,
            max_concurrent=settings.RATE_MAX_CONCURRENT,
            min_time=settings.RATE_MIN_TIME,
            **kwargs,
        )
