"""Fixed-rate concurrency gate for outbound provider calls.

At most ``limit`` operations start within any ``interval_s`` window across all
callers sharing one throttle. Excess starts wait in arrival order; nothing is
dropped and nothing is retried.
"""

import asyncio
import functools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from src.core.config import ThrottleConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class ProviderThrottle:
    """Delays operation starts so no more than ``limit`` begin per ``interval_s``.

    Usage::

        throttle = ProviderThrottle(limit=1, interval_s=1.0)
        result = await throttle.run(fetch, url)

        @throttle.wrap
        async def fetch(url: str) -> dict: ...
    """

    def __init__(
        self,
        limit: int = 1,
        interval_s: float = 1.0,
        *,
        clock: Callable[[], float] | None = None,
        name: str = "provider",
    ) -> None:
        if limit < 1:
            msg = "limit must be at least 1"
            raise ValueError(msg)
        if interval_s <= 0:
            msg = "interval_s must be positive"
            raise ValueError(msg)
        self._limit = limit
        self._interval = interval_s
        self._clock = clock or time.monotonic
        self._name = name
        self._starts: deque[float] = deque()
        # asyncio.Lock wakes waiters in FIFO order, which makes it the queue.
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: ThrottleConfig, name: str = "provider") -> "ProviderThrottle":
        return cls(limit=config.limit, interval_s=config.interval_s, name=name)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def interval_s(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        """Wait until a start slot is free, then claim it."""
        async with self._lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self._interval:
                    self._starts.popleft()
                if len(self._starts) < self._limit:
                    self._starts.append(now)
                    return
                wait = self._starts[0] + self._interval - now
                logger.debug("Throttle '%s' full, waiting %.3fs", self._name, wait)
                await asyncio.sleep(wait)

    async def run(
        self,
        fn: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Start ``fn(*args, **kwargs)`` once the throttle allows it."""
        await self.acquire()
        return await fn(*args, **kwargs)

    def wrap(self, fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Decorate an async function so every call goes through this throttle."""

        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.run(fn, *args, **kwargs)

        return wrapper
