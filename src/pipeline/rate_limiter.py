"""Per-client fixed-window rate limiter for the query operation.

Windows do not slide: a burst straddling two windows can briefly admit up to
twice the nominal rate.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.core.config import RateLimitConfig
from src.core.schemas import RateDecision

logger = logging.getLogger(__name__)

# Expired windows are swept once the map holds this many keys.
SWEEP_THRESHOLD = 1024


@dataclass
class RateWindow:
    """Admission state for one client key."""

    window_start_ms: float
    count: int


class RateLimiter:
    """Admits at most ``max_requests`` per ``window_ms`` for each key.

    Usage::

        limiter = RateLimiter(RateLimitConfig(window_ms=60_000, max_requests=60))
        decision = limiter.admit("203.0.113.7")
        if not decision.allowed:
            ...  # tell the caller to retry after decision.retry_after_ms
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] | None = None,
        sweep_threshold: int = SWEEP_THRESHOLD,
    ) -> None:
        config = config or RateLimitConfig()
        self._window_ms = config.window_ms
        self._max = config.max_requests
        self._clock = clock or _monotonic_ms
        self._windows: dict[str, RateWindow] = {}
        self._sweep_threshold = sweep_threshold

    def admit(self, key: str) -> RateDecision:
        """Count a request for ``key`` and decide whether it may proceed."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.window_start_ms > self._window_ms:
            if window is None and len(self._windows) >= self._sweep_threshold:
                self._sweep(now)
            self._windows[key] = RateWindow(window_start_ms=now, count=1)
            return RateDecision(allowed=True)

        if window.count >= self._max:
            retry_after = int(self._window_ms - (now - window.window_start_ms))
            logger.info(
                "Rate limit hit for '%s': %d requests, retry in %d ms",
                key, window.count, retry_after,
            )
            return RateDecision(allowed=False, retry_after_ms=max(retry_after, 1))

        window.count += 1
        return RateDecision(allowed=True)

    def _sweep(self, now: float) -> None:
        expired = [
            k for k, w in self._windows.items() if now - w.window_start_ms > self._window_ms
        ]
        for k in expired:
            del self._windows[k]
        if expired:
            logger.debug("Dropped %d expired rate windows", len(expired))

    def reset(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0
