"""
Sliding-window rate limiter for outbound calls to external systems.
"""

import logging
import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

import anyio

from interop_gateway.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterState:
    timestamps: List[float]
    limit: int
    period: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - len(self.timestamps))


class SlidingWindowRateLimiter:
    """
    Rate limiter using a sliding window per key.

    Admitted calls record their timestamp; calls over the limit fail fast with
    ``RateLimitExceededError`` instead of queueing.
    """

    def __init__(
        self,
        limit: int = 100,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            limit: Max calls per key within ``period``
            period: Window length in seconds
            clock: Monotonic time source
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.period = period
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = anyio.Lock()

    def _prune(self, window: Deque[float], now: float) -> None:
        while window and now - window[0] >= self.period:
            window.popleft()

    async def acquire(self, key: str, *, system_id: Optional[str] = None) -> None:
        """
        Record a call for ``key``.

        Raises:
            RateLimitExceededError: If ``limit`` calls were already made within
                the window; ``retry_after`` is the time until the oldest expires
        """
        async with self._lock:
            now = self._clock()
            window = self._windows[key]
            self._prune(window, now)
            if len(window) >= self.limit:
                retry_after = self.period - (now - window[0])
                logger.warning(
                    "Rate limit exceeded for %s: %d calls per %.0fs. Try again in %d seconds",
                    key,
                    self.limit,
                    self.period,
                    math.ceil(retry_after),
                )
                raise RateLimitExceededError(key, retry_after, system_id=system_id)
            window.append(now)

    def state(self, key: str) -> RateLimiterState:
        window = self._windows.get(key, deque())
        self._prune(window, self._clock())
        return RateLimiterState(timestamps=list(window), limit=self.limit, period=self.period)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)
