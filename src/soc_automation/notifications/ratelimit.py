"""
Sliding-window rate limiter for outbound notifications.
"""

import threading
import time
from collections import deque
from typing import Callable


class SlidingWindowRateLimiter:
    """
    Allow at most ``limit`` acquisitions in any ``window`` seconds.

    ``try_acquire`` checks and records under one lock, so concurrent callers
    can never exceed the limit.
    """

    def __init__(
        self,
        limit: int,
        window: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limit = limit
        self._window = window
        self._clock = clock
        self._hits: deque[float] = deque()
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        with self._lock:
            self._limit = value

    def _evict(self, now: float) -> None:
        cutoff = now - self._window
        while self._hits and self._hits[0] <= cutoff:
            self._hits.popleft()

    def try_acquire(self) -> bool:
        """Record one hit if under the limit; returns False when limited."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._hits) >= self._limit:
                return False
            self._hits.append(now)
            return True

    def remaining(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return max(self._limit - len(self._hits), 0)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
