"""
In-memory sliding window rate limiter.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass
class RateLimitResult:
    """Outcome of a single hit."""
    success: bool
    limit: int
    remaining: int
    reset: float  # unix time when the oldest counted hit leaves the window

    @property
    def retry_after(self) -> int:
        return max(0, int(self.reset - time.time()) + 1)


class SlidingWindowLimiter:
    """
    Allow at most `limit` hits per key within a rolling `window` of seconds.

    Rejected hits are not counted. State is per process.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        """Drop every key whose hits have all left the window."""
        for key in list(self._hits):
            self._prune(key, now)
        self._last_sweep = now

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        if now - self._last_sweep >= self.window:
            self._sweep(now)
        hits = self._prune(key, now)

        if len(hits) >= self.limit:
            return RateLimitResult(
                success=False,
                limit=self.limit,
                remaining=0,
                reset=hits[0] + self.window
            )

        hits.append(now)
        self._hits[key] = hits
        return RateLimitResult(
            success=True,
            limit=self.limit,
            remaining=self.limit - len(hits),
            reset=hits[0] + self.window
        )

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self, key: str) -> None:
        self._hits.pop(key, None)
