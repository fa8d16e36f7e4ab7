
import asyncio
import math
import time
from collections import defaultdict
from typing import Callable, Dict, List


class SlidingWindowRateLimiter:
    """
    Process-local sliding-window limiter.

    Each key keeps the timestamps of its admitted requests; entries older
    than ``window_sec`` are pruned on every call. State lives in memory, so
    limits only hold for a single application instance.
    """

    def __init__(
        self,
        limit: int = 10,
        window_sec: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window_sec
        self._clock = clock
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def admit(self, key: str) -> bool:
        """Record a request for ``key`` and return whether it is allowed."""
        async with self._lock:
            now = self._clock()
            hits = self._prune(key, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            self._hits[key] = hits
            return True

    async def retry_after(self, key: str) -> int:
        """Seconds until ``key`` gets a free slot again (0 if it has one now)."""
        async with self._lock:
            now = self._clock()
            hits = self._prune(key, now)
            if len(hits) < self.limit:
                return 0
            return max(1, math.ceil(hits[0] + self.window - now))

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window
        hits = [ts for ts in self._hits.get(key, ()) if ts > cutoff]
        if hits:
            self._hits[key] = hits
        else:
            # drop idle keys so the map does not grow without bound
            self._hits.pop(key, None)
        return hits
