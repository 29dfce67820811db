"""In-memory rate limiter used by the global throttling middleware."""

from __future__ import annotations

import threading
import time
from collections import deque


class InMemoryRateLimiter:
    """Sliding-window limiter: at most `limit` hits per `window_seconds` per key.

    State lives in process memory, so each worker enforces its own budget.
    Keys with no hits left in the window are dropped once per window.
    """

    def __init__(self, limit: int, window_seconds: int, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def allow(self, key: str) -> tuple[bool, int]:
        """Record a hit for `key`; returns (allowed, retry_after_seconds)."""
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            q = self._hits.setdefault(key, deque())
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= self.limit:
                return False, max(1, int(self.window_seconds - (now - q[0])))
            q.append(now)
        return True, 0

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, q in self._hits.items() if not q or q[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = self._clock()
