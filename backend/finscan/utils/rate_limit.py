import time
from collections import deque
from threading import Lock

from fastapi import HTTPException

_MAX_KEYS = 10_000
WINDOW_SECONDS = 60


class SlidingWindowRateLimiter:
    """Per-key request counter over a sliding time window."""

    def __init__(self, *, max_keys: int = _MAX_KEYS) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._max_keys = max_keys

    def allow(self, key: str, limit: int, window_seconds: int = WINDOW_SECONDS) -> bool:
        if limit <= 0 or window_seconds <= 0:
            return True
        now = time.monotonic()
        cutoff = now - window_seconds
        with self._lock:
            if len(self._hits) > self._max_keys:
                self._drop_idle(cutoff)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    def _drop_idle(self, cutoff: float) -> None:
        # caller holds the lock
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


rate_limiter = SlidingWindowRateLimiter()


def enforce_rate_limit(scope: str, organization_id: str, limit: int) -> None:
    """Raise 429 when *organization_id* exceeded *limit* calls per minute for *scope*."""
    if not rate_limiter.allow(f"{scope}:{organization_id}", limit):
        raise HTTPException(429, "Too many requests, please try again later")
