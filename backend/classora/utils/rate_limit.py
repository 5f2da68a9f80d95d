"""In-memory rate limiter for auth and contact endpoints."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request


class InMemoryRateLimiter:
    """Simple fixed-window limiter per key.

    Keys whose window has emptied are dropped, so the table only holds
    clients seen within their last window.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: Dict[str, Tuple[deque, int]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        stale = [key for key, (q, window) in self._hits.items() if not q or q[-1] < now - window]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        now = self._clock()
        retry_after = 0
        with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._sweep(now)
            q, _ = self._hits.setdefault(key, (deque(), window_seconds))
            cutoff = now - window_seconds
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= max_requests:
                retry_after = max(1, int(window_seconds - (now - q[0])))
                return False, retry_after
            q.append(now)
        return True, retry_after

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = InMemoryRateLimiter()


def enforce_rate_limit(request: Request, max_requests: int, window_seconds: int = 60) -> None:
    """Raise 429 with `Retry-After` once a client exceeds the per-window limit."""
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = limiter.allow(key, max_requests, window_seconds)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
