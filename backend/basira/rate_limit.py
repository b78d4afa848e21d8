from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock

from basira.errors import TooManyRequests


class RateLimiter:
    """
    Very small in-memory rate limiter (per-process), used on credential
    endpoints. Multi-instance deployments need a shared store instead.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: dict[str, deque[float]] = defaultdict(deque)

    def hit(self, *, key: str, limit: int, window_seconds: int, detail: str = "Too many requests") -> None:
        now = time.monotonic()
        win_start = now - float(window_seconds)
        with self._lock:
            q = self._events[key]
            while q and q[0] < win_start:
                q.popleft()
            if len(q) >= int(limit):
                raise TooManyRequests(detail)
            q.append(now)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


limiter = RateLimiter()
