"""Simple IP based rolling window rate limiter."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Iterable

from fastapi import Request, status
from fastapi.responses import JSONResponse


class RateLimiter:
    """Track requests per IP over a rolling time window."""

    def __init__(
        self,
        max_calls: int,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_prune = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)

    def allow(self, ip: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_prune > self.window_seconds:
                self._prune(now)
            bucket = self._calls[ip]
            while bucket and now - bucket[0] > self.window_seconds:
                bucket.popleft()
            if len(bucket) >= self.max_calls:
                return False
            bucket.append(now)
            return True

    def _prune(self, now: float) -> None:
        """Drop clients with no call inside the window. Runs at most once per window."""
        for ip in [k for k, v in self._calls.items() if not v or now - v[-1] > self.window_seconds]:
            del self._calls[ip]
        self._last_prune = now


EXEMPT_PATHS: Iterable[str] = ("/healthz", "/readyz")


async def rate_limit_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)
    limiter: RateLimiter = request.app.state.rate_limiter
    client_ip = request.client.host if request.client else "anonymous"
    if not limiter.allow(client_ip):
        return JSONResponse({"error": "too_many_requests"}, status_code=status.HTTP_429_TOO_MANY_REQUESTS)
    return await call_next(request)
