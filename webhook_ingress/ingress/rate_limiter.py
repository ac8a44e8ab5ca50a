"""In-memory sliding window rate limiter for webhook endpoints."""

from __future__ import annotations

import time
from collections import deque


class WebhookRateLimiter:
    """Sliding window rate limiter keyed by source IP.

    Default: 60 requests per 60 seconds per IP. Idle IPs are dropped at most
    once per window, so memory tracks the IPs seen in the last window only.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: int = 60,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._last_prune = 0.0

    def check(self, source_ip: str) -> bool:
        """Record a hit and return True if the IP is still within its limit."""
        now = time.time()
        if now - self._last_prune >= self._window_seconds:
            self.prune(now)

        cutoff = now - self._window_seconds
        hits = self._hits.setdefault(source_ip, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self._max_requests:
            return False
        hits.append(now)
        return True

    def prune(self, now: float | None = None) -> None:
        """Drop IPs with no hits inside the current window."""
        now = time.time() if now is None else now
        cutoff = now - self._window_seconds
        for ip in [ip for ip, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[ip]
        self._last_prune = now
