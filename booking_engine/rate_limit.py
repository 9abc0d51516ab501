"""Fixed-window request rate limiting keyed by caller.

Counts live in a dict guarded by a ``threading.Lock``; expired windows are
treated as absent and pruned lazily on the next check.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

log = logging.getLogger("booking_engine.rate_limit")


@dataclass
class RateLimitEntry:
    key: str
    count: int
    window_start: float
    last_sent_at: Optional[float] = None


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: float = 0.0

    def headers(self) -> dict[str, str]:
        result = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            result["Retry-After"] = str(max(1, int(self.retry_after + 0.999)))
        return result


class RateLimiter:
    """Allow ``max_requests`` per key in each ``window_seconds`` window."""

    def __init__(
        self,
        window_seconds: float = 900.0,
        max_requests: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds <= 0 or max_requests <= 0:
            raise ValueError("rate limit window and max requests must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now - e.window_start >= self.window_seconds]
        for key in expired:
            del self._entries[key]

    def check(self, key: str) -> RateLimitDecision:
        """Count one attempt for ``key`` and decide whether it may proceed."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._entries.get(key)
            if entry is None:
                entry = RateLimitEntry(key=key, count=0, window_start=now)
                self._entries[key] = entry

            reset_at = entry.window_start + self.window_seconds
            if entry.count >= self.max_requests:
                decision = RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=reset_at - now,
                )
            else:
                entry.count += 1
                entry.last_sent_at = now
                decision = RateLimitDecision(
                    allowed=True,
                    limit=self.max_requests,
                    remaining=self.max_requests - entry.count,
                    reset_at=reset_at,
                )

        if not decision.allowed:
            log.warning("Rate limit exceeded for %s (retry in %.0fs)", key, decision.retry_after)
        return decision

    def peek(self, key: str) -> Optional[RateLimitEntry]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now - entry.window_start >= self.window_seconds:
                return None
            return RateLimitEntry(entry.key, entry.count, entry.window_start, entry.last_sent_at)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._entries)
