"""Per-recipient email limits: cooldown, hourly cap and daily cap."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable

HOUR = 3600.0
DAY = 86400.0


@dataclass(frozen=True)
class RecipientDecision:
    allowed: bool
    reason: str = ""
    retry_after: float = 0.0
    recipient: str = ""


class RecipientRateLimiter:
    """Tracks recent sends per recipient address.

    ``acquire_all`` checks and records under one lock, so two concurrent
    sends to the same address cannot both slip under a cap, and a message
    blocked for one recipient is not counted against the others. Addresses in
    ``cooldown_exempt`` skip the cooldown but still count toward the caps.
    """

    def __init__(
        self,
        hourly_cap: int = 5,
        daily_cap: int = 20,
        cooldown_seconds: float = 300.0,
        cooldown_exempt: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.hourly_cap = hourly_cap
        self.daily_cap = daily_cap
        self.cooldown_seconds = cooldown_seconds
        self._exempt = {a.strip().lower() for a in cooldown_exempt if a}
        self._clock = clock
        self._sends: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _recent(self, key: str, now: float) -> list[float]:
        stamps = [t for t in self._sends.get(key, []) if now - t < DAY]
        if stamps:
            self._sends[key] = stamps
        else:
            self._sends.pop(key, None)
        return stamps

    def _decide(self, key: str, now: float) -> RecipientDecision:
        stamps = self._recent(key, now)
        if not stamps:
            return RecipientDecision(True)

        last = stamps[-1]
        if key not in self._exempt and now - last < self.cooldown_seconds:
            return RecipientDecision(False, "cooldown", self.cooldown_seconds - (now - last))

        last_hour = [t for t in stamps if now - t < HOUR]
        if len(last_hour) >= self.hourly_cap:
            return RecipientDecision(False, "hourly_cap", HOUR - (now - last_hour[0]))

        if len(stamps) >= self.daily_cap:
            return RecipientDecision(False, "daily_cap", DAY - (now - stamps[0]))

        return RecipientDecision(True)

    def check(self, recipient: str) -> RecipientDecision:
        """Peek at the decision without counting a send."""
        key = recipient.strip().lower()
        with self._lock:
            return self._decide(key, self._clock())

    def acquire(self, recipient: str) -> RecipientDecision:
        """Check the limits and, if allowed, count a send."""
        return self.acquire_all([recipient])

    def acquire_all(self, recipients: Iterable[str]) -> RecipientDecision:
        """Count one send to every recipient, or to none if any is over a limit."""
        keys = list(dict.fromkeys(r.strip().lower() for r in recipients))
        with self._lock:
            now = self._clock()
            for key in keys:
                decision = self._decide(key, now)
                if not decision.allowed:
                    return replace(decision, recipient=key)
            for key in keys:
                self._sends.setdefault(key, []).append(now)
        return RecipientDecision(True)

    def reset(self) -> None:
        with self._lock:
            self._sends.clear()
