"""Bounded, thread-safe log of recent audit and performance entries.

Booking transitions, email delivery attempts and API request timings are
appended here so the health endpoint can summarise recent behaviour. The
log is owned by the engine instance; once ``maxlen`` entries are held the
oldest ones are evicted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, TypedDict

log = logging.getLogger("booking_engine.audit")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class AuditEntry(TypedDict):
    kind: str          # booking_transition | email_attempt | calendar_call | api_request
    timestamp: float
    data: dict[str, Any]


class AuditLog:
    """Rolling audit log with a fixed capacity."""

    def __init__(self, maxlen: int = 1000) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self._maxlen = maxlen

    def record(self, kind: str, data: dict[str, Any]) -> AuditEntry:
        entry: AuditEntry = {"kind": kind, "timestamp": time.time(), "data": dict(data)}
        with self._lock:
            self._entries.append(entry)
        log.debug("audit %s: %s", kind, data)
        return entry

    def recent(self, kind: str | None = None, limit: int | None = None) -> list[AuditEntry]:
        """Newest-last copy of the log, optionally filtered by kind."""
        with self._lock:
            entries = list(self._entries)
        if kind is not None:
            entries = [e for e in entries if e["kind"] == kind]
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def stats(self) -> dict[str, Any]:
        with self._lock:
            entries = list(self._entries)
        by_kind: dict[str, int] = {}
        for e in entries:
            by_kind[e["kind"]] = by_kind.get(e["kind"], 0) + 1

        timed = [e["data"]["latency_ms"] for e in entries if "latency_ms" in e["data"]]
        failures = [e for e in entries if e["data"].get("success") is False]
        return {
            "size": len(entries),
            "capacity": self._maxlen,
            "by_kind": by_kind,
            "average_latency_ms": round(sum(timed) / len(timed), 1) if timed else 0.0,
            "failure_count": len(failures),
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
