"""Availability query: normalize, fetch busy time, generate and select slots.

This is the error boundary for availability. Calendar failures switch the
request to the fallback demo provider and the result is flagged
``is_demo``; nothing raises past :meth:`AvailabilityService.get_availability`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from booking_engine.audit import AuditLog
from booking_engine.calendar_providers.base import CalendarProvider
from booking_engine.calendar_providers.mock import MockCalendarProvider
from booking_engine.models.slots import (
    BusinessHoursPolicy,
    BusyInterval,
    SearchWindow,
    TimePreference,
    TimeSlot,
)

from .generator import generate_slots
from .selector import format_slot_time, select_interactive, select_nearest, select_time_matched
from .window import NormalizedWindow, normalize, resolve_timezone

log = logging.getLogger("booking_engine.availability.service")

DEMO_NOTICE = " (Showing demo availability: the live calendar could not be reached.)"


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class AvailabilityMode(str, Enum):
    NEAREST = "nearest"
    INTERACTIVE = "interactive"
    ALL = "all"


class AvailabilityResult(BaseModel):
    available_slots: list[TimeSlot]
    timezone: str
    business_hours: dict
    meeting_durations: list[int]
    message: str
    is_demo: bool = False
    window: Optional[SearchWindow] = None


class AvailabilityService:
    """Answers availability queries against a calendar provider."""

    def __init__(
        self,
        provider: CalendarProvider,
        policy: BusinessHoursPolicy,
        durations: Sequence[int] = (30, 60),
        *,
        calendar_id: str = "primary",
        fallback: CalendarProvider | None = None,
        audit: AuditLog | None = None,
        step_minutes: int = 30,
        lead_minutes: int = 30,
        default_lookahead_days: int = 7,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._provider = provider
        self._fallback = fallback if fallback is not None else MockCalendarProvider()
        self._policy = policy
        self._durations = sorted(set(durations))
        self._calendar_id = calendar_id
        self._audit = audit
        self._step = step_minutes
        self._lead = lead_minutes
        self._default_days = default_lookahead_days
        self._enabled = enabled
        self._clock = clock

    @property
    def policy(self) -> BusinessHoursPolicy:
        return self._policy

    @property
    def durations(self) -> list[int]:
        return list(self._durations)

    @property
    def provider(self) -> CalendarProvider:
        return self._provider

    def now(self) -> datetime:
        return self._clock()

    # ---- Busy time ------------------------------------------------------

    async def _query_busy(
        self,
        provider: CalendarProvider,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        started = time.monotonic()
        success = False
        try:
            busy = await provider.query_free_busy(
                calendar_id=self._calendar_id,
                time_min=time_min,
                time_max=time_max,
                timezone=self._policy.timezone,
            )
            success = True
            return busy
        finally:
            if self._audit is not None:
                self._audit.record("calendar_call", {
                    "operation": "free_busy",
                    "demo": provider.is_demo,
                    "success": success,
                    "latency_ms": round((time.monotonic() - started) * 1000, 1),
                })

    async def _busy_with_fallback(
        self, window: SearchWindow
    ) -> tuple[list[BusyInterval], bool]:
        try:
            busy = await self._query_busy(self._provider, window.start, window.end)
            return busy, self._provider.is_demo
        except Exception:
            log.exception("Calendar free/busy query failed, switching to demo availability")
        busy = await self._query_busy(self._fallback, window.start, window.end)
        return busy, True

    # ---- Queries --------------------------------------------------------

    def _result(
        self,
        slots: list[TimeSlot],
        tz_name: str,
        message: str,
        is_demo: bool = False,
        window: SearchWindow | None = None,
    ) -> AvailabilityResult:
        if is_demo:
            message += DEMO_NOTICE
        return AvailabilityResult(
            available_slots=slots,
            timezone=tz_name,
            business_hours=self._policy.summary(),
            meeting_durations=self.durations,
            message=message,
            is_demo=is_demo,
            window=window,
        )

    async def get_availability(
        self,
        timezone: str | None = None,
        lookahead_days: int | None = None,
        requested_time: str | None = None,
        preference: str | TimePreference | None = None,
        mode: AvailabilityMode | str = AvailabilityMode.NEAREST,
    ) -> AvailabilityResult:
        """Return the slots to offer for one availability query."""
        try:
            mode = AvailabilityMode(mode)
        except ValueError:
            log.warning("Unknown availability mode %r, using nearest", mode)
            mode = AvailabilityMode.NEAREST
        tz_name = timezone or self._policy.timezone

        if not self._enabled:
            return self._result(
                [], tz_name,
                "Online scheduling is currently disabled. Please contact us directly.",
            )

        now = self.now()
        try:
            normalized = normalize(
                now=now,
                policy=self._policy,
                caller_timezone=timezone,
                requested_time=requested_time,
                preference=preference,
                days=lookahead_days,
                default_days=self._default_days,
            )
            tz_name = normalized.caller_timezone
            busy, is_demo = await self._busy_with_fallback(normalized.window)
            slots = generate_slots(
                window=normalized.window,
                policy=self._policy,
                busy=busy,
                durations=self._durations,
                caller_tz=tz_name,
                now=now,
                preference=normalized.preference,
                step_minutes=self._step,
                lead_minutes=self._lead,
            )
            selected, message = self._select(slots, normalized, mode, requested_time)
        except Exception:
            log.exception("Availability query failed")
            return self._result(
                [], tz_name,
                "Sorry, I could not check availability right now. Please try again "
                "in a moment or contact us directly.",
            )

        log.info(
            "Availability: %d of %d slots returned (mode=%s, demo=%s)",
            len(selected), len(slots), mode.value, is_demo,
        )
        return self._result(selected, tz_name, message, is_demo, normalized.window)

    def _select(
        self,
        slots: list[TimeSlot],
        normalized: NormalizedWindow,
        mode: AvailabilityMode,
        requested_time: str | None,
    ) -> tuple[list[TimeSlot], str]:
        business_tz = self._policy.tz
        days = normalized.window.lookahead_days

        if not slots:
            return [], (
                f"There are no available times in the next {days} days. "
                "Please contact us directly to arrange a meeting."
            )

        if normalized.target is not None:
            hour, minute = normalized.target
            matched = select_time_matched(slots, hour, minute, business_tz)
            if matched:
                first = format_slot_time(matched[0], business_tz)
                return matched, (
                    f"That time is available on {len(matched)} occasion(s). "
                    f"The first is {first}."
                )
            nearest = select_nearest(slots)
            return nearest, (
                f"No exact match for {requested_time!r} was found in the next {days} days. "
                f"The nearest available time is {format_slot_time(nearest[0], business_tz)}."
            )

        if mode == AvailabilityMode.INTERACTIVE:
            picked = select_interactive(slots, business_tz)
            return picked, f"Found {len(picked)} available times over the next {days} days."

        if mode == AvailabilityMode.ALL:
            return list(slots), f"Found {len(slots)} available times over the next {days} days."

        nearest = select_nearest(slots)
        return nearest, (
            f"The earliest available time is {format_slot_time(nearest[0], business_tz)}."
        )

    async def validate_slot(
        self,
        start: datetime,
        end: datetime,
        timezone: str | None = None,
    ) -> bool:
        """Check ``[start, end)`` is still exactly one of the free slots.

        Queries the live provider with no fallback; upstream errors
        propagate so the caller can fail closed.
        """
        duration = int((end.timestamp() - start.timestamp()) // 60)
        if duration not in self._durations:
            return False

        window = SearchWindow(start=start, end=end, lookahead_days=1)
        busy = await self._query_busy(
            self._provider,
            start - timedelta(days=1),
            end + timedelta(days=1),
        )
        candidates = generate_slots(
            window=window,
            policy=self._policy,
            busy=busy,
            durations=[duration],
            caller_tz=resolve_timezone(timezone, self._policy.timezone),
            now=self.now(),
            step_minutes=self._step,
            lead_minutes=self._lead,
        )
        return any(slot.matches(start, end) for slot in candidates)
