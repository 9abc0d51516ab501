"""Enumerate free, bookable slots inside a search window."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from booking_engine.models.slots import (
    BusinessHoursPolicy,
    BusyInterval,
    SearchWindow,
    TimePreference,
    TimeSlot,
)

from .conflicts import is_available

log = logging.getLogger("booking_engine.availability.generator")

SATURDAY = 5


def _business_dates(window: SearchWindow, tz: ZoneInfo) -> Iterable[date]:
    day = window.start.astimezone(tz).date()
    last = window.end.astimezone(tz).date()
    while day <= last:
        yield day
        day += timedelta(days=1)


def _wall_clock(day: date, hour: int, minutes: int, tz: ZoneInfo) -> datetime:
    # Built by addition so hour 24 rolls onto the next day.
    naive = datetime.combine(day, time(0)) + timedelta(hours=hour, minutes=minutes)
    return naive.replace(tzinfo=tz)


def generate_slots(
    window: SearchWindow,
    policy: BusinessHoursPolicy,
    busy: Sequence[BusyInterval],
    durations: Sequence[int],
    caller_tz: str | ZoneInfo,
    now: datetime,
    preference: TimePreference = TimePreference.ANY,
    step_minutes: int = 30,
    lead_minutes: int = 30,
) -> list[TimeSlot]:
    """Walk every weekday of the window and return the free slots.

    Candidates are built as business-local wall-clock times and converted
    to absolute instants, so DST transitions land where the business
    expects them. Returned slots are expressed in the caller's timezone and
    sorted by (start, duration).
    """
    business_tz = policy.tz
    display_tz = caller_tz if isinstance(caller_tz, ZoneInfo) else ZoneInfo(caller_tz)
    earliest = now + timedelta(minutes=lead_minutes)
    periods = policy.periods(preference)

    slots: list[TimeSlot] = []
    seen: set[tuple[datetime, int]] = set()

    for day in _business_dates(window, business_tz):
        if day.weekday() >= SATURDAY:
            continue
        for duration in durations:
            length = timedelta(minutes=duration)
            for period_start, period_end in periods:
                period_close = _wall_clock(day, period_end, 0, business_tz)
                offset = 0
                while True:
                    local_start = _wall_clock(day, period_start, offset, business_tz)
                    offset += step_minutes
                    start_utc = local_start.astimezone(timezone.utc)
                    end_utc = start_utc + length
                    if end_utc > period_close.astimezone(timezone.utc):
                        break
                    if start_utc < earliest or start_utc < window.start or end_utc > window.end:
                        continue
                    if (start_utc, duration) in seen:
                        continue
                    slot = TimeSlot(
                        start=start_utc.astimezone(display_tz),
                        end=end_utc.astimezone(display_tz),
                        duration_minutes=duration,
                    )
                    if not is_available(slot, busy, business_tz):
                        continue
                    seen.add((start_utc, duration))
                    slots.append(slot)

    slots.sort(key=lambda s: (s.start, s.duration_minutes))
    log.debug(
        "Generated %d slots between %s and %s",
        len(slots), window.start.isoformat(), window.end.isoformat(),
    )
    return slots
