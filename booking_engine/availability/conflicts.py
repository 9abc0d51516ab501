"""Decide whether a candidate slot collides with busy time."""

from __future__ import annotations

from collections.abc import Iterable
from zoneinfo import ZoneInfo

from booking_engine.models.slots import BusyInterval, TimeSlot


def overlaps(slot: TimeSlot, interval: BusyInterval) -> bool:
    """Half-open overlap: touching endpoints do not collide."""
    return slot.start < interval.end and slot.end > interval.start


def blocks_date(slot: TimeSlot, interval: BusyInterval, business_tz: ZoneInfo) -> bool:
    """True when an all-day interval covers the slot's business-local date."""
    first, last = interval.blocked_dates(business_tz)
    slot_date = slot.start.astimezone(business_tz).date()
    return first <= slot_date <= last


def is_available(
    candidate: TimeSlot,
    busy: Iterable[BusyInterval],
    business_tz: ZoneInfo,
) -> bool:
    """Return False if any busy interval blocks ``candidate``.

    All-day intervals block whole business-local dates rather than being
    compared instant by instant, so a midnight-to-midnight event in the
    business timezone cannot leak onto the previous evening when the slot
    is displayed in another zone.
    """
    for interval in busy:
        if interval.is_all_day(business_tz):
            if blocks_date(candidate, interval, business_tz):
                return False
        elif overlaps(candidate, interval):
            return False
    return True
