"""Pick which generated slots to show the caller."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from itertools import groupby
from zoneinfo import ZoneInfo

from booking_engine.models.slots import TimeSlot


def _order(slot: TimeSlot) -> tuple:
    return (slot.start, slot.duration_minutes)


def select_nearest(slots: Sequence[TimeSlot]) -> list[TimeSlot]:
    """The single earliest slot, or nothing."""
    if not slots:
        return []
    return [min(slots, key=_order)]


def select_time_matched(
    slots: Sequence[TimeSlot],
    hour: int,
    minute: int,
    business_tz: ZoneInfo,
) -> list[TimeSlot]:
    """Every slot starting at ``hour:minute`` business-local time, on any date."""
    matched = []
    for slot in slots:
        local = slot.start.astimezone(business_tz)
        if local.hour == hour and local.minute == minute:
            matched.append(slot)
    return sorted(matched, key=_order)


def select_interactive(
    slots: Sequence[TimeSlot],
    business_tz: ZoneInfo,
    per_day: int = 2,
) -> list[TimeSlot]:
    """At most ``per_day`` slots per business-local date, earliest first."""

    def local_date(slot: TimeSlot) -> date:
        return slot.start.astimezone(business_tz).date()

    ordered = sorted(slots, key=lambda s: (local_date(s), s.start, s.duration_minutes))
    selected: list[TimeSlot] = []
    for _, day_slots in groupby(ordered, key=local_date):
        selected.extend(list(day_slots)[:per_day])
    return selected


def format_local_time(moment: datetime, business_tz: ZoneInfo) -> str:
    """e.g. ``Tuesday, June 11 at 2:00 PM EDT``."""
    local = moment.astimezone(business_tz)
    hour = local.hour % 12 or 12
    return (
        f"{local.strftime('%A, %B')} {local.day} at "
        f"{hour}:{local.minute:02d} {local.strftime('%p')} {local.tzname()}"
    )


def format_slot_time(slot: TimeSlot, business_tz: ZoneInfo) -> str:
    return format_local_time(slot.start, business_tz)
