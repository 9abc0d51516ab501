"""Tests for choosing which slots to offer."""

import random
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from booking_engine.availability.selector import (
    format_local_time,
    format_slot_time,
    select_interactive,
    select_nearest,
    select_time_matched,
)
from booking_engine.models.slots import TimeSlot

from .fakes import ET


def _slot(start: datetime, minutes: int = 30) -> TimeSlot:
    return TimeSlot(start=start, end=start + timedelta(minutes=minutes), duration_minutes=minutes)


class TestTimeMatched:
    def test_returns_every_date_with_that_time(self):
        slots = [
            _slot(datetime(2024, 6, day, hour, 0, tzinfo=ET))
            for day in (10, 11, 12)
            for hour in (10, 14, 15)
        ]
        matched = select_time_matched(slots, 15, 0, ET)
        assert len(matched) == 3
        assert all(s.start.astimezone(ET).hour == 15 for s in matched)
        assert [s.start.day for s in matched] == [10, 11, 12]

    def test_compares_in_business_time(self):
        # 12:00 in Los Angeles is 15:00 in New York
        la = ZoneInfo("America/Los_Angeles")
        slot = _slot(datetime(2024, 6, 10, 12, 0, tzinfo=la))
        assert select_time_matched([slot], 15, 0, ET) == [slot]
        assert select_time_matched([slot], 12, 0, ET) == []

    def test_shorter_first_on_same_start(self):
        start = datetime(2024, 6, 11, 14, 0, tzinfo=ET)
        matched = select_time_matched([_slot(start, 60), _slot(start, 30)], 14, 0, ET)
        assert [s.duration_minutes for s in matched] == [30, 60]


class TestInteractive:
    def test_caps_each_date_earliest_first(self):
        day = [_slot(datetime(2024, 6, 10, 9, 0, tzinfo=ET) + timedelta(minutes=30 * i)) for i in range(8)]
        shuffled = list(day)
        random.Random(7).shuffle(shuffled)
        picked = select_interactive(shuffled, ET)
        assert picked == day[:2]

    def test_spans_multiple_dates(self):
        slots = [
            _slot(datetime(2024, 6, d, h, 0, tzinfo=ET))
            for d in (10, 11, 12)
            for h in (9, 10, 11)
        ]
        picked = select_interactive(slots, ET)
        assert len(picked) == 6
        assert [s.start.day for s in picked] == [10, 10, 11, 11, 12, 12]


class TestNearest:
    def test_single_earliest(self):
        late = _slot(datetime(2024, 6, 12, 9, 0, tzinfo=ET))
        early = _slot(datetime(2024, 6, 10, 16, 0, tzinfo=ET))
        assert select_nearest([late, early]) == [early]

    def test_empty(self):
        assert select_nearest([]) == []
        assert select_interactive([], ET) == []


class TestFormatting:
    def test_label(self):
        slot = _slot(datetime(2024, 6, 11, 14, 0, tzinfo=ET))
        assert format_slot_time(slot, ET) == "Tuesday, June 11 at 2:00 PM EDT"

    def test_label_converts_to_business_zone(self):
        moment = datetime(2024, 1, 15, 14, 30, tzinfo=ZoneInfo("UTC"))
        assert format_local_time(moment, ET) == "Monday, January 15 at 9:30 AM EST"
