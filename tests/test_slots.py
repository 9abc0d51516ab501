"""Tests for slot models, conflict detection and slot generation."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from booking_engine.availability.conflicts import is_available, overlaps
from booking_engine.availability.generator import generate_slots
from booking_engine.availability.selector import select_time_matched
from booking_engine.availability.window import normalize
from booking_engine.models.slots import (
    BusinessHoursPolicy,
    BusyInterval,
    SearchWindow,
    TimePreference,
    TimeSlot,
)

from .fakes import ET, NOW, all_day

MONDAY = datetime(2024, 6, 10, 8, 0, tzinfo=ET)


def _slot(start: datetime, minutes: int = 30) -> TimeSlot:
    return TimeSlot(start=start, end=start + timedelta(minutes=minutes), duration_minutes=minutes)


def _window(start: datetime, days: int) -> SearchWindow:
    return SearchWindow(start=start, end=start + timedelta(days=days), lookahead_days=days)


# ── Models ─────────────────────────────────────────────────────


class TestModels:
    def test_slot_duration_must_match_span(self):
        with pytest.raises(ValidationError):
            TimeSlot(
                start=MONDAY,
                end=MONDAY + timedelta(minutes=45),
                duration_minutes=30,
            )

    def test_slot_key_is_timezone_independent(self):
        eastern = _slot(datetime(2024, 6, 11, 14, 0, tzinfo=ET))
        pacific = TimeSlot(
            start=eastern.start.astimezone(ZoneInfo("America/Los_Angeles")),
            end=eastern.end.astimezone(ZoneInfo("America/Los_Angeles")),
            duration_minutes=30,
        )
        assert eastern.key == pacific.key
        assert pacific.matches(eastern.start, eastern.end)

    def test_busy_interval_must_be_ordered(self):
        with pytest.raises(ValidationError):
            BusyInterval(start=MONDAY, end=MONDAY)

    def test_all_day_detection_in_business_zone(self):
        start, end = all_day(MONDAY)
        interval = BusyInterval(start=start.astimezone(timezone.utc), end=end.astimezone(timezone.utc))
        assert interval.is_all_day(ET)
        assert interval.blocked_dates(ET) == (MONDAY.date(), MONDAY.date())
        assert not interval.is_all_day(ZoneInfo("Europe/London"))

    def test_policy_rejects_inverted_hours(self):
        with pytest.raises(ValidationError):
            BusinessHoursPolicy(morning_start=12, morning_end=9)

    def test_policy_periods(self, policy):
        assert policy.periods() == [(9, 12), (12, 18)]
        assert policy.periods(TimePreference.MORNING) == [(9, 12)]
        assert policy.summary()["end"] == 18


# ── Conflicts ──────────────────────────────────────────────────


class TestConflicts:
    def test_touching_endpoints_do_not_overlap(self):
        busy = BusyInterval(
            start=datetime(2024, 6, 10, 10, 0, tzinfo=ET),
            end=datetime(2024, 6, 10, 11, 0, tzinfo=ET),
        )
        assert not overlaps(_slot(datetime(2024, 6, 10, 9, 30, tzinfo=ET)), busy)
        assert not overlaps(_slot(datetime(2024, 6, 10, 11, 0, tzinfo=ET)), busy)
        assert overlaps(_slot(datetime(2024, 6, 10, 10, 30, tzinfo=ET)), busy)
        assert overlaps(_slot(datetime(2024, 6, 10, 9, 30, tzinfo=ET), 60), busy)

    def test_all_day_blocks_whole_local_date(self):
        start, end = all_day(MONDAY)
        busy = [BusyInterval(start=start, end=end)]
        assert not is_available(_slot(datetime(2024, 6, 10, 17, 30, tzinfo=ET)), busy, ET)
        assert is_available(_slot(datetime(2024, 6, 11, 9, 0, tzinfo=ET)), busy, ET)
        assert is_available(_slot(datetime(2024, 6, 7, 17, 30, tzinfo=ET)), busy, ET)

    def test_all_day_does_not_leak_into_other_display_zone(self):
        start, end = all_day(MONDAY)
        busy = [BusyInterval(start=start, end=end)]
        # Friday 5:30 PM Eastern is still Friday; displayed in Tokyo it is Saturday.
        friday = datetime(2024, 6, 7, 17, 30, tzinfo=ET).astimezone(ZoneInfo("Asia/Tokyo"))
        assert is_available(_slot(friday), busy, ET)

    def test_multi_day_all_day_event(self):
        start, end = all_day(MONDAY, days=2)
        busy = [BusyInterval(start=start, end=end)]
        assert not is_available(_slot(datetime(2024, 6, 11, 15, 0, tzinfo=ET)), busy, ET)
        assert is_available(_slot(datetime(2024, 6, 12, 9, 0, tzinfo=ET)), busy, ET)


# ── Generation ─────────────────────────────────────────────────


class TestGenerateSlots:
    def test_full_free_day(self, policy):
        slots = generate_slots(_window(MONDAY, 1), policy, [], [30, 60], "America/New_York", now=MONDAY)
        thirty = [s for s in slots if s.duration_minutes == 30]
        sixty = [s for s in slots if s.duration_minutes == 60]
        # 9-12 and 12-18 on half-hour steps
        assert len(thirty) == 6 + 12
        assert len(sixty) == 5 + 11
        assert slots[0].start == datetime(2024, 6, 10, 9, 0, tzinfo=ET)
        assert slots[-1].end == datetime(2024, 6, 10, 18, 0, tzinfo=ET)

    def test_sorted_by_start_then_duration(self, policy):
        slots = generate_slots(_window(MONDAY, 1), policy, [], [60, 30], "America/New_York", now=MONDAY)
        keys = [(s.start, s.duration_minutes) for s in slots]
        assert keys == sorted(keys)
        assert slots[0].duration_minutes == 30

    def test_sixty_minute_slots_stay_inside_a_period(self, policy):
        slots = generate_slots(_window(MONDAY, 1), policy, [], [60], "America/New_York", now=MONDAY)
        starts = {s.start.astimezone(ET).strftime("%H:%M") for s in slots}
        assert "11:30" not in starts
        assert "17:30" not in starts
        assert "17:00" in starts

    def test_durations_match_configuration(self, policy):
        slots = generate_slots(_window(MONDAY, 3), policy, [], [30, 60], "America/New_York", now=MONDAY)
        assert {int((s.end - s.start).total_seconds() // 60) for s in slots} == {30, 60}

    def test_lead_time(self, policy):
        now = datetime(2024, 6, 10, 10, 10, tzinfo=ET)
        slots = generate_slots(_window(now, 1), policy, [], [30], "America/New_York", now=now)
        assert all(s.start >= now + timedelta(minutes=30) for s in slots)
        assert slots[0].start == datetime(2024, 6, 10, 11, 0, tzinfo=ET)

    def test_skips_weekends(self, policy):
        slots = generate_slots(_window(NOW, 7), policy, [], [30], "America/New_York", now=NOW)
        assert slots
        assert all(s.start.astimezone(ET).weekday() < 5 for s in slots)

    def test_timed_busy_interval(self, policy):
        busy = [BusyInterval(
            start=datetime(2024, 6, 10, 10, 0, tzinfo=ET),
            end=datetime(2024, 6, 10, 11, 0, tzinfo=ET),
        )]
        slots = generate_slots(_window(MONDAY, 1), policy, busy, [30, 60], "America/New_York", now=MONDAY)
        assert all(not overlaps(s, busy[0]) for s in slots)
        starts = {s.start.astimezone(ET).strftime("%H:%M") for s in slots if s.duration_minutes == 30}
        assert "09:30" in starts
        assert "11:00" in starts
        assert "10:00" not in starts

    def test_all_day_interval_blocks_the_date(self, policy):
        friday = datetime(2024, 6, 7, 8, 0, tzinfo=ET)
        start, end = all_day(MONDAY)
        busy = [BusyInterval(start=start, end=end)]
        slots = generate_slots(_window(friday, 5), policy, busy, [30], "America/New_York", now=friday)
        dates = {s.start.astimezone(ET).date().isoformat() for s in slots}
        assert "2024-06-07" in dates
        assert "2024-06-10" not in dates
        assert "2024-06-11" in dates

    def test_slots_expressed_in_caller_zone(self, policy):
        slots = generate_slots(_window(MONDAY, 1), policy, [], [30], "America/Los_Angeles", now=MONDAY)
        assert slots[0].start.utcoffset() == timedelta(hours=-7)
        assert slots[0].start.hour == 6
        assert slots[0].start == datetime(2024, 6, 10, 9, 0, tzinfo=ET)

    def test_business_hours_follow_dst(self, policy):
        # US clocks sprang forward on 2024-03-10
        before = datetime(2024, 3, 8, 7, 0, tzinfo=ET)
        after = datetime(2024, 3, 11, 7, 0, tzinfo=ET)
        first_before = generate_slots(_window(before, 1), policy, [], [30], "UTC", now=before)[0]
        first_after = generate_slots(_window(after, 1), policy, [], [30], "UTC", now=after)[0]
        assert first_before.start.hour == 14
        assert first_after.start.hour == 13

    def test_preference_restricts_periods(self, policy):
        slots = generate_slots(
            _window(MONDAY, 1), policy, [], [30], "America/New_York", now=MONDAY,
            preference=TimePreference.AFTERNOON,
        )
        assert min(s.start.astimezone(ET).hour for s in slots) == 12


# ── End to end: requested time around an all-day block ─────────


class TestRequestedTimeAroundAllDayBlock:
    def test_first_two_pm_after_blocked_monday(self, policy):
        start, end = all_day(MONDAY)
        busy = [BusyInterval(start=start, end=end)]
        normalized = normalize(NOW, policy, caller_timezone="America/New_York", requested_time="2:00 PM")
        slots = generate_slots(
            normalized.window, policy, busy, [30, 60], normalized.caller_timezone, now=NOW,
        )
        matched = select_time_matched(slots, *normalized.target, ET)
        assert matched[0].start == datetime(2024, 6, 11, 14, 0, tzinfo=ET)
        assert matched[0].end == datetime(2024, 6, 11, 14, 30, tzinfo=ET)
        assert all(s.start.astimezone(ET).date().isoformat() != "2024-06-10" for s in matched)
