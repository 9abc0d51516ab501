"""Turn a caller's intent into a concrete search window.

Recognised hints are deliberately narrow:

* a clock time, ``H:MM`` with optional AM/PM (``"2:00 PM"``, ``"15:00"``),
  or ``H AM/PM`` (``"3pm"``)
* an ISO 8601 instant (``"2024-06-11T14:00:00-04:00"``)
* "next week" phrasing
* a ``morning`` / ``afternoon`` preference

Clock times are interpreted in the business timezone; what is searched for
is that time of day across the lookahead window, not a specific date.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking_engine.models.slots import BusinessHoursPolicy, SearchWindow, TimePreference

log = logging.getLogger("booking_engine.availability.window")

SPECIFIC_TIME_LOOKAHEAD_DAYS = 14
MAX_PLAUSIBLE_DAYS_AHEAD = 30
MIN_DAYS = 1
MAX_DAYS = 7

_CLOCK_RE = re.compile(
    r"\b(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<period>[ap]\.?m\.?)?(?![\w:])",
    re.IGNORECASE,
)
_BARE_HOUR_RE = re.compile(r"\b(?P<hour>\d{1,2})\s*(?P<period>[ap]\.?m\.?)(?!\w)", re.IGNORECASE)
_NEXT_WEEK_RE = re.compile(r"\bnext\s+week\b", re.IGNORECASE)


@dataclass(frozen=True)
class NormalizedWindow:
    window: SearchWindow
    caller_timezone: str
    preference: TimePreference = TimePreference.ANY
    target: tuple[int, int] | None = None
    hour_range: tuple[int, int] | None = None
    # none | clock | instant | instant_out_of_range | unparsed
    requested_time_status: str = "none"
    next_week: bool = False


def _to_24h(hour: int, period: str | None) -> int | None:
    if period:
        if not 1 <= hour <= 12:
            return None
        pm = period.lower().startswith("p")
        if pm and hour != 12:
            return hour + 12
        if not pm and hour == 12:
            return 0
        return hour
    return hour if 0 <= hour <= 23 else None


def parse_clock_time(text: str) -> tuple[int, int] | None:
    """Extract (hour, minute) from ``"2:00 PM"``-style text, or None."""
    match = _CLOCK_RE.search(text)
    if match:
        minute = int(match.group("minute"))
        hour = _to_24h(int(match.group("hour")), match.group("period"))
        if hour is None or minute > 59:
            return None
        return hour, minute

    match = _BARE_HOUR_RE.search(text)
    if match:
        hour = _to_24h(int(match.group("hour")), match.group("period"))
        if hour is not None:
            return hour, 0
    return None


def parse_instant(text: str, default_tz: ZoneInfo) -> datetime | None:
    """Parse an ISO 8601 date-time; naive values take ``default_tz``."""
    candidate = text.strip()
    if not re.match(r"^\d{4}-\d{2}-\d{2}[T ]\d", candidate):
        return None
    try:
        value = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=default_tz)
    return value


def parse_preference(value: str | TimePreference | None) -> TimePreference:
    if isinstance(value, TimePreference):
        return value
    text = (value or "").lower()
    if "morning" in text:
        return TimePreference.MORNING
    if "afternoon" in text:
        return TimePreference.AFTERNOON
    return TimePreference.ANY


def resolve_timezone(name: str | None, fallback: str) -> str:
    """Return ``name`` if it is a known IANA zone, otherwise ``fallback``."""
    if not name:
        return fallback
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("Unknown caller timezone %r, using %s", name, fallback)
        return fallback
    return name


def clamp_days(days: int | None, default: int = MAX_DAYS) -> int:
    try:
        value = int(days) if days is not None else default
    except (TypeError, ValueError):
        value = default
    return max(MIN_DAYS, min(MAX_DAYS, value))


def normalize(
    now: datetime,
    policy: BusinessHoursPolicy,
    caller_timezone: str | None = None,
    requested_time: str | None = None,
    preference: str | TimePreference | None = None,
    days: int | None = None,
    default_days: int = MAX_DAYS,
) -> NormalizedWindow:
    """Compute the search window, time-of-day target and hour filter."""
    tz_name = resolve_timezone(caller_timezone, policy.timezone)
    business_tz = policy.tz
    pref = parse_preference(preference)
    lookahead = clamp_days(days, default_days)

    target: tuple[int, int] | None = None
    status = "none"
    text = (requested_time or "").strip()

    if text:
        instant = parse_instant(text, ZoneInfo(tz_name))
        if instant is not None:
            local = instant.astimezone(business_tz)
            target = (local.hour, local.minute)
            if instant > now + timedelta(days=MAX_PLAUSIBLE_DAYS_AHEAD):
                # Most likely a hallucinated date from the tool caller:
                # keep the time of day, search this week.
                log.info(
                    "Requested instant %s is more than %d days out, searching this week",
                    instant.isoformat(), MAX_PLAUSIBLE_DAYS_AHEAD,
                )
                status = "instant_out_of_range"
            else:
                status = "instant"
                lookahead = SPECIFIC_TIME_LOOKAHEAD_DAYS
        else:
            clock = parse_clock_time(text)
            if clock is not None:
                target = clock
                status = "clock"
                lookahead = SPECIFIC_TIME_LOOKAHEAD_DAYS
            elif not _NEXT_WEEK_RE.search(text):
                log.info("Could not parse requested time %r, using earliest slot", text)
                status = "unparsed"

    next_week = bool(
        _NEXT_WEEK_RE.search(text)
        or (isinstance(preference, str) and _NEXT_WEEK_RE.search(preference))
    )
    if next_week:
        window = SearchWindow(
            start=now + timedelta(days=7),
            end=now + timedelta(days=14),
            lookahead_days=7,
        )
    else:
        window = SearchWindow(
            start=now,
            end=now + timedelta(days=lookahead),
            lookahead_days=lookahead,
        )

    log.debug(
        "Normalized window %s -> %s (target=%s, preference=%s, status=%s)",
        window.start.isoformat(), window.end.isoformat(), target, pref.value, status,
    )
    return NormalizedWindow(
        window=window,
        caller_timezone=tz_name,
        preference=pref,
        target=target,
        hour_range=policy.hour_range(pref),
        requested_time_status=status,
        next_week=next_week,
    )
