#!/usr/bin/env python3
"""
Event Calendar Module

Parses and formats the time of the next scheduled macroeconomic event the
strangle is traded around. All times are timezone-aware UTC datetimes.

Accepted event formats (case-insensitive):
- "now"                      the current instant
- "none" / "off" / "undefined"   no scheduled event
- "+N"                       N minutes from now (0 <= N <= 1440)
- "HH:MM"                    today at HH:MM UTC, future only
- ISO datetime               e.g. "2026-10-18T12:30:00Z", future only

Times that are already past resolve to None (no event) rather than an
immediate trade.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

import pytz

from shared.errors import ValidationError

logger = logging.getLogger(__name__)

UTC = pytz.UTC

MAX_EVENT_LEAD_MINUTES = 1440
NO_EVENT_WORDS = ("none", "off", "undefined")

_TIME_OF_DAY = re.compile(r"^(\d{1,2}):(\d{2})$")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)


def parse_event(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse an event time into an aware UTC datetime.

    Args:
        text: Event time (see module docstring)
        now: Reference instant (defaults to utc_now())

    Returns:
        datetime of the event, or None when no event is scheduled or the
        given time is already past.

    Raises:
        ValidationError: field="event" for malformed input
    """
    if not text or not isinstance(text, str) or not text.strip():
        raise ValidationError("Event text must be a non-empty string", "event")

    now = _to_utc(now) if now is not None else utc_now()
    value = text.strip()
    keyword = value.lower()

    if keyword == "now":
        return now
    if keyword in NO_EVENT_WORDS:
        return None

    if value.startswith("+"):
        try:
            minutes = int(value[1:])
        except ValueError:
            raise ValidationError(
                "Invalid minutes format. Use +N where N is a positive number", "event"
            )
        if minutes < 0:
            raise ValidationError(
                "Invalid minutes format. Use +N where N is a positive number", "event"
            )
        if minutes > MAX_EVENT_LEAD_MINUTES:
            raise ValidationError(
                "Event cannot be scheduled more than 24 hours in advance", "event"
            )
        return now + timedelta(minutes=minutes)

    if len(value) < 10:
        match = _TIME_OF_DAY.match(value)
        if not match:
            raise ValidationError("Invalid time format. Use HH:MM format", "event")
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise ValidationError("Invalid time format. Use HH:MM format", "event")
        event = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        return event if event > now else None

    iso = value.upper()
    if iso.endswith("Z"):
        iso = iso[:-1] + "+00:00"
    try:
        event = _to_utc(datetime.fromisoformat(iso))
    except ValueError:
        raise ValidationError("Invalid datetime format", "event")
    return event if event > now else None


def format_event(event: Optional[datetime]) -> str:
    """ISO representation of an event, "undefined" when none."""
    if event is None:
        return "undefined"
    return _to_utc(event).isoformat()


def minutes_until(event: datetime, now: Optional[datetime] = None) -> int:
    """Whole minutes (floored) from now until `event`."""
    now = _to_utc(now) if now is not None else utc_now()
    return int((_to_utc(event) - now).total_seconds() // 60)


def countdown_message(minutes: int) -> Optional[str]:
    """
    Countdown line for the given remaining minutes, or None when nothing
    should be logged: hourly above an hour, every ten minutes above ten,
    then every minute.
    """
    if minutes >= 60:
        if minutes % 60 == 0:
            return f"{minutes // 60} hour(s) before trading."
    elif minutes >= 10:
        if minutes % 10 == 0:
            return f"{minutes} mins before trading."
    elif minutes > 0:
        return f"{minutes} min{'s' if minutes > 1 else ''} before trading."
    return None
