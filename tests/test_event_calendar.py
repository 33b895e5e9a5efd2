"""
Unit tests for event time parsing and countdown messages.

Run tests with: python -m pytest tests/test_event_calendar.py -v
"""

import os
import sys
from datetime import datetime, timedelta

import pytest
import pytz

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.errors import ValidationError
from shared.event_calendar import countdown_message, format_event, minutes_until, parse_event

NOW = pytz.UTC.localize(datetime(2026, 3, 6, 12, 0, 0))


class TestParseEvent:

    def test_now(self):
        assert parse_event("now", NOW) == NOW

    @pytest.mark.parametrize("text", ["none", "off", "undefined", "NONE"])
    def test_no_event(self, text):
        assert parse_event(text, NOW) is None

    def test_relative_minutes(self):
        assert parse_event("+30", NOW) == NOW + timedelta(minutes=30)
        assert parse_event("+0", NOW) == NOW
        assert parse_event("+1440", NOW) == NOW + timedelta(days=1)

    def test_relative_minutes_limit(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event("+1441", NOW)
        assert "24 hours" in str(exc_info.value)
        assert exc_info.value.field == "event"

    @pytest.mark.parametrize("text", ["+abc", "+-5", "+"])
    def test_bad_relative_minutes(self, text):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(text, NOW)
        assert "Invalid minutes format" in str(exc_info.value)

    def test_time_of_day_later_today(self):
        assert parse_event("13:30", NOW) == NOW.replace(hour=13, minute=30)

    def test_time_of_day_already_past(self):
        assert parse_event("11:00", NOW) is None

    @pytest.mark.parametrize("text", ["25:00", "12:61", "noon", "1330"])
    def test_bad_time_of_day(self, text):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(text, NOW)
        assert "HH:MM" in str(exc_info.value)

    def test_iso_datetime(self):
        assert parse_event("2026-03-06T13:30:00Z", NOW) == NOW.replace(hour=13, minute=30)

    def test_iso_datetime_with_offset_is_converted_to_utc(self):
        assert parse_event("2026-03-06T14:30:00+01:00", NOW) == NOW.replace(hour=13, minute=30)

    def test_iso_datetime_in_the_past(self):
        assert parse_event("2026-03-05T13:30:00Z", NOW) is None

    def test_bad_iso_datetime(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event("next friday at noon", NOW)
        assert str(exc_info.value) == "Invalid datetime format"

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_text(self, text):
        with pytest.raises(ValidationError):
            parse_event(text, NOW)


class TestFormatting:

    def test_format_event(self):
        assert format_event(None) == "undefined"
        assert format_event(NOW) == "2026-03-06T12:00:00+00:00"

    def test_minutes_until_is_floored(self):
        assert minutes_until(NOW + timedelta(minutes=9, seconds=59), NOW) == 9
        assert minutes_until(NOW - timedelta(seconds=30), NOW) == -1


class TestCountdownMessage:

    @pytest.mark.parametrize("minutes,expected", [
        (180, "3 hour(s) before trading."),
        (60, "1 hour(s) before trading."),
        (61, None),
        (50, "50 mins before trading."),
        (10, "10 mins before trading."),
        (15, None),
        (9, "9 mins before trading."),
        (1, "1 min before trading."),
        (0, None),
    ])
    def test_cadence(self, minutes, expected):
        assert countdown_message(minutes) == expected
