"""Tests for zone-aware instant helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from availability.timeutil import (
    add_minutes,
    at_local_time,
    format_clock,
    format_human,
    parse_rfc3339,
    require_aware,
    round_up,
    to_rfc3339,
    wall_clock,
    zoned,
)

NY = "America/New_York"


# ── Construction and DST ───────────────────────────────────────────


class TestZoned:
    def test_offset_follows_dst(self):
        winter = zoned(2025, 1, 28, 14, zone=NY)
        summer = zoned(2025, 7, 28, 14, zone=NY)
        assert winter.utcoffset() == timedelta(hours=-5)
        assert summer.utcoffset() == timedelta(hours=-4)

    def test_spring_forward_gap_moves_forward(self):
        instant = zoned(2025, 3, 9, 2, 30, zone=NY)
        assert (instant.hour, instant.minute) == (3, 30)
        assert instant.utcoffset() == timedelta(hours=-4)

    def test_round_trip_across_dst(self):
        """Wall clock -> instant -> wall clock is stable on both sides of the change."""
        for day in (date(2025, 3, 8), date(2025, 3, 10), date(2025, 11, 1), date(2025, 11, 3)):
            instant = at_local_time(day, 10, 15, zone=NY)
            local = wall_clock(instant.astimezone(timezone.utc), NY)
            assert (local.date(), local.hour, local.minute) == (day, 10, 15)

    def test_hour_24_is_next_midnight(self):
        instant = at_local_time(date(2025, 1, 28), 24, zone=NY)
        assert wall_clock(instant, NY) == zoned(2025, 1, 29, zone=NY)


class TestArithmetic:
    def test_add_minutes_is_absolute_across_spring_forward(self):
        start = zoned(2025, 3, 9, 1, 30, zone=NY)
        later = add_minutes(start, 60)
        assert (later.hour, later.minute) == (3, 30)
        assert later.astimezone(timezone.utc) - start.astimezone(timezone.utc) == timedelta(minutes=60)

    def test_round_up_to_increment(self):
        instant = datetime(2025, 1, 27, 15, 7, 30, tzinfo=timezone.utc)
        assert round_up(instant, 30) == datetime(2025, 1, 27, 15, 30, tzinfo=timezone.utc)

    def test_round_up_keeps_exact_boundary(self):
        instant = datetime(2025, 1, 27, 15, 30, tzinfo=timezone.utc)
        assert round_up(instant, 30) == instant

    def test_round_up_on_client_wall_clock(self):
        # Kathmandu is UTC+5:45, so UTC half hours are :15 and :45 locally
        instant = zoned(2025, 1, 27, 9, 46, zone="Asia/Kathmandu").astimezone(timezone.utc)
        rounded = round_up(instant, 30, zone="Asia/Kathmandu")
        local = wall_clock(rounded, "Asia/Kathmandu")
        assert (local.hour, local.minute) == (10, 0)
        assert rounded.tzinfo is timezone.utc

    def test_round_up_in_zone_keeps_local_boundary(self):
        instant = zoned(2025, 1, 27, 10, 30, zone="Asia/Kolkata").astimezone(timezone.utc)
        assert round_up(instant, 30, zone="Asia/Kolkata") == instant

    def test_require_aware_rejects_naive(self):
        with pytest.raises(ValueError):
            require_aware(datetime(2025, 1, 27, 10, 0))


# ── RFC 3339 and speech formatting ─────────────────────────────────


class TestFormatting:
    def test_parse_rfc3339_zulu(self):
        parsed = parse_rfc3339("2025-01-28T19:00:00Z")
        assert parsed == datetime(2025, 1, 28, 19, 0, tzinfo=timezone.utc)

    def test_to_rfc3339_in_zone(self):
        instant = datetime(2025, 1, 28, 19, 0, tzinfo=timezone.utc)
        assert to_rfc3339(instant, NY) == "2025-01-28T14:00:00-05:00"

    def test_format_clock(self):
        assert format_clock(0) == "12:00 AM"
        assert format_clock(12) == "12:00 PM"
        assert format_clock(14, 30) == "2:30 PM"

    def test_format_human(self):
        instant = datetime(2025, 1, 28, 19, 0, tzinfo=timezone.utc)
        assert format_human(instant, NY) == "Tuesday, Jan 28, 2:00 PM"
