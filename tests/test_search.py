"""Tests for SlotSearchEngine."""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from availability.calendar_providers.base import BusyPeriod
from availability.models.policy import BusinessHoursRule, ClientPolicy, DateRange
from availability.rules import BlockReason
from availability.search import SlotSearchEngine, overlaps
from availability.timeutil import wall_clock, zoned

TORONTO = "America/Toronto"


def _t(day, hour, minute=0):
    """Toronto wall clock in late January 2025."""
    return zoned(2025, 1, day, hour, minute, zone=TORONTO)


def _clock(slot):
    local = wall_clock(slot.start, TORONTO)
    return local.day, local.hour, local.minute


@pytest.fixture
def policy():
    return ClientPolicy(client_id="client-1", zone=TORONTO)


@pytest.fixture
def engine():
    return SlotSearchEngine()


# ── Overlap law ────────────────────────────────────────────────────


class TestOverlap:
    def test_overlapping(self):
        busy = BusyPeriod(start=_t(27, 14), end=_t(27, 14, 30))
        assert overlaps(_t(27, 14), _t(27, 14, 30), busy)
        assert overlaps(_t(27, 13, 45), _t(27, 14, 15), busy)

    def test_abutting_is_not_overlapping(self):
        busy = BusyPeriod(start=_t(27, 14), end=_t(27, 14, 30))
        assert not overlaps(_t(27, 14, 30), _t(27, 15), busy)
        assert not overlaps(_t(27, 13, 30), _t(27, 14), busy)

    def test_mixed_offsets(self):
        busy = BusyPeriod(
            start=datetime(2025, 1, 27, 19, 0, tzinfo=timezone.utc),
            end=datetime(2025, 1, 27, 19, 30, tzinfo=timezone.utc),
        )
        assert overlaps(_t(27, 14), _t(27, 14, 30), busy)


# ── check_slot ─────────────────────────────────────────────────────


class TestCheckSlot:
    def test_busy_slot_and_abutting_alternative(self, engine, policy):
        busy = [BusyPeriod(start=_t(27, 14), end=_t(27, 14, 30))]

        taken = engine.check_slot(_t(27, 14), 30, busy, policy, TORONTO)
        assert not taken.available
        assert taken.busy
        assert taken.reason is None
        assert [_clock(s) for s in taken.alternatives] == [
            (27, 14, 30), (27, 15, 0), (27, 15, 30),
        ]

        free = engine.check_slot(_t(27, 14, 30), 30, busy, policy, TORONTO)
        assert free.available
        assert free.alternatives == []

    def test_blocked_slot_reports_reason(self, engine):
        policy = ClientPolicy(client_id="client-1", zone=TORONTO, holidays=["01-27"])
        result = engine.check_slot(_t(27, 14), 30, [], policy, TORONTO)
        assert not result.available
        assert result.reason == BlockReason.HOLIDAY
        assert _clock(result.alternatives[0]) == (28, 9, 0)

    def test_slot_rendered_in_requested_zone(self, engine, policy):
        result = engine.check_slot(_t(27, 14), 45, [], policy, "America/Vancouver")
        assert str(result.slot.start.tzinfo) == "America/Vancouver"
        assert result.slot.start.hour == 11
        assert result.slot.end - result.slot.start == timedelta(minutes=45)


# ── scan_range ─────────────────────────────────────────────────────


class TestScanRange:
    def test_bounded_and_never_before_anchor(self, engine, policy):
        anchor = _t(27, 10, 10)
        slots = engine.scan_range(anchor, _t(27, 20), 30, [], policy, TORONTO, max_alternatives=5)
        assert len(slots) == 5
        assert all(s.start >= anchor for s in slots)
        assert all(s.start < _t(27, 20) for s in slots)
        assert slots == sorted(slots, key=lambda s: s.start)

    def test_skips_busy_periods(self, engine, policy):
        busy = [BusyPeriod(start=_t(27, 10), end=_t(27, 11))]
        slots = engine.scan_range(_t(27, 10), _t(27, 12), 30, busy, policy, TORONTO)
        assert [_clock(s) for s in slots] == [(27, 11, 0), (27, 11, 30)]

    def test_empty_when_range_fully_busy(self, engine, policy):
        busy = [BusyPeriod(start=_t(27, 9), end=_t(27, 20))]
        assert engine.scan_range(_t(27, 9), _t(27, 20), 30, busy, policy, TORONTO) == []

    def test_jumps_to_next_window_opening(self, engine, policy):
        slots = engine.scan_range(_t(27, 21), None, 30, [], policy, TORONTO)
        assert [_clock(s) for s in slots] == [(28, 9, 0), (28, 9, 30), (28, 10, 0)]

    def test_last_start_inside_window(self, engine, policy):
        slots = engine.scan_range(_t(27, 19, 30), None, 30, [], policy, TORONTO)
        assert [_clock(s) for s in slots] == [(27, 19, 30), (28, 9, 0), (28, 9, 30)]

    def test_horizon_limits_search(self, policy):
        engine = SlotSearchEngine(horizon=timedelta(hours=2))
        slots = engine.scan_range(_t(27, 10), None, 30, [], policy, TORONTO, max_alternatives=10)
        assert [_clock(s) for s in slots] == [
            (27, 10, 0), (27, 10, 30), (27, 11, 0), (27, 11, 30),
        ]

    def test_weekend_skipped_by_business_hours(self, engine):
        # Friday Jan 31 2025, open Monday to Friday 9-5
        policy = ClientPolicy(
            client_id="client-1",
            zone=TORONTO,
            business_hours=[BusinessHoursRule(days={1, 2, 3, 4, 5}, start="09:00", end="17:00")],
        )
        slots = engine.scan_range(_t(31, 16, 30), None, 30, [], policy, TORONTO)
        starts = [wall_clock(s.start, TORONTO) for s in slots]
        assert [(d.month, d.day, d.hour, d.minute) for d in starts] == [
            (1, 31, 16, 30), (2, 3, 9, 0), (2, 3, 9, 30),
        ]

    def test_every_candidate_day_checked_against_vacation(self, engine):
        policy = ClientPolicy(
            client_id="client-1",
            zone=TORONTO,
            vacations=[DateRange(start=date(2025, 1, 28), end=date(2025, 1, 28))],
        )
        slots = engine.scan_range(_t(27, 19, 30), None, 30, [], policy, TORONTO)
        assert [_clock(s) for s in slots] == [(27, 19, 30), (29, 9, 0), (29, 9, 30)]

    def test_max_steps_caps_the_loop(self, caplog):
        engine = SlotSearchEngine(max_steps=5)
        policy = ClientPolicy(
            client_id="client-1",
            zone=TORONTO,
            vacations=[DateRange(start=date(2025, 1, 1), end=date(2025, 12, 31))],
        )
        with caplog.at_level(logging.WARNING, logger="availability.search"):
            slots = engine.scan_range(_t(27, 10), None, 30, [], policy, TORONTO)
        assert slots == []
        assert "stopped after 5 steps" in caplog.text

    def test_invalid_engine_settings(self):
        with pytest.raises(ValueError):
            SlotSearchEngine(increment_minutes=0)
        with pytest.raises(ValueError):
            SlotSearchEngine(max_steps=0)
