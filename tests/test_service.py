"""Tests for AvailabilityService: speech responses and booking."""

from datetime import date, datetime, timedelta, timezone

import pytest

from availability.calendar_providers.base import BusyPeriod, CalendarFeed
from availability.config import Settings
from availability.errors import (
    CalendarNotConnectedError,
    ClientNotFoundError,
    SlotTakenError,
)
from availability.models.appointment import AppointmentSource
from availability.models.booking import AvailabilityRequest, BookingRequest
from availability.models.policy import ClientPolicy, DateRange
from availability.service import AvailabilityService, format_list_for_speech
from availability.stores import InMemoryAppointmentStore, InMemoryPolicyDirectory
from availability.timeutil import zoned

TORONTO = "America/Toronto"
# Monday Jan 27 2025, 10:00 in Toronto
NOW = datetime(2025, 1, 27, 15, 0, tzinfo=timezone.utc)


class FakeFeed(CalendarFeed):
    def __init__(self, busy=None):
        self.busy = list(busy or [])
        self.busy_queries = []
        self.created = []

    async def query_busy(self, calendar_id, start, end):
        self.busy_queries.append((calendar_id, start, end))
        return list(self.busy)

    async def list_changed_events(self, calendar_id, sync_token=None, since=None, page_token=None):
        raise NotImplementedError

    async def subscribe(self, calendar_id, channel_id, address):
        raise NotImplementedError

    async def unsubscribe(self, channel_id, resource_id):
        raise NotImplementedError

    async def create_event(self, calendar_id, event):
        self.created.append((calendar_id, event))
        return {"event_id": f"evt-{len(self.created)}", "html_link": "https://cal/evt"}


def _busy(day, hour, minute=0, minutes=30):
    start = zoned(2025, 1, day, hour, minute, zone=TORONTO)
    return BusyPeriod(start=start, end=start + timedelta(minutes=minutes))


def _service(feed=None, policy=None, campaigns=None):
    policy = policy or ClientPolicy(client_id="client-1", zone=TORONTO)
    policies = InMemoryPolicyDirectory([policy], campaigns)
    appointments = InMemoryAppointmentStore()
    service = AvailabilityService(
        policies,
        appointments,
        feed or FakeFeed(),
        config=Settings(_env_file=None),
        clock=lambda: NOW,
    )
    return service, appointments


def _ask(text, **fields):
    return AvailabilityRequest(client_id="client-1", requested_time_string=text, **fields)


class TestFormatListForSpeech:
    def test_lists(self):
        assert format_list_for_speech([]) == ""
        assert format_list_for_speech(["2:00 PM"]) == "2:00 PM"
        assert format_list_for_speech(["2:00 PM", "3:00 PM"]) == "2:00 PM and 3:00 PM"
        assert format_list_for_speech(["10:00 AM", "2:00 PM", "4:00 PM"]) == (
            "10:00 AM, 2:00 PM, and 4:00 PM"
        )


# ── Availability checks ────────────────────────────────────────────


class TestCheckAvailability:
    async def test_requested_time_free(self):
        service, _ = _service()
        result = await service.check_availability(_ask("Tuesday at 2pm"))

        assert result.available
        assert result.response == "2:00 PM is available."
        assert result.requested_time == "Tuesday, Jan 28, 2:00 PM"
        assert result.alternatives is None

    async def test_requested_time_busy_offers_alternatives(self):
        service, _ = _service(FakeFeed([_busy(28, 14)]))
        result = await service.check_availability(_ask("Tuesday at 2pm"))

        assert not result.available
        assert result.response == (
            "2:00 PM isn't available, but 2:30 PM, 3:00 PM, and 3:30 PM are."
        )
        assert result.alternatives == [
            "Tuesday, Jan 28, 2:30 PM",
            "Tuesday, Jan 28, 3:00 PM",
            "Tuesday, Jan 28, 3:30 PM",
        ]

    async def test_requested_time_blocked_by_holiday(self):
        policy = ClientPolicy(client_id="client-1", zone=TORONTO, holidays=["01-28"])
        service, _ = _service(policy=policy)
        result = await service.check_availability(_ask("Tuesday at 2pm"))

        assert not result.available
        assert result.response == (
            "That time isn't available, but 9:00 AM, 9:30 AM, and 10:00 AM are."
        )
        assert result.alternatives[0] == "Wednesday, Jan 29, 9:00 AM"

    async def test_time_already_passed(self):
        service, _ = _service()
        result = await service.check_availability(_ask("today at 9am"))

        assert not result.available
        assert result.response == (
            "That time has already passed, but 10:00 AM, 10:30 AM, and 11:00 AM are open."
        )

    async def test_range_returns_first_free_slot(self):
        service, _ = _service(FakeFeed([_busy(27, 16)]))
        result = await service.check_availability(_ask("after 4pm"))

        assert result.available
        assert result.response == "4:30 PM is available."
        assert result.requested_time == "Monday, Jan 27, 4:30 PM"
        assert result.alternatives == ["Monday, Jan 27, 5:00 PM", "Monday, Jan 27, 5:30 PM"]

    async def test_range_fully_booked(self):
        service, _ = _service(FakeFeed([_busy(27, 16, minutes=240)]))
        result = await service.check_availability(_ask("after 4pm"))

        assert not result.available
        assert result.error == "No availability in requested time range"

    async def test_day_without_time_suggests_slots(self):
        service, _ = _service()
        result = await service.check_availability(_ask("Wednesday"))

        assert result.needs_time_specified
        assert not result.available
        assert result.requested_time == "Wednesday, Jan 29"
        assert result.suggested_slots[0] == "Wednesday, Jan 29, 9:00 AM"
        assert result.response == (
            "I have 9:00 AM, 9:30 AM, and 10:00 AM available. What time works best for you?"
        )

    async def test_no_time_suggests_today(self):
        service, _ = _service()
        result = await service.check_availability(_ask(None))

        assert result.available
        assert result.response == "I have 10:00 AM, 10:30 AM, and 11:00 AM available."

    async def test_parse_failure_asks_again(self):
        service, _ = _service()
        result = await service.check_availability(_ask("sometime next week"))

        assert not result.available
        assert result.response == "I didn't quite catch that time. Could you say it again?"
        assert result.requested_time == "sometime next week"
        assert result.error

    async def test_campaign_timezone_used_for_lead(self):
        # 2:00 PM in Vancouver is 5:00 PM in Toronto
        feed = FakeFeed([_busy(28, 17)])
        service, _ = _service(feed, campaigns={"camp-west": "America/Vancouver"})
        result = await service.check_availability(_ask("Tuesday at 2pm", campaign_id="camp-west"))

        assert not result.available
        assert result.alternatives[0] == "Tuesday, Jan 28, 2:30 PM"

    async def test_unknown_client(self):
        service, _ = _service()
        with pytest.raises(ClientNotFoundError):
            await service.check_availability(
                AvailabilityRequest(client_id="nobody", requested_time_string="3pm")
            )

    async def test_vacation_today(self):
        policy = ClientPolicy(
            client_id="client-1",
            zone=TORONTO,
            vacations=[DateRange(start=date(2025, 1, 27), end=date(2025, 1, 31))],
        )
        service, _ = _service(policy=policy)
        result = await service.check_availability(_ask("Tuesday at 2pm"))

        assert not result.available
        assert result.error == "Broker is on vacation"

    async def test_calendar_not_connected(self):
        policy = ClientPolicy(client_id="client-1", zone=TORONTO, calendar_connected=False)
        service, _ = _service(policy=policy)
        with pytest.raises(CalendarNotConnectedError):
            await service.check_availability(_ask("Tuesday at 2pm"))


# ── Booking ────────────────────────────────────────────────────────


def _booking(start, **fields):
    return BookingRequest(
        client_id="client-1",
        start_time=start,
        caller_name="Sam Lee",
        caller_email="sam@example.com",
        **fields,
    )


class TestBook:
    async def test_books_free_slot(self):
        feed = FakeFeed()
        service, appointments = _service(feed)
        start = zoned(2025, 1, 28, 14, zone=TORONTO)

        result = await service.book(_booking(start))

        assert result.confirmed
        assert result.event_id == "evt-1"
        assert result.summary == "Meeting with Sam Lee"
        assert result.end_time - result.start_time == timedelta(minutes=30)
        calendar_id, event = feed.created[0]
        assert calendar_id == "primary"
        assert event.attendees == ["sam@example.com"]

        [appointment] = appointments.appointments.values()
        assert appointment.source == AppointmentSource.VOICE
        assert appointment.external_event_id == "evt-1"

    async def test_slot_taken_since_it_was_offered(self):
        feed = FakeFeed([_busy(28, 14)])
        service, appointments = _service(feed)

        with pytest.raises(SlotTakenError) as exc_info:
            await service.book(_booking(zoned(2025, 1, 28, 14, zone=TORONTO)))

        assert exc_info.value.alternatives[0] == "Tuesday, Jan 28, 2:30 PM"
        assert feed.created == []
        assert appointments.appointments == {}

    async def test_slot_in_the_past(self):
        service, _ = _service()
        with pytest.raises(SlotTakenError) as exc_info:
            await service.book(_booking(zoned(2025, 1, 27, 9, zone=TORONTO)))
        assert exc_info.value.alternatives[0] == "Monday, Jan 27, 10:00 AM"

    async def test_custom_duration(self):
        service, _ = _service()
        start = zoned(2025, 1, 28, 14, zone=TORONTO)
        result = await service.book(_booking(start, duration_minutes=60))
        assert result.end_time - result.start_time == timedelta(minutes=60)
