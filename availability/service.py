"""Availability and booking orchestration for the voice agent webhooks.

Composes the parser, the blocking rules and the slot search with the
client's policy and the calendar feed, and phrases the outcome as a short
sentence the voice agent can speak.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from availability.calendar_providers.base import (
    BusyPeriod,
    CalendarEvent,
    CalendarFeed,
    TimeSlot,
)
from availability.config import Settings, settings as default_settings
from availability.errors import (
    CalendarNotConnectedError,
    ClientNotFoundError,
    SlotTakenError,
)
from availability.models.appointment import Appointment, AppointmentSource
from availability.models.booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
)
from availability.models.policy import ClientPolicy, PolicySettings, SettingsUpdate
from availability.parser import OpenRange, ParseFailure, TimeExpressionParser
from availability.rules import AvailabilityRules, BlockReason
from availability.search import SlotSearchEngine
from availability.stores import AppointmentStore, PolicyDirectory, redact_pii
from availability.sync import KeyedLocks
from availability.timeutil import (
    add_minutes,
    at_local_time,
    format_human,
    format_time,
    require_aware,
    round_up,
    start_of_day,
    wall_clock,
)

log = logging.getLogger("availability.service")


def format_list_for_speech(items: list[str]) -> str:
    """``["10:00 AM", "2:00 PM", "4:00 PM"]`` -> ``10:00 AM, 2:00 PM, and 4:00 PM``."""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityService:
    """Answer "is this time free?" and book confirmed slots."""

    def __init__(
        self,
        policies: PolicyDirectory,
        appointments: AppointmentStore,
        feed: CalendarFeed,
        config: Settings = default_settings,
        parser: Optional[TimeExpressionParser] = None,
        engine: Optional[SlotSearchEngine] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._policies = policies
        self._appointments = appointments
        self._feed = feed
        self._config = config
        self._parser = parser or TimeExpressionParser(
            day_start_hour=config.business_day_start_hour,
            day_end_hour=config.business_day_end_hour,
        )
        self._engine = engine or SlotSearchEngine(
            rules=AvailabilityRules(),
            increment_minutes=config.slot_increment_minutes,
            horizon=timedelta(days=config.search_horizon_days),
            max_steps=config.search_max_steps,
            day_start_hour=config.business_day_start_hour,
            day_end_hour=config.business_day_end_hour,
        )
        # Shared with the reconciler so a booking and an import of the same
        # event never interleave.
        self._locks = locks or KeyedLocks()
        self._clock = clock

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResponse:
        policy = await self._require_policy(request.client_id)
        now = self._clock()

        if self._engine.rules.evaluate(now, policy).reason == BlockReason.VACATION:
            return AvailabilityResponse(
                response=(
                    "I'm sorry, we're currently unavailable. Can I take your number "
                    "and have someone call you back when we return?"
                ),
                available=False,
                error="Broker is on vacation",
            )

        if not policy.calendar_connected:
            raise CalendarNotConnectedError(
                f"Client {policy.client_id} has not connected a calendar"
            )

        lead_zone = await self._policies.get_lead_timezone(request.campaign_id, policy.zone)
        duration = policy.meeting_duration or self._config.default_meeting_minutes
        text = (request.requested_time_string or "").strip()

        if not text:
            return await self._suggest_today(policy, lead_zone, duration, now)

        result = self._parser.parse(text, lead_zone, now, duration)

        if isinstance(result, ParseFailure):
            return AvailabilityResponse(
                response="I didn't quite catch that time. Could you say it again?",
                available=False,
                requested_time=text,
                error=result.reason,
            )

        if isinstance(result, OpenRange):
            if result.needs_time_specified:
                return await self._suggest_for_day(result, policy, lead_zone, duration, now)
            return await self._first_in_range(result, policy, lead_zone, duration, now)

        return await self._check_fixed(result.slot.start, policy, lead_zone, duration, now)

    async def _suggest_today(
        self, policy: ClientPolicy, zone: str, duration: int, now: datetime
    ) -> AvailabilityResponse:
        today = wall_clock(now, policy.zone).date()
        end_of_day = at_local_time(today, self._config.business_day_end_hour, zone=policy.zone)
        slots = await self._scan(policy, now, end_of_day, duration, zone, now)

        times = [format_time(s.start, zone) for s in slots]
        return AvailabilityResponse(
            response=(
                f"I have {format_list_for_speech(times)} available."
                if slots
                else "I don't have any availability right now."
            ),
            available=bool(slots),
            suggested_slots=[format_human(s.start, zone) for s in slots],
        )

    async def _suggest_for_day(
        self,
        day: OpenRange,
        policy: ClientPolicy,
        zone: str,
        duration: int,
        now: datetime,
    ) -> AvailabilityResponse:
        slots = await self._scan(policy, day.start, day.end, duration, zone, now)

        times = [format_time(s.start, zone) for s in slots]
        return AvailabilityResponse(
            response=(
                f"I have {format_list_for_speech(times)} available. "
                "What time works best for you?"
                if slots
                else "I don't have availability that day. Would another day work?"
            ),
            available=False,
            requested_time=day.human_readable,
            needs_time_specified=True,
            suggested_slots=[format_human(s.start, zone) for s in slots],
        )

    async def _first_in_range(
        self,
        window: OpenRange,
        policy: ClientPolicy,
        zone: str,
        duration: int,
        now: datetime,
    ) -> AvailabilityResponse:
        slots = await self._scan(policy, window.start, window.end, duration, zone, now)
        if not slots:
            return AvailabilityResponse(
                response=(
                    "I don't have any availability in that time range. "
                    "Would a different time work?"
                ),
                available=False,
                requested_time=window.human_readable,
                error="No availability in requested time range",
            )

        first, rest = slots[0], slots[1:]
        return AvailabilityResponse(
            response=f"{format_time(first.start, zone)} is available.",
            available=True,
            requested_time=format_human(first.start, zone),
            alternatives=[format_human(s.start, zone) for s in rest] or None,
        )

    async def _check_fixed(
        self,
        start: datetime,
        policy: ClientPolicy,
        zone: str,
        duration: int,
        now: datetime,
    ) -> AvailabilityResponse:
        requested = format_human(start, zone)
        spoken = format_time(start, zone)

        if start < now:
            slots = await self._scan(policy, now, None, duration, zone, now)
            alternatives = [format_human(s.start, zone) for s in slots]
            times = [format_time(s.start, zone) for s in slots]
            return AvailabilityResponse(
                response=(
                    f"That time has already passed, but {format_list_for_speech(times)} "
                    f"{'is' if len(times) == 1 else 'are'} open."
                    if times
                    else "That time has already passed. Would a different day work?"
                ),
                available=False,
                requested_time=requested,
                alternatives=alternatives or None,
            )

        busy = await self._busy(policy, start)
        check = self._engine.check_slot(
            start, duration, busy, policy, zone, self._config.max_alternatives
        )
        alternatives = [format_human(s.start, zone) for s in check.alternatives]
        times = [format_time(s.start, zone) for s in check.alternatives]
        verb = "is" if len(times) == 1 else "are"

        if check.available:
            response = f"{spoken} is available."
        elif check.reason is not None:
            log.info(
                "Requested %s blocked for client %s: %s",
                requested, policy.client_id, check.reason.value,
            )
            response = (
                f"That time isn't available, but {format_list_for_speech(times)} {verb}."
                if times
                else "That time isn't available. Would a different day work?"
            )
        else:
            response = (
                f"{spoken} isn't available, but {format_list_for_speech(times)} {verb}."
                if times
                else f"{spoken} isn't available. Would a different time work?"
            )

        return AvailabilityResponse(
            response=response,
            available=check.available,
            requested_time=requested,
            alternatives=alternatives or None,
        )

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book(self, request: BookingRequest) -> BookingResponse:
        """Create the calendar event and a voice appointment for a confirmed slot.

        Raises:
            SlotTakenError: the slot was taken or blocked since it was offered.
        """
        policy = await self._require_policy(request.client_id)
        if not policy.calendar_connected:
            raise CalendarNotConnectedError(
                f"Client {policy.client_id} has not connected a calendar"
            )

        start = require_aware(request.start_time, "start_time")
        duration = request.duration_minutes or policy.meeting_duration
        zone = await self._policies.get_lead_timezone(request.campaign_id, policy.zone)
        now = self._clock()

        async with self._locks.hold((policy.client_id, policy.calendar_id)):
            busy = await self._busy(policy, start)
            check = self._engine.check_slot(
                start, duration, busy, policy, zone, self._config.max_alternatives
            )
            if start < now or not check.available:
                alternatives = check.alternatives
                if start < now:
                    alternatives = await self._scan(policy, now, None, duration, zone, now)
                log.info(
                    "Booking %s for client %s lost: %s",
                    start.isoformat(),
                    policy.client_id,
                    check.reason.value if check.reason else "busy or past",
                )
                raise SlotTakenError(
                    f"{format_human(start, zone)} is no longer available",
                    alternatives=[format_human(s.start, zone) for s in alternatives],
                )

            end = add_minutes(start, duration)
            event = CalendarEvent(
                summary=f"Meeting with {request.caller_name}",
                start=start,
                end=end,
                description=(
                    f"Booked by phone for {request.caller_name} ({request.caller_email})."
                ),
                attendees=[request.caller_email],
            )
            result = await self._feed.create_event(policy.calendar_id, event)

            contact = await self._appointments.find_contact_by_email(
                policy.client_id, request.caller_email
            )
            await self._appointments.create(
                Appointment(
                    client_id=policy.client_id,
                    contact_id=contact.id if contact else None,
                    start_time=start,
                    end_time=end,
                    timezone=zone,
                    external_event_id=result["event_id"],
                    source=AppointmentSource.VOICE,
                    title=event.summary,
                    external_url=result.get("html_link") or None,
                )
            )

        log.info(
            "Booked %s for client %s (%s)",
            start.isoformat(), policy.client_id, redact_pii(request.caller_email),
        )
        return BookingResponse(
            event_id=result["event_id"],
            confirmed=True,
            summary=event.summary,
            start_time=start,
            end_time=end,
            calendar_link=result.get("html_link", ""),
        )

    # ------------------------------------------------------------------
    # Client settings
    # ------------------------------------------------------------------

    async def get_settings(self, client_id: str) -> PolicySettings:
        policy = await self._require_policy(client_id)
        return PolicySettings.from_policy(policy)

    async def update_settings(self, update: SettingsUpdate) -> list[str]:
        """Apply a partial settings update and return the names of the changed fields.

        Raises ``ClientNotFoundError`` for an unknown client and ``ValueError``
        when nothing would change or the merged policy is invalid.
        """
        policy = await self._require_policy(update.client_id)
        fields = update.updated_fields()
        if not fields:
            raise ValueError("No valid fields to update")
        await self._policies.save_policy(update.apply_to(policy))
        log.info("Updated settings for client %s: %s", policy.client_id, ", ".join(fields))
        return fields

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _require_policy(self, client_id: str) -> ClientPolicy:
        policy = await self._policies.get_policy(client_id)
        if policy is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return policy

    async def _busy(self, policy: ClientPolicy, anchor: datetime) -> list[BusyPeriod]:
        """Busy periods covering everything a search from ``anchor`` can reach."""
        window_start = start_of_day(wall_clock(anchor, policy.zone).date(), zone=policy.zone)
        window_end = add_minutes(
            anchor, (self._config.search_horizon_days + 1) * 24 * 60
        )
        return await self._feed.query_busy(policy.calendar_id, window_start, window_end)

    async def _scan(
        self,
        policy: ClientPolicy,
        range_start: datetime,
        range_end: Optional[datetime],
        duration: int,
        zone: str,
        now: datetime,
    ) -> list[TimeSlot]:
        """Scan a range, never offering a slot that starts in the past."""
        earliest = round_up(now, self._config.slot_increment_minutes, zone=policy.zone)
        anchor = max(range_start, earliest)
        if range_end is not None and anchor >= range_end:
            return []
        busy = await self._busy(policy, anchor)
        return self._engine.scan_range(
            anchor,
            range_end,
            duration,
            busy,
            policy,
            zone,
            self._config.max_alternatives,
        )
