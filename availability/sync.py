"""Calendar change reconciliation.

Google POSTs a push notification whenever events change on a watched
calendar.  Each notification triggers one reconciliation pass for the
subscription's (client, calendar) key:

  1. page through events changed since the stored sync token (or, with no
     token yet, since "now" so history is never imported);
  2. turn every new, timed event that has an outside participant into an
     appointment tagged as externally booked;
  3. persist the new sync token once every page has been read.

Passes for the same key are serialized; passes for different keys run
concurrently.  An expired token (HTTP 410) clears the stored token so the
next pass starts fresh from "now".

Push channels expire, so a periodic ``RenewalScheduler`` replaces channels
that are about to lapse: the new channel is created first, then the old one
is stopped best-effort.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional

from availability.calendar_providers.base import CalendarFeed, ExternalEvent, Participant
from availability.errors import SyncTokenInvalidError
from availability.models.appointment import Appointment, AppointmentSource
from availability.models.sync import SyncState, SyncStatus
from availability.stores import (
    AppointmentStore,
    PolicyDirectory,
    SyncStateStore,
    redact_pii,
)

log = logging.getLogger("availability.sync")

SyncKey = tuple[str, str]

# Outcomes recorded per event in a ReconcileReport
CREATED = "created"
SKIP_CANCELLED = "cancelled"
SKIP_ALL_DAY = "all_day"
SKIP_LINKED = "already_linked"
SKIP_INTERNAL = "no_external_participant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def external_participant(event: ExternalEvent) -> Optional[Participant]:
    """First attendee who is not the calendar owner, else an outside creator.

    Booking pages do not always add the guest as an attendee, so the creator
    is the fallback.
    """
    for attendee in event.attendees:
        if attendee.email and not attendee.is_self:
            return attendee
    creator = event.creator
    if creator is not None and creator.email and not creator.is_self:
        return creator
    return None


@dataclass
class ReconcileReport:
    client_id: str
    calendar_id: str
    pages: int = 0
    created: list[str] = field(default_factory=list)  # appointment ids
    outcomes: Counter = field(default_factory=Counter)
    failed: int = 0
    token_reset: bool = False


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[SyncKey, asyncio.Lock] = {}
        self._users: Counter = Counter()

    @contextlib.asynccontextmanager
    async def hold(self, key: SyncKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                self._locks.pop(key, None)

    def locked(self, key: SyncKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class CalendarSyncReconciler:
    """Keep internal appointments in step with an externally edited calendar."""

    def __init__(
        self,
        feed: CalendarFeed,
        appointments: AppointmentStore,
        sync_states: SyncStateStore,
        policies: PolicyDirectory,
        callback_url: str,
        default_zone: str = "America/Toronto",
        lead_window: timedelta = timedelta(hours=24),
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._feed = feed
        self._appointments = appointments
        self._states = sync_states
        self._policies = policies
        self._callback_url = callback_url
        self._default_zone = default_zone
        self._lead_window = lead_window
        self._clock = clock
        self._locks = locks or KeyedLocks()

    @property
    def locks(self) -> KeyedLocks:
        return self._locks

    # ------------------------------------------------------------------
    # Notifications and reconciliation
    # ------------------------------------------------------------------

    async def handle_notification(
        self, channel_id: str, resource_state: Optional[str] = None
    ) -> Optional[ReconcileReport]:
        """React to a push notification for ``channel_id``.

        ``resource_state == "sync"`` is the handshake Google sends when a
        channel is created and carries no changes.
        """
        if resource_state == "sync":
            log.info("Sync notification for channel %s", channel_id)
            return None

        state = await self._states.get_by_channel(channel_id)
        if state is None or state.status != SyncStatus.ACTIVE:
            log.warning("No active subscription found for channel %s", channel_id)
            return None

        return await self.reconcile(state.client_id, state.calendar_id)

    async def reconcile(self, client_id: str, calendar_id: str) -> ReconcileReport:
        """Run one reconciliation pass, serialized per (client, calendar)."""
        async with self._locks.hold((client_id, calendar_id)):
            return await self._reconcile_locked(client_id, calendar_id)

    async def _reconcile_locked(self, client_id: str, calendar_id: str) -> ReconcileReport:
        report = ReconcileReport(client_id=client_id, calendar_id=calendar_id)
        state = await self._states.get(client_id, calendar_id)
        token = state.sync_token if state else None
        since = None if token else self._clock()

        policy = await self._policies.get_policy(client_id)
        zone = policy.zone if policy else self._default_zone

        seen: set[str] = set()
        page_token: Optional[str] = None
        next_sync_token: Optional[str] = None
        try:
            while True:
                page = await self._feed.list_changed_events(
                    calendar_id,
                    sync_token=token,
                    since=since,
                    page_token=page_token,
                )
                report.pages += 1
                if page.next_sync_token:
                    next_sync_token = page.next_sync_token

                for event in page.events:
                    try:
                        outcome = await self._process_event(event, client_id, zone, seen, report)
                    except Exception:
                        report.failed += 1
                        log.exception(
                            "Error processing event %s for client %s", event.id, client_id
                        )
                        continue
                    report.outcomes[outcome] += 1

                page_token = page.next_page_token
                if not page_token:
                    break
        except SyncTokenInvalidError:
            log.info(
                "Sync token expired for client %s calendar %s, clearing for re-sync",
                client_id, calendar_id,
            )
            await self._states.clear_token(client_id, calendar_id)
            report.token_reset = True
            return report

        if next_sync_token:
            await self._states.update_token(client_id, calendar_id, next_sync_token)

        log.info(
            "Reconciled client %s calendar %s: %d page(s), %d created, %d failed",
            client_id, calendar_id, report.pages, len(report.created), report.failed,
        )
        return report

    async def _process_event(
        self,
        event: ExternalEvent,
        client_id: str,
        zone: str,
        seen: set[str],
        report: ReconcileReport,
    ) -> str:
        """Decide whether one changed event is a new outside booking."""
        if event.is_cancelled:
            return SKIP_CANCELLED
        if not event.is_timed:
            return SKIP_ALL_DAY
        if event.id in seen or await self._appointments.exists_by_external_event_id(event.id):
            return SKIP_LINKED

        participant = external_participant(event)
        if participant is None:
            # The owner's own blocks and internal meetings
            return SKIP_INTERNAL

        contact = await self._appointments.find_contact_by_email(client_id, participant.email)
        appointment = Appointment(
            client_id=client_id,
            contact_id=contact.id if contact else None,
            start_time=event.start,
            end_time=event.end,
            timezone=event.timezone or zone,
            external_event_id=event.id,
            source=AppointmentSource.EXTERNAL,
            title=event.summary,
            notes=event.description,
            external_url=event.html_link,
        )
        appointment_id = await self._appointments.create(appointment)
        seen.add(event.id)
        report.created.append(appointment_id)

        log.info(
            "Created external booking appointment %s for client %s (%s), attendee %s",
            appointment_id,
            client_id,
            f"matched contact {contact.id}" if contact else "no contact match",
            redact_pii(participant.email),
        )
        return CREATED

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, client_id: str, calendar_id: str) -> SyncState:
        """Open a push channel and store it, replacing any previous one.

        The stored sync token survives the replacement.
        """
        async with self._locks.hold((client_id, calendar_id)):
            subscription = await self._feed.subscribe(
                calendar_id, str(uuid.uuid4()), self._callback_url
            )
            previous = await self._states.get(client_id, calendar_id)
            state = SyncState(
                client_id=client_id,
                calendar_id=calendar_id,
                channel_id=subscription.channel_id,
                resource_id=subscription.resource_id,
                expiration=subscription.expiration,
                sync_token=previous.sync_token if previous else None,
            )
            try:
                await self._states.save(state)
            except Exception:
                log.error(
                    "Failed to store channel %s, stopping it", subscription.channel_id
                )
                await self._retire(subscription.channel_id, subscription.resource_id)
                raise

        log.info(
            "Created watch channel %s for client %s, calendar %s, expires %s",
            state.channel_id, client_id, calendar_id, state.expiration.isoformat(),
        )
        return state

    async def stop_subscription(self, client_id: str, calendar_id: str) -> bool:
        """Stop the client's channel (best effort) and mark it stopped."""
        state = await self._states.get(client_id, calendar_id)
        if state is None:
            return False
        await self._retire(state.channel_id, state.resource_id)
        await self._states.mark_stopped(state.channel_id)
        return True

    async def renew_expiring_subscriptions(
        self, lead_window: Optional[timedelta] = None
    ) -> int:
        """Replace channels expiring within ``lead_window``; returns how many."""
        cutoff = self._clock() + (lead_window or self._lead_window)
        due = await self._states.list_expiring(cutoff)
        if not due:
            return 0

        log.info("Renewing %d expiring watch channel(s)", len(due))
        renewed = 0
        for old in due:
            policy = await self._policies.get_policy(old.client_id)
            if policy is None or not policy.calendar_connected:
                log.warning(
                    "Client %s has no connected calendar, skipping renewal", old.client_id
                )
                await self._states.mark_stopped(old.channel_id)
                continue
            try:
                await self.subscribe(old.client_id, old.calendar_id)
            except Exception:
                log.exception("Failed to renew watch channel for client %s", old.client_id)
                continue
            # The replacement is already stored, so this is cleanup only.
            await self._retire(old.channel_id, old.resource_id)
            renewed += 1
        return renewed

    async def bootstrap_subscriptions(self) -> int:
        """Make sure every client with a connected calendar is watched."""
        client_ids = await self._policies.list_client_ids()
        log.info("Bootstrapping watch channels for %d client(s)", len(client_ids))
        created = 0
        for client_id in client_ids:
            policy = await self._policies.get_policy(client_id)
            if policy is None or not policy.calendar_connected:
                continue
            existing = await self._states.get(client_id, policy.calendar_id)
            if (
                existing is not None
                and existing.status == SyncStatus.ACTIVE
                and existing.expiration > self._clock()
            ):
                continue
            try:
                await self.subscribe(client_id, policy.calendar_id)
            except Exception:
                log.exception("Failed to bootstrap watch channel for client %s", client_id)
                continue
            created += 1
        return created

    async def _retire(self, channel_id: str, resource_id: str) -> bool:
        try:
            await self._feed.unsubscribe(channel_id, resource_id)
        except Exception as exc:
            # The provider may already have dropped an expired channel.
            log.warning("Failed to stop channel %s (may be expired): %s", channel_id, exc)
            return False
        log.info("Stopped watch channel %s", channel_id)
        return True


class RenewalScheduler:
    """Periodically renews expiring channels on its own asyncio task."""

    def __init__(
        self,
        reconciler: CalendarSyncReconciler,
        interval: timedelta = timedelta(hours=1),
        lead_window: timedelta = timedelta(hours=24),
    ) -> None:
        self._reconciler = reconciler
        self._interval = interval
        self._lead_window = lead_window
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="subscription-renewal")
        log.info("Subscription renewal every %s", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_once(self) -> int:
        try:
            return await self._reconciler.renew_expiring_subscriptions(self._lead_window)
        except Exception:
            log.exception("Subscription renewal pass failed")
            return 0

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval.total_seconds())
