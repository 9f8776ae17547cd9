"""Repository interfaces consumed by the engine, with in-memory implementations.

Components receive these objects through their constructors instead of
reaching for a global database client, so tests can pass plain in-memory
stores and production code can pass real ones.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from availability.models.appointment import Appointment, Contact
from availability.models.policy import ClientPolicy
from availability.models.sync import SyncState, SyncStatus

log = logging.getLogger("availability.stores")


def redact_pii(value: str) -> str:
    """Mask an email address or phone number for logging."""
    if len(value) <= 5:
        return "***"
    return f"{value[:3]}***{value[-2:]}"


# ── Policy directory ──────────────────────────────────────────────────


class PolicyDirectory(ABC):
    @abstractmethod
    async def get_policy(self, client_id: str) -> Optional[ClientPolicy]:
        """Return the client's policy, or ``None`` if the client is unknown."""

    @abstractmethod
    async def get_lead_timezone(self, campaign_id: Optional[str], fallback: str) -> str:
        """Zone of the campaign's leads, falling back to the client's zone."""

    @abstractmethod
    async def list_client_ids(self) -> list[str]:
        """All clients known to the directory."""

    @abstractmethod
    async def save_policy(self, policy: ClientPolicy) -> None:
        """Insert or replace the policy for ``policy.client_id``."""


class InMemoryPolicyDirectory(PolicyDirectory):
    def __init__(
        self,
        policies: Optional[list[ClientPolicy]] = None,
        campaign_timezones: Optional[dict[str, str]] = None,
    ) -> None:
        self._policies = {p.client_id: p for p in policies or []}
        self._campaign_timezones = dict(campaign_timezones or {})

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryPolicyDirectory":
        """Load ``{"clients": [...], "campaigns": {id: zone}}`` from disk."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        policies = [ClientPolicy.model_validate(raw) for raw in data.get("clients", [])]
        log.info("Loaded %d client policies from %s", len(policies), path)
        return cls(policies, data.get("campaigns", {}))

    def put(self, policy: ClientPolicy) -> None:
        self._policies[policy.client_id] = policy

    async def get_policy(self, client_id: str) -> Optional[ClientPolicy]:
        return self._policies.get(client_id)

    async def get_lead_timezone(self, campaign_id: Optional[str], fallback: str) -> str:
        if not campaign_id:
            return fallback
        return self._campaign_timezones.get(campaign_id, fallback)

    async def list_client_ids(self) -> list[str]:
        return list(self._policies)

    async def save_policy(self, policy: ClientPolicy) -> None:
        self.put(policy)


# ── Appointment store ─────────────────────────────────────────────────


class AppointmentStore(ABC):
    @abstractmethod
    async def exists_by_external_event_id(self, event_id: str) -> bool:
        """True if an appointment is already linked to this calendar event."""

    @abstractmethod
    async def create(self, appointment: Appointment) -> str:
        """Persist an appointment and return its id."""

    @abstractmethod
    async def find_contact_by_email(
        self, client_id: str, email: str
    ) -> Optional[Contact]:
        """Look up one of the client's contacts by email address."""


class InMemoryAppointmentStore(AppointmentStore):
    def __init__(self, contacts: Optional[list[Contact]] = None) -> None:
        self.appointments: dict[str, Appointment] = {}
        self._by_event: dict[str, str] = {}
        self._contacts = list(contacts or [])

    async def exists_by_external_event_id(self, event_id: str) -> bool:
        return event_id in self._by_event

    async def create(self, appointment: Appointment) -> str:
        if appointment.external_event_id in self._by_event:
            raise ValueError(
                f"appointment for event {appointment.external_event_id} already exists"
            )
        appointment_id = f"apt-{len(self.appointments) + 1}"
        self.appointments[appointment_id] = appointment
        self._by_event[appointment.external_event_id] = appointment_id
        return appointment_id

    async def find_contact_by_email(
        self, client_id: str, email: str
    ) -> Optional[Contact]:
        wanted = email.strip().lower()
        for contact in self._contacts:
            if contact.client_id == client_id and contact.email.lower() == wanted:
                return contact
        return None


# ── Sync state store ──────────────────────────────────────────────────


class SyncStateStore(ABC):
    @abstractmethod
    async def get(self, client_id: str, calendar_id: str) -> Optional[SyncState]:
        ...

    @abstractmethod
    async def get_by_channel(self, channel_id: str) -> Optional[SyncState]:
        ...

    @abstractmethod
    async def save(self, state: SyncState) -> None:
        """Insert or replace the state for ``state.key``."""

    @abstractmethod
    async def update_token(self, client_id: str, calendar_id: str, token: str) -> None:
        ...

    @abstractmethod
    async def clear_token(self, client_id: str, calendar_id: str) -> None:
        ...

    @abstractmethod
    async def mark_stopped(self, channel_id: str) -> None:
        ...

    @abstractmethod
    async def list_expiring(self, before: datetime) -> list[SyncState]:
        """Active subscriptions expiring before ``before``."""


class InMemorySyncStateStore(SyncStateStore):
    def __init__(self) -> None:
        self._states: dict[tuple[str, str], SyncState] = {}
        self._lock = asyncio.Lock()

    async def get(self, client_id: str, calendar_id: str) -> Optional[SyncState]:
        state = self._states.get((client_id, calendar_id))
        return state.model_copy() if state else None

    async def get_by_channel(self, channel_id: str) -> Optional[SyncState]:
        for state in self._states.values():
            if state.channel_id == channel_id:
                return state.model_copy()
        return None

    async def save(self, state: SyncState) -> None:
        async with self._lock:
            self._states[state.key] = state.model_copy()

    async def update_token(self, client_id: str, calendar_id: str, token: str) -> None:
        async with self._lock:
            state = self._states.get((client_id, calendar_id))
            if state is not None:
                state.sync_token = token

    async def clear_token(self, client_id: str, calendar_id: str) -> None:
        async with self._lock:
            state = self._states.get((client_id, calendar_id))
            if state is not None:
                state.sync_token = None

    async def mark_stopped(self, channel_id: str) -> None:
        async with self._lock:
            for state in self._states.values():
                if state.channel_id == channel_id:
                    state.status = SyncStatus.STOPPED

    async def list_expiring(self, before: datetime) -> list[SyncState]:
        return [
            state.model_copy()
            for state in self._states.values()
            if state.status == SyncStatus.ACTIVE and state.expiration < before
        ]
