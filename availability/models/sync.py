"""Pydantic model tracking push-notification and sync-token state."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SyncStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


class SyncState(BaseModel):
    """Subscription and resumption state for one (client, calendar) pair.

    The subscription fields are replaced wholesale on renewal; ``sync_token``
    is advanced after each successful reconciliation pass and cleared when
    the provider reports it invalid.
    """

    client_id: str
    calendar_id: str
    channel_id: str
    resource_id: str
    expiration: datetime
    sync_token: Optional[str] = None
    status: SyncStatus = SyncStatus.ACTIVE

    @property
    def key(self) -> tuple[str, str]:
        return (self.client_id, self.calendar_id)
