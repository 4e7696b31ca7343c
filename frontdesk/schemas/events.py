from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
    APPOINTMENT_UPDATED = "APPOINTMENT_UPDATED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    SESSION_COMPLETED = "SESSION_COMPLETED"


class ChannelEvent(BaseModel):
    """A push message after alias normalisation."""

    type: str
    appointment_id: Optional[str] = None
    customer_name: Optional[str] = None
    time_slot: Optional[str] = None
    appointment_date: Optional[date] = None
    amount: Optional[float] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: Optional[datetime] = None

    @property
    def event_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChannelHealth(str, Enum):
    CONNECTING = "connecting"
    HEALTHY = "healthy"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    CLOSED = "closed"


class DisconnectReason(str, Enum):
    CLEAN = "clean"
    ERROR = "error"


class ChannelStatus(BaseModel):
    state: ChannelState
    health: ChannelHealth
    reconnect_attempts: int = 0
    last_disconnect: Optional[DisconnectReason] = None
    last_error: Optional[str] = None
    connected_at: Optional[datetime] = None
