from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping

from frontdesk.schemas.appointment import Appointment
from frontdesk.services.exceptions import ErrorCode, ServiceError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # The backend has sent both naive and offset timestamps; naive ones are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AppointmentLedger:
    """Client-held set of reconciled appointment records.

    Only two paths write here: a view refetch (``replace_many``) and an
    event-confirmed single-record fetch (``upsert``). Command responses never
    do. Records are immutable models, so a snapshot can be handed to readers
    without copying them.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Appointment] = {}
        self._lock = threading.RLock()
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, appointment_id: object) -> bool:
        return appointment_id in self._records

    def upsert(self, appointment: Appointment) -> bool:
        with self._lock:
            return self._write(appointment)

    def replace_many(self, appointments: Iterable[Appointment]) -> int:
        changed = 0
        with self._lock:
            for appointment in appointments:
                if self._write(appointment):
                    changed += 1
        return changed

    def _write(self, appointment: Appointment) -> bool:
        current = self._records.get(appointment.id)
        if current is not None:
            if current == appointment:
                return False
            if (
                current.updated_at is not None
                and appointment.updated_at is not None
                and _as_utc(appointment.updated_at) < _as_utc(current.updated_at)
            ):
                logger.debug(
                    "Ignoring stale copy of appointment %s (%s < %s)",
                    appointment.id,
                    appointment.updated_at,
                    current.updated_at,
                )
                return False
        self._records[appointment.id] = appointment
        self._version += 1
        return True

    def get(self, appointment_id: str) -> Appointment | None:
        return self._records.get(appointment_id)

    def require(self, appointment_id: str) -> Appointment:
        appointment = self._records.get(appointment_id)
        if appointment is None:
            raise ServiceError(
                f"Appointment {appointment_id} is not in the ledger",
                code=ErrorCode.NOT_FOUND,
            )
        return appointment

    def snapshot(self) -> Mapping[str, Appointment]:
        with self._lock:
            return MappingProxyType(dict(self._records))

    def search(self, term: str) -> List[Appointment]:
        needle = term.strip().lower()
        records = list(self.snapshot().values())
        if not needle:
            return records
        return [
            record
            for record in records
            if needle in record.customer_name.lower()
            or needle in record.customer_phone.lower()
        ]
