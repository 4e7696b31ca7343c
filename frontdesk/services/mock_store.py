"""In-memory stand-in for the salon backend and its push feed.

Records are kept in the backend's own wire shape (camelCase keys, upper-case
statuses) so the client parses exactly what the live service would send.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, DefaultDict, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from frontdesk.schemas.appointment import Appointment
from frontdesk.schemas.events import EventType
from frontdesk.services import lifecycle
from frontdesk.services.exceptions import DownstreamServiceError, ErrorCode

logger = logging.getLogger(__name__)

ALLOWED_ROLES = frozenset({"RECEPTION", "OWNER", "ADMIN", "SUPER_ADMIN"})

_ERROR_STATUS = {
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATUS: 409,
    ErrorCode.BUSINESS_RULE_VIOLATION: 422,
}

_API_STATUS = {
    "cancelled": "CANCELLED",
    "paid": "COMPLETED",
    "payment-pending": "COMPLETED",
}

_API_PAYMENT = {
    "completed": "PAID",
    "pending": "PENDING",
}


def _utc_now_iso() -> str:
    return datetime.now(ZoneInfo("UTC")).isoformat()


def _reject(code: ErrorCode, message: str) -> DownstreamServiceError:
    return DownstreamServiceError(message, status_code=_ERROR_STATUS[code], code=code)


class _BaseRepository:
    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def _next_id(self) -> int:
        return next(self._counter)


class EventFeed:
    """Fan-out of raw push frames to every subscriber of a salon."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[int, List[asyncio.Queue]] = defaultdict(list)

    def subscribe(self, salon_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[int(salon_id)].append(queue)
        return queue

    def unsubscribe(self, salon_id: int, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(int(salon_id), [])
        if queue in queues:
            queues.remove(queue)

    def subscriber_count(self, salon_id: int) -> int:
        return len(self._subscribers.get(int(salon_id), []))

    def publish(self, salon_id: int, frame: str) -> None:
        for queue in list(self._subscribers.get(int(salon_id), [])):
            queue.put_nowait(frame)

    def publish_event(self, salon_id: int, event_type: EventType, payload: Dict[str, Any]) -> None:
        message = {"type": event_type.value, **payload}
        self.publish(salon_id, json.dumps(message, default=str))

    def heartbeat(self, salon_id: int) -> None:
        self.publish(salon_id, "heartbeat")

    def disconnect(self, salon_id: int, *, clean: bool = True) -> None:
        """End every subscription; ``clean=False`` simulates a network drop."""

        marker: Any = None if clean else ConnectionResetError("feed connection reset")
        for queue in list(self._subscribers.get(int(salon_id), [])):
            queue.put_nowait(marker)
        self._subscribers.pop(int(salon_id), None)


class AppointmentRepository(_BaseRepository):
    def __init__(
        self,
        feed: EventFeed,
        *,
        tz: tzinfo | None = None,
        today: date | None = None,
        salon_id: int = 1001,
    ) -> None:
        super().__init__()
        self._feed = feed
        self._tz = tz or ZoneInfo("Asia/Colombo")
        self._fixed_today = today
        self._appointments: Dict[str, Dict[str, Any]] = {}
        self._seed_defaults(salon_id)

    def today(self) -> date:
        if self._fixed_today is not None:
            return self._fixed_today
        return datetime.now(self._tz).date()

    def _at(self, day: date, hour: int, minute: int = 0) -> str:
        return datetime.combine(day, time(hour, minute), tzinfo=self._tz).isoformat()

    def _seed_defaults(self, salon_id: int) -> None:
        today = self.today()
        yesterday = today - timedelta(days=1)
        tomorrow = today + timedelta(days=1)
        haircut = {"id": 11, "name": "Haircut", "durationMinutes": 30, "price": 1500.0}
        beard = {"id": 12, "name": "Beard Trim", "durationMinutes": 15, "price": 800.0}
        facial = {
            "id": 13,
            "name": "Classic Facial",
            "durationMinutes": 60,
            "price": 3500.0,
            "discountPrice": 3000.0,
        }
        seeds = [
            ("Kasun Silva", "0771234567", 201, [haircut], self._at(today, 10), "SCHEDULED", "PENDING"),
            ("Dilani Fernando", "0712223344", None, [facial], self._at(today, 11), "SCHEDULED", "PENDING"),
            ("Ruwan Jayasuriya", "0759876543", 202, [haircut, beard], self._at(today, 9), "COMPLETED", "PENDING"),
            ("Ishara Perera", "0761112233", 201, [haircut], self._at(today, 12), "COMPLETED", "PAID"),
            ("Nadeesha Kumari", "0705556677", 202, [facial], self._at(yesterday, 14), "COMPLETED", "PENDING"),
            ("Kasun Silva", "0771234567", 201, [haircut, beard], self._at(tomorrow, 15), "SCHEDULED", "PENDING"),
            ("Tharindu Wickrama", "0789990001", 201, [haircut], self._at(today, 16), "CANCELLED", "PENDING"),
        ]
        for customer_name, phone, employee_id, services, when, status, payment in seeds:
            record = self._new_record(
                salon_id=salon_id,
                customer_name=customer_name,
                customer_phone=phone,
                employee_id=employee_id,
                services=services,
                appointment_date=when,
            )
            record["status"] = status
            record["paymentStatus"] = payment
            self._appointments[str(record["id"])] = record

    def _new_record(
        self,
        *,
        salon_id: int,
        customer_name: str,
        customer_phone: str,
        employee_id: Optional[int],
        services: Iterable[Dict[str, Any]],
        appointment_date: str,
    ) -> Dict[str, Any]:
        services = [dict(service) for service in services]
        total = sum(service.get("discountPrice", service["price"]) for service in services)
        timestamp = _utc_now_iso()
        return {
            "id": self._next_id(),
            "salonId": salon_id,
            "customerName": customer_name,
            "customerPhone": customer_phone,
            "employeeId": employee_id,
            "employeeName": f"Stylist {employee_id}" if employee_id else None,
            "services": services,
            "appointmentDate": appointment_date,
            "status": "SCHEDULED",
            "paymentStatus": "PENDING",
            "totalAmount": total,
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }

    async def book(
        self,
        *,
        salon_id: int,
        customer_name: str,
        customer_phone: str,
        services: Iterable[Dict[str, Any]],
        appointment_date: str,
        employee_id: Optional[int] = None,
        user_role: str = "RECEPTION",
    ) -> Dict[str, Any]:
        if str(user_role).upper() not in ALLOWED_ROLES:
            raise _reject(ErrorCode.PERMISSION_DENIED, f"Role {user_role} may not book appointments")
        record = self._new_record(
            salon_id=salon_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            employee_id=employee_id,
            services=services,
            appointment_date=appointment_date,
        )
        if employee_id is not None:
            self._check_free(record)
        self._appointments[str(record["id"])] = record
        self._feed.publish_event(
            salon_id, EventType.APPOINTMENT_CREATED, {"appointment_data": dict(record)}
        )
        return dict(record)

    def _check_free(self, record: Dict[str, Any]) -> None:
        candidate = Appointment.model_validate(record)
        for existing in self._appointments.values():
            if str(existing.get("employeeId")) != str(record["employeeId"]):
                continue
            if existing["status"] == "CANCELLED":
                continue
            other = Appointment.model_validate(existing)
            if other.start < candidate.end and candidate.start < other.end:
                raise _reject(
                    ErrorCode.BUSINESS_RULE_VIOLATION,
                    f"{record['employeeName']} is already booked at {other.start.isoformat()}",
                )

    def _local_day(self, record: Dict[str, Any]) -> date:
        return datetime.fromisoformat(record["appointmentDate"]).astimezone(self._tz).date()

    async def list(
        self,
        salon_id: int,
        *,
        scope: str = "all",
        branch_id: Optional[int] = None,
        page: int = 0,
        size: int = 9,
        sort_by: str = "createdAt",
        sort_dir: str = "asc",
    ) -> Dict[str, Any]:
        records = [
            record
            for record in self._appointments.values()
            if int(record["salonId"]) == int(salon_id)
            and (branch_id is None or record.get("branchId") in (None, branch_id))
        ]
        if scope == "today":
            today = self.today()
            records = [record for record in records if self._local_day(record) == today]
        elif scope == "pending":
            records = [record for record in records if record["paymentStatus"] == "PENDING"]

        records.sort(
            key=lambda record: (record.get(sort_by) is None, record.get(sort_by) or 0, record["id"]),
            reverse=sort_dir.lower() == "desc",
        )

        total = len(records)
        start = page * size
        return {
            "content": [dict(record) for record in records[start:start + size]],
            "totalElements": total,
            "totalPages": math.ceil(total / size) if size else 0,
            "number": page,
            "size": size,
        }

    async def get(self, appointment_id: str) -> Optional[Dict[str, Any]]:
        record = self._appointments.get(str(appointment_id))
        return dict(record) if record is not None else None

    def _require(self, appointment_id: str, user_role: str) -> Dict[str, Any]:
        if str(user_role).upper() not in ALLOWED_ROLES:
            raise _reject(ErrorCode.PERMISSION_DENIED, f"Role {user_role} may not change appointments")
        record = self._appointments.get(str(appointment_id))
        if record is None:
            raise _reject(ErrorCode.NOT_FOUND, f"Appointment {appointment_id} not found")
        return record

    def _apply(self, record: Dict[str, Any], action: lifecycle.Action) -> None:
        appointment = Appointment.model_validate(record)
        rejection = lifecycle.check(appointment, action, self.today(), self._tz)
        if rejection is not None:
            code, reason = rejection
            raise _reject(code, reason)
        status, payment = lifecycle.resulting_status(action)
        if not lifecycle.can_transition(appointment.status, status):
            raise _reject(ErrorCode.INVALID_STATUS, f"{appointment.status.value} -> {status.value}")
        record["status"] = _API_STATUS[status.value]
        if payment is not None:
            record["paymentStatus"] = _API_PAYMENT[payment.value]
        record["updatedAt"] = _utc_now_iso()

    async def cancel(self, appointment_id: str, *, user_role: str, reason: str) -> Dict[str, str]:
        logger.info("Cancelling appointment %s as %s", appointment_id, user_role)
        record = self._require(appointment_id, user_role)
        self._apply(record, lifecycle.Action.CANCEL)
        record["cancellationReason"] = reason
        self._feed.publish_event(
            record["salonId"], EventType.APPOINTMENT_CANCELLED, {"appointment_data": dict(record)}
        )
        return {"message": "Appointment cancelled successfully"}

    async def complete_session(self, appointment_id: str, *, user_role: str) -> Dict[str, str]:
        logger.info("Completing session %s as %s", appointment_id, user_role)
        record = self._require(appointment_id, user_role)
        self._apply(record, lifecycle.Action.COMPLETE_SESSION)
        self._feed.publish_event(
            record["salonId"],
            EventType.SESSION_COMPLETED,
            {
                "appointmentId": record["id"],
                "customerName": record["customerName"],
                "appointmentDate": record["appointmentDate"],
            },
        )
        return {"message": "Session completed successfully"}

    async def confirm_payment(self, appointment_id: str, *, user_role: str) -> Dict[str, str]:
        logger.info("Confirming payment for %s as %s", appointment_id, user_role)
        record = self._require(appointment_id, user_role)
        self._apply(record, lifecycle.Action.CONFIRM_PAYMENT)
        self._feed.publish_event(
            record["salonId"],
            EventType.PAYMENT_CONFIRMED,
            {
                "appointmentId": record["id"],
                "customerName": record["customerName"],
                "amount": record["totalAmount"],
            },
        )
        return {"message": "Payment confirmed successfully"}


@dataclass
class MockDataStore:
    feed: EventFeed
    appointments: AppointmentRepository


_mock_store: Optional[MockDataStore] = None


def get_mock_store() -> MockDataStore:
    global _mock_store
    if _mock_store is None:
        feed = EventFeed()
        _mock_store = MockDataStore(feed=feed, appointments=AppointmentRepository(feed))
    return _mock_store


def reset_mock_store() -> None:
    global _mock_store
    _mock_store = None
