from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    model_validator,
)

logger = logging.getLogger(__name__)

# Used when the backend sends neither a duration nor an estimated end time.
DEFAULT_SERVICE_MINUTES = 30


class AppointmentStatus(str, Enum):
    BOOKED = "booked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    PAYMENT_PENDING = "payment-pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


_API_PAYMENT_STATUS = {
    "PENDING": PaymentStatus.PENDING,
    "PARTIAL": PaymentStatus.PENDING,
    "PAID": PaymentStatus.COMPLETED,
    "COMPLETED": PaymentStatus.COMPLETED,
    "REFUNDED": PaymentStatus.REFUNDED,
}

_API_STATUS = {
    "SCHEDULED": AppointmentStatus.BOOKED,
    "BOOKED": AppointmentStatus.BOOKED,
    "CONFIRMED": AppointmentStatus.BOOKED,
    "IN_PROGRESS": AppointmentStatus.IN_PROGRESS,
    "CANCELLED": AppointmentStatus.CANCELLED,
    "NO_SHOW": AppointmentStatus.NO_SHOW,
    "PAID": AppointmentStatus.PAID,
}


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def map_payment_status(value: Any) -> Optional[PaymentStatus]:
    if value is None:
        return None
    if isinstance(value, PaymentStatus):
        return value
    text = str(value).strip()
    try:
        return PaymentStatus(text.lower())
    except ValueError:
        pass
    return _API_PAYMENT_STATUS.get(text.upper(), PaymentStatus.PENDING)


def map_status(value: Any, payment_status: Optional[PaymentStatus]) -> AppointmentStatus:
    """Translate a backend status (plus payment status) to the dashboard status."""

    if isinstance(value, AppointmentStatus):
        return value
    if value is None:
        return AppointmentStatus.BOOKED
    text = str(value).strip()
    # Dashboard statuses are lower-case; backend statuses are upper-case.
    if text == text.lower():
        try:
            return AppointmentStatus(text)
        except ValueError:
            pass
    upper = text.upper().replace("-", "_")
    if upper == "COMPLETED":
        if payment_status is PaymentStatus.COMPLETED:
            return AppointmentStatus.PAID
        if payment_status is PaymentStatus.REFUNDED:
            return AppointmentStatus.COMPLETED
        return AppointmentStatus.PAYMENT_PENDING
    return _API_STATUS.get(upper, AppointmentStatus.BOOKED)


class ServiceLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    duration_minutes: int = Field(..., gt=0)
    price: float = Field(default=0.0, ge=0)
    discount_price: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return {
            "id": str(_pick(data, "id", "serviceId", "service_id")),
            "name": _pick(data, "name", "serviceName", "service_name"),
            "duration_minutes": _pick(
                data, "duration_minutes", "durationMinutes", "duration"
            ),
            "price": _pick(data, "price", "servicePrice", "service_price") or 0.0,
            "discount_price": _pick(data, "discount_price", "discountPrice"),
        }

    @property
    def charged(self) -> float:
        if self.discount_price is None:
            return self.price
        return self.discount_price


class Appointment(BaseModel):
    """A reconciled appointment record as rendered by the dashboard."""

    model_config = ConfigDict(frozen=True)

    id: str
    salon_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    services: List[ServiceLine] = Field(..., min_length=1)
    start: datetime
    status: AppointmentStatus = AppointmentStatus.BOOKED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    tip_amount: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data

        payment_status = map_payment_status(
            _pick(data, "payment_status", "paymentStatus")
        )
        status = map_status(_pick(data, "status", "appointmentStatus"), payment_status)
        if payment_status is None:
            payment_status = (
                PaymentStatus.COMPLETED
                if status is AppointmentStatus.PAID
                else PaymentStatus.PENDING
            )

        resource_id = _pick(
            data, "resource_id", "resourceId", "employeeId", "employee_id", "barberId"
        )
        salon_id = _pick(data, "salon_id", "salonId")
        start = _pick(
            data, "start", "appointmentDate", "appointment_date", "startTime", "start_time"
        )

        services = _pick(data, "services", "selectedServices", "selected_services")
        if not services:
            services = [cls._single_service(data, start)]

        return {
            "id": str(_pick(data, "id", "appointmentId", "appointment_id")),
            "salon_id": str(salon_id) if salon_id is not None else None,
            "customer_name": _pick(data, "customer_name", "customerName") or "",
            "customer_phone": _pick(data, "customer_phone", "customerPhone") or "",
            "resource_id": str(resource_id) if resource_id is not None else None,
            "resource_name": _pick(
                data, "resource_name", "employeeName", "employee_name", "barberName"
            ),
            "services": services,
            "start": start,
            "status": status,
            "payment_status": payment_status,
            "tip_amount": _pick(data, "tip_amount", "tipAmount") or 0.0,
            "created_at": _pick(data, "created_at", "createdAt"),
            "updated_at": _pick(data, "updated_at", "updatedAt"),
        }

    @staticmethod
    def _single_service(data: Mapping[str, Any], start: Any) -> Dict[str, Any]:
        duration = _pick(
            data,
            "duration_minutes",
            "durationMinutes",
            "totalDurationMinutes",
            "total_duration_minutes",
        )
        if duration is None:
            duration = _minutes_between(
                start, _pick(data, "estimatedEndTime", "estimated_end_time", "end")
            )
        price = _pick(data, "servicePrice", "service_price", "totalAmount", "total_amount")
        price = float(price or 0.0)
        discount = _pick(data, "discountAmount", "discount_amount")
        discount_price = None
        if discount:
            discount_price = max(price - float(discount), 0.0)
        return {
            "id": str(_pick(data, "serviceId", "service_id") or "unknown"),
            "name": _pick(data, "serviceName", "service_name"),
            "duration_minutes": duration or DEFAULT_SERVICE_MINUTES,
            "price": price,
            "discount_price": discount_price,
        }

    @model_validator(mode="after")
    def _check_span(self) -> "Appointment":
        if self.end <= self.start:
            raise ValueError("appointment must end after it starts")
        return self

    @computed_field
    @property
    def duration_minutes(self) -> int:
        return sum(line.duration_minutes for line in self.services)

    @computed_field
    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @computed_field
    @property
    def service_total(self) -> float:
        return round(sum(line.price for line in self.services), 2)

    @computed_field
    @property
    def discount_amount(self) -> float:
        return round(self.service_total - self.final_amount, 2)

    @computed_field
    @property
    def final_amount(self) -> float:
        return round(sum(line.charged for line in self.services), 2)

    @property
    def awaiting_payment(self) -> bool:
        """Completed session whose payment is still outstanding."""

        return (
            self.status is AppointmentStatus.PAYMENT_PENDING
            and self.payment_status is PaymentStatus.PENDING
        )


def _minutes_between(start: Any, end: Any) -> Optional[int]:
    if start is None or end is None:
        return None
    try:
        start_dt = start if isinstance(start, datetime) else datetime.fromisoformat(str(start))
        end_dt = end if isinstance(end, datetime) else datetime.fromisoformat(str(end))
    except ValueError:
        return None
    minutes = int((end_dt - start_dt).total_seconds() // 60)
    return minutes if minutes > 0 else None


class AppointmentPage(BaseModel):
    content: List[Appointment] = Field(default_factory=list)
    total_elements: int = 0
    total_pages: int = 0
    page: int = 0
    size: int

    @classmethod
    def parse(cls, payload: Any, *, page: int, size: int) -> "AppointmentPage":
        """Build a page from any of the envelope shapes the backend emits."""

        if isinstance(payload, list):
            records = payload
            total_elements = len(payload)
            total_pages = 1
            current = 0
        elif isinstance(payload, Mapping):
            records = _pick(payload, "content", "appointments", "data") or []
            total_elements = _pick(payload, "total_elements", "totalElements")
            if total_elements is None:
                total_elements = len(records)
            total_pages = _pick(payload, "total_pages", "totalPages")
            if total_pages is None:
                total_pages = math.ceil(total_elements / size) if size else 0
            current = _pick(payload, "page", "number")
            if current is None:
                current = page
        else:
            raise ValueError(f"Unexpected page payload type {type(payload).__name__}")

        content: List[Appointment] = []
        for record in records:
            try:
                content.append(Appointment.model_validate(record))
            except ValidationError as exc:
                logger.warning("Skipping unreadable appointment record: %s", exc)

        return cls(
            content=content,
            total_elements=int(total_elements),
            total_pages=int(total_pages),
            page=int(current),
            size=size,
        )


class CommandResult(BaseModel):
    appointment_id: str
    action: str
    message: str


class CancelRequest(BaseModel):
    reason: str = Field(default="Cancelled by reception")


class BookingRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, description="Customer full name")
    customer_phone: str = Field(..., min_length=1, description="Customer phone number")
    start: datetime = Field(..., description="Appointment start, ISO 8601 with offset")
    resource_id: Optional[str] = Field(
        default=None, description="Assigned staff member; omit for an unassigned booking"
    )
    services: List[ServiceLine] = Field(..., min_length=1)

    @property
    def duration_minutes(self) -> int:
        return sum(line.duration_minutes for line in self.services)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def to_payload(self, salon_id: int, branch_id: Optional[int], actor_role: str) -> Dict[str, Any]:
        """Create-appointment body in the backend's wire shape."""

        first_name, _, last_name = self.customer_name.strip().partition(" ")
        service_price = sum(line.price for line in self.services)
        charged = sum(line.charged for line in self.services)
        return {
            "salonId": salon_id,
            "branchId": branch_id,
            "customerFirstName": first_name,
            "customerLastName": last_name,
            "customerName": self.customer_name,
            "customerPhone": self.customer_phone,
            "employeeId": self.resource_id,
            "serviceIds": [line.id for line in self.services],
            "services": [
                {
                    "id": line.id,
                    "name": line.name,
                    "durationMinutes": line.duration_minutes,
                    "price": line.price,
                    **({"discountPrice": line.discount_price} if line.discount_price is not None else {}),
                }
                for line in self.services
            ],
            "appointmentDate": self.start.isoformat(),
            "estimatedEndTime": self.end.isoformat(),
            "servicePrice": round(service_price, 2),
            "discountAmount": round(service_price - charged, 2),
            "userRole": actor_role,
        }
