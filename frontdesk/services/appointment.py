from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from frontdesk.clients.backend import SalonBackendClient
from frontdesk.schemas.appointment import Appointment, AppointmentPage, BookingRequest
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.mock_store import AppointmentRepository, get_mock_store

logger = logging.getLogger(__name__)

_SCOPE_PATHS = {
    "all": "",
    "today": "/today",
    "pending": "/pending-payments",
}


class AppointmentService:
    """Backend operations on appointments for a single salon."""

    def __init__(
        self,
        client: SalonBackendClient,
        *,
        salon_id: int,
        branch_id: int | None = None,
        repository: AppointmentRepository | None = None,
    ) -> None:
        self._client = client
        self._salon_id = salon_id
        self._branch_id = branch_id
        self._repository = repository
        if self._client.use_mock_data:
            self._repository = repository or get_mock_store().appointments

    @property
    def salon_id(self) -> int:
        return self._salon_id

    async def list_appointments(
        self, page: int, size: int, sort_field: str = "createdAt", sort_dir: str = "asc"
    ) -> AppointmentPage:
        return await self._list("all", page, size, sort_field, sort_dir)

    async def list_today(
        self, page: int, size: int, sort_field: str = "appointmentDate", sort_dir: str = "asc"
    ) -> AppointmentPage:
        return await self._list("today", page, size, sort_field, sort_dir)

    async def list_pending_payments(
        self, page: int, size: int, sort_field: str = "totalAmount", sort_dir: str = "desc"
    ) -> AppointmentPage:
        return await self._list("pending", page, size, sort_field, sort_dir)

    async def _list(
        self, scope: str, page: int, size: int, sort_field: str, sort_dir: str
    ) -> AppointmentPage:
        logger.debug(
            "Listing %s appointments for salon %s page=%s size=%s",
            scope,
            self._salon_id,
            page,
            size,
        )
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            repository = self._require_repository()
            data = await repository.list(
                self._salon_id,
                scope=scope,
                branch_id=self._branch_id,
                page=page,
                size=size,
                sort_by=sort_field,
                sort_dir=sort_dir,
            )
            return AppointmentPage.parse(data, page=page, size=size)

        try:
            data = await self._client.get(
                f"/appointments/salon/{self._salon_id}{_SCOPE_PATHS[scope]}",
                params={
                    "branchId": self._branch_id,
                    "page": page,
                    "size": size,
                    "sortBy": sort_field,
                    "sortDir": sort_dir,
                },
            )
            return AppointmentPage.parse(data, page=page, size=size)
        except ServiceError:
            raise
        except Exception as exc:  # pragma: no cover - defensive
            logger.exception("Unexpected error while listing %s appointments", scope)
            raise ServiceError("Failed to list appointments", cause=exc)

    async def get(self, appointment_id: str) -> Appointment:
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            record = await self._require_repository().get(appointment_id)
            if record is None:
                raise ServiceError(
                    f"Appointment {appointment_id} not found", code=ErrorCode.NOT_FOUND
                )
            return Appointment.model_validate(record)

        try:
            data = await self._client.get(f"/appointments/{appointment_id}")
            return Appointment.model_validate(data)
        except ServiceError:
            raise
        except Exception as exc:  # pragma: no cover - defensive
            logger.exception("Unexpected error while fetching appointment %s", appointment_id)
            raise ServiceError("Failed to fetch appointment", cause=exc)

    async def confirm_payment(self, appointment_id: str, actor_role: str) -> str:
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            data = await self._require_repository().confirm_payment(
                appointment_id, user_role=actor_role
            )
            return self._message(data)
        data = await self._client.put(
            f"/appointments/{appointment_id}/confirm-payment",
            params={"userRole": actor_role},
        )
        return self._message(data)

    async def complete_session(self, appointment_id: str, actor_role: str) -> str:
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            data = await self._require_repository().complete_session(
                appointment_id, user_role=actor_role
            )
            return self._message(data)
        data = await self._client.put(
            f"/appointments/{appointment_id}/complete-session",
            params={"userRole": actor_role},
        )
        return self._message(data)

    async def cancel(self, appointment_id: str, actor_role: str, reason: str) -> str:
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            data = await self._require_repository().cancel(
                appointment_id, user_role=actor_role, reason=reason
            )
            return self._message(data)
        data = await self._client.put(
            f"/appointments/{appointment_id}/cancel",
            payload={"userRole": actor_role, "reason": reason},
        )
        return self._message(data)

    async def book(self, request: BookingRequest, actor_role: str) -> Tuple[str, str]:
        """Create an appointment; returns the new id and the backend message."""

        payload = request.to_payload(self._salon_id, self._branch_id, actor_role)
        if self._client.use_mock_data:
            await self._client.simulate_latency()
            record = await self._require_repository().book(
                salon_id=self._salon_id,
                customer_name=request.customer_name,
                customer_phone=request.customer_phone,
                services=payload["services"],
                appointment_date=payload["appointmentDate"],
                employee_id=_employee_id(request.resource_id),
                user_role=actor_role,
            )
            return str(record["id"]), "Appointment booked successfully"

        data = await self._client.post("/appointments", payload)
        record = data
        if isinstance(data, Dict):
            record = data.get("appointment") or data.get("data") or data
        appointment_id = None
        if isinstance(record, Dict):
            appointment_id = record.get("id") or record.get("appointmentId") or record.get("appointment_id")
        if appointment_id is None:
            raise ServiceError(
                "Booking response did not include an appointment id",
                code=ErrorCode.BUSINESS_RULE_VIOLATION,
            )
        message = data.get("message") if isinstance(data, Dict) else None
        return str(appointment_id), str(message or "Appointment booked successfully")

    def _require_repository(self) -> AppointmentRepository:
        if not self._repository:
            raise RuntimeError("Mock appointment repository not configured")
        return self._repository

    @staticmethod
    def _message(data: Any) -> str:
        if isinstance(data, Dict) and data.get("message"):
            return str(data["message"])
        return "OK"


def _employee_id(resource_id: Optional[str]) -> Any:
    if resource_id is None:
        return None
    return int(resource_id) if resource_id.isdigit() else resource_id
