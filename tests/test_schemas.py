import os
import sys

import pytest
from pydantic import ValidationError

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from frontdesk.schemas.appointment import (
    Appointment,
    AppointmentPage,
    AppointmentStatus,
    PaymentStatus,
    map_status,
)


def test_backend_statuses_map_to_dashboard_statuses() -> None:
    assert map_status("SCHEDULED", PaymentStatus.PENDING) is AppointmentStatus.BOOKED
    assert map_status("IN_PROGRESS", None) is AppointmentStatus.IN_PROGRESS
    assert map_status("COMPLETED", PaymentStatus.PENDING) is AppointmentStatus.PAYMENT_PENDING
    assert map_status("COMPLETED", PaymentStatus.COMPLETED) is AppointmentStatus.PAID
    assert map_status("COMPLETED", PaymentStatus.REFUNDED) is AppointmentStatus.COMPLETED
    assert map_status("NO_SHOW", None) is AppointmentStatus.NO_SHOW
    assert map_status("payment-pending", None) is AppointmentStatus.PAYMENT_PENDING


def test_wire_record_is_normalised() -> None:
    appointment = Appointment.model_validate(
        {
            "id": 42,
            "salonId": 1001,
            "customerName": "Kasun Silva",
            "customerPhone": "0771234567",
            "employeeId": 201,
            "appointmentDate": "2025-09-22T10:00:00+05:30",
            "status": "COMPLETED",
            "paymentStatus": "PAID",
            "services": [
                {"id": 11, "name": "Haircut", "durationMinutes": 30, "price": 1500},
                {"id": 13, "name": "Facial", "durationMinutes": 60, "price": 3500, "discountPrice": 3000},
            ],
        }
    )

    assert appointment.id == "42"
    assert appointment.resource_id == "201"
    assert appointment.status is AppointmentStatus.PAID
    assert appointment.payment_status is PaymentStatus.COMPLETED
    assert appointment.duration_minutes == 90
    assert appointment.end.hour == 11 and appointment.end.minute == 30
    assert appointment.service_total == 5000.0
    assert appointment.final_amount == 4500.0
    assert appointment.discount_amount == 500.0


def test_record_without_services_builds_single_line() -> None:
    appointment = Appointment.model_validate(
        {
            "appointmentId": "7",
            "customer_name": "Dilani",
            "appointmentDate": "2025-09-22T11:00:00",
            "estimatedEndTime": "2025-09-22T11:45:00",
            "serviceName": "Blow dry",
            "totalAmount": 2000,
            "discountAmount": 250,
        }
    )

    assert len(appointment.services) == 1
    assert appointment.duration_minutes == 45
    assert appointment.final_amount == 1750.0
    assert appointment.status is AppointmentStatus.BOOKED
    assert appointment.resource_id is None


def test_zero_duration_service_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Appointment.model_validate(
            {
                "id": "1",
                "appointmentDate": "2025-09-22T11:00:00",
                "services": [{"id": 1, "durationMinutes": 0, "price": 10}],
            }
        )


def test_page_parse_accepts_bare_list_and_missing_totals() -> None:
    record = {
        "id": "1",
        "appointmentDate": "2025-09-22T11:00:00",
        "services": [{"id": 1, "durationMinutes": 30, "price": 10}],
    }

    bare = AppointmentPage.parse([record, dict(record, id="2")], page=0, size=9)
    wrapped = AppointmentPage.parse({"appointments": [record]}, page=2, size=1)
    spring = AppointmentPage.parse(
        {"content": [record], "totalElements": 10, "totalPages": 4, "number": 3}, page=3, size=3
    )

    assert bare.total_elements == 2 and bare.total_pages == 1
    assert wrapped.total_elements == 1 and wrapped.total_pages == 1 and wrapped.page == 2
    assert spring.total_elements == 10 and spring.total_pages == 4 and spring.page == 3


def test_page_parse_skips_unreadable_records() -> None:
    good = {
        "id": "1",
        "appointmentDate": "2025-09-22T11:00:00",
        "services": [{"id": 1, "durationMinutes": 30, "price": 10}],
    }
    bad = {"id": "2"}

    page = AppointmentPage.parse({"content": [good, bad], "totalElements": 2}, page=0, size=9)

    assert [item.id for item in page.content] == ["1"]
    assert page.total_elements == 2
