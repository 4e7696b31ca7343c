import asyncio
import os
import sys
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from frontdesk.schemas.appointment import Appointment
from frontdesk.schemas.views import ViewId
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.ledger import AppointmentLedger
from frontdesk.services.mock_store import reset_mock_store
from frontdesk.services.statistics import StatisticsService, compute_statistics
from frontdesk.services.views import DerivedViewRegistry


COLOMBO = ZoneInfo("Asia/Colombo")


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_mock_store()
    yield
    reset_mock_store()


class MockLatencyClient:
    def __init__(self) -> None:
        self.use_mock_data = True
        self.latency_calls = 0

    async def simulate_latency(self) -> None:
        self.latency_calls += 1


def appointment(appointment_id, phone, start, status, payment, price=1000.0):
    return Appointment.model_validate(
        {
            "id": appointment_id,
            "customerPhone": phone,
            "appointmentDate": start,
            "status": status,
            "paymentStatus": payment,
            "services": [{"id": 1, "durationMinutes": 30, "price": price}],
        }
    )


def test_compute_statistics_counts_each_quantity() -> None:
    today = date(2025, 9, 22)
    records = [
        appointment("1", "071", "2025-09-22T09:00:00", "COMPLETED", "PAID", 1500),
        appointment("2", "071", "2025-09-22T10:00:00", "COMPLETED", "PENDING"),
        appointment("3", "072", "2025-09-21T10:00:00", "COMPLETED", "PENDING"),
        appointment("4", "073", "2025-09-22T11:00:00", "SCHEDULED", "PENDING"),
        appointment("5", "", "2025-09-21T11:00:00", "COMPLETED", "PAID", 900),
    ]

    stats = compute_statistics(records, today)

    assert stats.total_customers == 3
    assert stats.total_today_appointments == 3
    assert stats.total_pending_payments == 2
    assert stats.total_daily_income == 1500.0


def test_statistics_sweep_every_page_not_one() -> None:
    client = MockLatencyClient()

    async def scenario():
        service = AppointmentService(client, salon_id=1001)
        ledger = AppointmentLedger()
        statistics = StatisticsService(service, ledger, page_size=3, tz=COLOMBO)
        return await statistics.refresh(), ledger

    stats, ledger = asyncio.run(scenario())

    assert client.latency_calls == 3
    assert len(ledger) == 7
    assert stats.total_customers == 6
    assert stats.total_today_appointments == 5
    assert stats.total_pending_payments == 2
    assert stats.total_daily_income == 1500.0
    assert stats.computed_at is not None


def test_pending_payment_counter_differs_from_pending_list_size() -> None:
    async def scenario():
        service = AppointmentService(MockLatencyClient(), salon_id=1001)
        ledger = AppointmentLedger()
        statistics = StatisticsService(service, ledger, tz=COLOMBO)
        registry = DerivedViewRegistry(service, ledger, page_size=9, tz=COLOMBO)
        stats = await statistics.refresh()
        pending = await registry.snapshot(ViewId.PENDING_PAYMENTS)
        return stats, pending

    stats, pending = asyncio.run(scenario())

    assert stats.total_pending_payments == 2
    assert pending.total_elements == 6


def test_uses_clock_for_today() -> None:
    fixed = datetime(2030, 1, 1, 12, 0, tzinfo=COLOMBO)

    async def scenario():
        service = AppointmentService(MockLatencyClient(), salon_id=1001)
        statistics = StatisticsService(
            service, AppointmentLedger(), tz=COLOMBO, clock=lambda: fixed
        )
        return await statistics.refresh()

    stats = asyncio.run(scenario())

    assert stats.total_today_appointments == 0
    assert stats.total_daily_income == 0.0
    assert stats.computed_at == fixed


def test_concurrent_first_requests_share_one_sweep() -> None:
    client = MockLatencyClient()

    async def scenario():
        service = AppointmentService(client, salon_id=1001)
        statistics = StatisticsService(service, AppointmentLedger(), tz=COLOMBO)
        return await asyncio.gather(statistics.current(), statistics.current())

    first, second = asyncio.run(scenario())

    assert client.latency_calls == 1
    assert first is second
    assert first.total_customers == 6


def test_current_survives_a_superseding_background_refresh() -> None:
    async def scenario():
        service = AppointmentService(MockLatencyClient(), salon_id=1001)
        statistics = StatisticsService(service, AppointmentLedger(), tz=COLOMBO)
        return await asyncio.gather(statistics.current(), statistics.refresh())

    current, _ = asyncio.run(scenario())

    assert current is not None
    assert current.total_today_appointments == 5
