import asyncio
import os
import sys
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from frontdesk.schemas.appointment import AppointmentStatus
from frontdesk.schemas.events import ChannelEvent, EventType
from frontdesk.schemas.views import ViewId
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.channel import parse_frame
from frontdesk.services.exceptions import DownstreamServiceError, ErrorCode
from frontdesk.services.ledger import AppointmentLedger
from frontdesk.services.mock_store import get_mock_store, reset_mock_store
from frontdesk.services.notifications import LoggingNotifier
from frontdesk.services.reconciliation import EVENT_INVALIDATIONS, ReconciliationOrchestrator
from frontdesk.services.statistics import StatisticsService
from frontdesk.services.views import DerivedViewRegistry


COLOMBO = ZoneInfo("Asia/Colombo")
SALON_ID = 1001


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_mock_store()
    yield
    reset_mock_store()


class MockLatencyClient:
    def __init__(self) -> None:
        self.use_mock_data = True

    async def simulate_latency(self) -> None:
        return None


class HeldPendingService:
    """Counts concurrent pending-payment fetches and holds each until released."""

    def __init__(self, inner: AppointmentService) -> None:
        self._inner = inner
        self.release = asyncio.Event()
        self.active = 0
        self.max_active = 0
        self.calls = 0

    async def list_pending_payments(self, page, size, sort_field="totalAmount", sort_dir="desc"):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            result = await self._inner.list_pending_payments(page, size, sort_field, sort_dir)
            await self.release.wait()
            return result
        finally:
            self.active -= 1

    def __getattr__(self, name):
        return getattr(self._inner, name)


class FailingService:
    def __init__(self, inner: AppointmentService) -> None:
        self._inner = inner

    async def list_today(self, page, size, sort_field="appointmentDate", sort_dir="asc"):
        raise DownstreamServiceError("backend down", status_code=503, code=ErrorCode.NETWORK)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def build(service_wrapper=None, notifier=None, clock=None):
    inner = AppointmentService(MockLatencyClient(), salon_id=SALON_ID)
    service = service_wrapper(inner) if service_wrapper else inner
    ledger = AppointmentLedger()
    registry = DerivedViewRegistry(service, ledger, page_size=9, tz=COLOMBO, clock=clock)
    statistics = StatisticsService(inner, ledger, tz=COLOMBO, clock=clock)
    orchestrator = ReconciliationOrchestrator(
        registry, statistics, inner, notifier=notifier, tz=COLOMBO, clock=clock
    )
    return service, registry, ledger, statistics, orchestrator


def test_invalidation_table_covers_every_event_type() -> None:
    assert set(EVENT_INVALIDATIONS) == set(EventType)
    assert EVENT_INVALIDATIONS[EventType.SESSION_COMPLETED] == {
        ViewId.TODAY,
        ViewId.ALL_APPOINTMENTS,
        ViewId.STATISTICS,
    }
    for views in EVENT_INVALIDATIONS.values():
        assert ViewId.STATISTICS in views


def test_created_event_for_another_day_skips_today_view() -> None:
    fixed = datetime(2025, 9, 22, 9, 0, tzinfo=COLOMBO)
    _, _, _, _, orchestrator = build(clock=lambda: fixed)

    other_day = ChannelEvent(type="APPOINTMENT_CREATED", appointment_date=date(2025, 9, 25))
    same_day = ChannelEvent(type="APPOINTMENT_CREATED", appointment_date=date(2025, 9, 22))
    unknown_day = ChannelEvent(type="APPOINTMENT_CREATED")

    assert ViewId.TODAY not in orchestrator.invalidations(other_day)
    assert ViewId.TODAY in orchestrator.invalidations(same_day)
    assert ViewId.TODAY in orchestrator.invalidations(unknown_day)


def test_created_event_after_midnight_local_time_refreshes_today() -> None:
    fixed = datetime(2025, 9, 23, 1, 0, tzinfo=COLOMBO)
    _, _, _, _, orchestrator = build(clock=lambda: fixed)
    frame = '{"type": "APPOINTMENT_CREATED", "appointmentId": 8, "appointmentDate": "2025-09-22T20:30:00Z"}'

    event = parse_frame(frame, COLOMBO)

    assert event.appointment_date == date(2025, 9, 23)
    assert ViewId.TODAY in orchestrator.invalidations(event)


def test_payment_event_during_inflight_refetch_is_coalesced() -> None:
    async def scenario():
        held, registry, ledger, _, orchestrator = build(HeldPendingService)
        registry.get(ViewId.PENDING_PAYMENTS)

        orchestrator.request_refetch(ViewId.PENDING_PAYMENTS)
        for _ in range(5):
            await asyncio.sleep(0)
        assert held.active == 1

        await get_mock_store().appointments.confirm_payment("3", user_role="RECEPTION")
        event = ChannelEvent(type="PAYMENT_CONFIRMED", appointment_id="3", amount=2300.0)
        invalidated = await orchestrator.on_event(event)
        await orchestrator.on_event(event)
        for _ in range(5):
            await asyncio.sleep(0)
        active_after_event = held.active

        held.release.set()
        await orchestrator.drain()
        return held, registry, ledger, orchestrator, invalidated, active_after_event

    held, registry, ledger, orchestrator, invalidated, active_after_event = asyncio.run(scenario())

    assert ViewId.PENDING_PAYMENTS in invalidated
    assert active_after_event == 1
    assert held.max_active == 1
    assert held.calls == 2
    assert orchestrator.fetch_counts[ViewId.PENDING_PAYMENTS] == 2
    assert ledger.require("3").status is AppointmentStatus.PAID
    pending_ids = [item.id for item in registry.get(ViewId.PENDING_PAYMENTS).items()]
    assert "3" not in pending_ids


def test_duplicate_cancel_events_leave_ledger_unchanged() -> None:
    async def scenario():
        _, registry, ledger, _, orchestrator = build()
        await registry.snapshot(ViewId.ALL_APPOINTMENTS)
        await get_mock_store().appointments.cancel("1", user_role="RECEPTION", reason="Walked out")
        frame = '{"type": "APPOINTMENT_CANCELLED", "appointment_data": {"id": 1}}'

        await orchestrator.on_event(parse_frame(frame))
        await orchestrator.drain()
        first = (ledger.version, dict(ledger.snapshot()))

        await orchestrator.on_event(parse_frame(frame))
        await orchestrator.drain()
        second = (ledger.version, dict(ledger.snapshot()))
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second
    assert first[1]["1"].status is AppointmentStatus.CANCELLED


def test_record_refresh_reaches_records_outside_current_pages() -> None:
    async def scenario():
        _, _, ledger, _, orchestrator = build()
        repository = get_mock_store().appointments
        tomorrow = repository.today() + timedelta(days=1)
        created = await repository.book(
            salon_id=SALON_ID,
            customer_name="Amaya",
            customer_phone="0700000000",
            services=[{"id": 11, "name": "Haircut", "durationMinutes": 30, "price": 1500.0}],
            appointment_date=datetime.combine(tomorrow, time(9, 0), tzinfo=COLOMBO).isoformat(),
        )
        await orchestrator.on_event(
            ChannelEvent(type="APPOINTMENT_CREATED", appointment_id=str(created["id"]))
        )
        await orchestrator.drain()
        return ledger, str(created["id"])

    ledger, created_id = asyncio.run(scenario())

    assert created_id in ledger
    assert ledger.require(created_id).customer_name == "Amaya"


def test_unopened_views_are_not_fetched() -> None:
    async def scenario():
        _, _, _, _, orchestrator = build()
        invalidated = await orchestrator.on_event(ChannelEvent(type="SESSION_COMPLETED"))
        await orchestrator.drain()
        return invalidated, orchestrator

    invalidated, orchestrator = asyncio.run(scenario())

    assert ViewId.TODAY in invalidated
    assert orchestrator.fetch_counts == {}


def test_background_failure_is_notified_not_raised() -> None:
    notifier = LoggingNotifier()

    async def scenario():
        _, registry, _, _, orchestrator = build(FailingService, notifier=notifier)
        registry.get(ViewId.TODAY)
        await orchestrator.on_event(ChannelEvent(type="SESSION_COMPLETED"))
        await orchestrator.drain()
        return registry.get(ViewId.TODAY)

    view = asyncio.run(scenario())

    assert view.last_error == "backend down"
    assert notifier.recent[-1].code is ErrorCode.NETWORK
    assert notifier.recent[-1].persistent is False
