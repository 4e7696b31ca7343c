import asyncio
import os
import sys
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from frontdesk.schemas.appointment import AppointmentStatus, BookingRequest
from frontdesk.schemas.views import ViewId
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.channel import parse_frame
from frontdesk.services.commands import AppointmentCommands
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.ledger import AppointmentLedger
from frontdesk.services.lifecycle import Action
from frontdesk.services.mock_store import get_mock_store, reset_mock_store
from frontdesk.services.notifications import LoggingNotifier
from frontdesk.services.reconciliation import ReconciliationOrchestrator
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


class ConnectedChannel:
    connected = True


class StalledService:
    def __init__(self, inner: AppointmentService) -> None:
        self._inner = inner

    async def cancel(self, appointment_id, actor_role, reason):
        await asyncio.sleep(1)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def build(actor_role="RECEPTION", channel=None, service_wrapper=None, timeout=5.0):
    notifier = LoggingNotifier()
    inner = AppointmentService(MockLatencyClient(), salon_id=SALON_ID)
    service = service_wrapper(inner) if service_wrapper else inner
    ledger = AppointmentLedger()
    registry = DerivedViewRegistry(inner, ledger, page_size=9, tz=COLOMBO)
    statistics = StatisticsService(inner, ledger, tz=COLOMBO)
    orchestrator = ReconciliationOrchestrator(registry, statistics, inner, notifier=notifier, tz=COLOMBO)
    commands = AppointmentCommands(
        service,
        ledger,
        orchestrator,
        channel,
        actor_role=actor_role,
        notifier=notifier,
        timeout=timeout,
        tz=COLOMBO,
    )
    return commands, registry, ledger, orchestrator, notifier


def test_cancel_twice_reports_invalid_status() -> None:
    async def scenario():
        commands, _, ledger, _, _ = build()
        result = await commands.cancel("1", "Customer called")
        with pytest.raises(ServiceError) as excinfo:
            await commands.cancel("1", "Customer called again")
        return result, excinfo.value, ledger

    result, error, ledger = asyncio.run(scenario())

    assert result.action == "cancel"
    assert result.message == "Appointment cancelled successfully"
    assert error.code is ErrorCode.INVALID_STATUS
    assert ledger.require("1").status is AppointmentStatus.CANCELLED


def test_failed_command_leaves_ledger_and_refetches_record() -> None:
    async def scenario():
        commands, registry, ledger, orchestrator, notifier = build()
        await registry.snapshot(ViewId.ALL_APPOINTMENTS)
        before = ledger.require("1")
        version = ledger.version
        with pytest.raises(ServiceError) as excinfo:
            await commands.confirm_payment("1")
        return before, version, excinfo.value, ledger, orchestrator, notifier

    before, version, error, ledger, orchestrator, notifier = asyncio.run(scenario())

    assert error.code is ErrorCode.INVALID_STATUS
    assert ledger.require("1") == before
    assert ledger.version == version
    assert orchestrator.fetch_counts[("record", "1")] == 1
    assert notifier.recent[-1].code is ErrorCode.INVALID_STATUS


def test_permission_denied_is_classified() -> None:
    async def scenario():
        commands, _, _, orchestrator, _ = build(actor_role="STYLIST")
        with pytest.raises(ServiceError) as excinfo:
            await commands.cancel("1")
        return excinfo.value, orchestrator

    error, orchestrator = asyncio.run(scenario())

    assert error.code is ErrorCode.PERMISSION_DENIED
    assert orchestrator.fetch_counts == {}


def test_complete_session_outside_today_is_a_business_rule_violation() -> None:
    async def scenario():
        commands, _, _, _, _ = build()
        with pytest.raises(ServiceError) as excinfo:
            await commands.complete_session("6")
        return excinfo.value

    error = asyncio.run(scenario())

    assert error.code is ErrorCode.BUSINESS_RULE_VIOLATION


def test_complete_then_confirm_payment() -> None:
    async def scenario():
        commands, _, ledger, _, _ = build()
        await commands.complete_session("1")
        completed = ledger.require("1")
        await commands.confirm_payment("1")
        return completed, ledger.require("1")

    completed, paid = asyncio.run(scenario())

    assert completed.status is AppointmentStatus.PAYMENT_PENDING
    assert paid.status is AppointmentStatus.PAID


def test_connected_channel_skips_pull() -> None:
    async def scenario():
        commands, _, ledger, orchestrator, notifier = build(channel=ConnectedChannel())
        await commands.cancel("2")
        return ledger, orchestrator, notifier

    ledger, orchestrator, notifier = asyncio.run(scenario())

    assert "2" not in ledger
    assert orchestrator.fetch_counts == {}
    assert notifier.recent[-1].title == "Appointment cancelled"


def test_precheck_is_a_hint_from_the_ledger() -> None:
    async def scenario():
        commands, registry, _, _, _ = build()
        unknown = commands.precheck("1", Action.CANCEL)
        await registry.snapshot(ViewId.ALL_APPOINTMENTS)
        return unknown, commands.precheck("7", Action.CANCEL), commands.precheck("1", Action.CANCEL)

    unknown, cancelled, booked = asyncio.run(scenario())

    assert unknown is None
    assert cancelled[0] is ErrorCode.INVALID_STATUS
    assert booked is None


def test_mutation_timeout() -> None:
    async def scenario():
        commands, _, _, _, notifier = build(service_wrapper=StalledService, timeout=0.01)
        with pytest.raises(ServiceError) as excinfo:
            await commands.cancel("1")
        return excinfo.value, notifier

    error, notifier = asyncio.run(scenario())

    assert error.code is ErrorCode.TIMEOUT
    assert notifier.recent[-1].code is ErrorCode.TIMEOUT


def booking_request(day, hour, resource_id="201"):
    return BookingRequest(
        customer_name="Amaya Perera",
        customer_phone="0700000000",
        start=datetime.combine(day, time(hour, 0), tzinfo=COLOMBO),
        resource_id=resource_id,
        services=[{"id": 11, "name": "Haircut", "durationMinutes": 30, "price": 1500.0}],
    )


def test_booking_reaches_ledger_only_through_created_event() -> None:
    async def scenario():
        commands, _, ledger, orchestrator, notifier = build(channel=ConnectedChannel())
        store = get_mock_store()
        feed = store.feed.subscribe(SALON_ID)
        tomorrow = store.appointments.today() + timedelta(days=1)

        result = await commands.book(booking_request(tomorrow, 9))
        before_event = result.appointment_id in ledger

        event = parse_frame(feed.get_nowait(), COLOMBO)
        await orchestrator.on_event(event)
        await orchestrator.drain()
        return result, before_event, event, ledger, notifier

    result, before_event, event, ledger, notifier = asyncio.run(scenario())

    assert result.action == "book"
    assert before_event is False
    assert event.type == "APPOINTMENT_CREATED"
    assert event.appointment_id == result.appointment_id
    assert ledger.require(result.appointment_id).customer_name == "Amaya Perera"
    assert notifier.recent[-1].title == "Appointment booked"


def test_booking_without_channel_pulls_the_new_record() -> None:
    async def scenario():
        commands, _, ledger, orchestrator, _ = build()
        tomorrow = get_mock_store().appointments.today() + timedelta(days=1)
        result = await commands.book(booking_request(tomorrow, 11))
        return result, ledger, orchestrator

    result, ledger, orchestrator = asyncio.run(scenario())

    assert result.appointment_id in ledger
    assert orchestrator.fetch_counts[("record", result.appointment_id)] == 1


def test_booking_overlap_is_rejected_by_backend_and_hinted_locally() -> None:
    async def scenario():
        commands, registry, ledger, orchestrator, notifier = build()
        today = get_mock_store().appointments.today()
        request = booking_request(today, 10)
        blind_hint = commands.slot_hint(request)
        with pytest.raises(ServiceError) as excinfo:
            await commands.book(request)
        await registry.snapshot(ViewId.ALL_APPOINTMENTS)
        return blind_hint, commands.slot_hint(request), excinfo.value, ledger, orchestrator, notifier

    blind_hint, hint, error, ledger, orchestrator, notifier = asyncio.run(scenario())

    assert blind_hint is None
    assert hint[0] is ErrorCode.BUSINESS_RULE_VIOLATION
    assert error.code is ErrorCode.BUSINESS_RULE_VIOLATION
    assert len(ledger) == 7
    assert orchestrator.fetch_counts == {}
    assert notifier.recent[-1].title == "Could not book"
