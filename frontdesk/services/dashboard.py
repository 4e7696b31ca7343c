from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from frontdesk.clients.backend import SalonBackendClient
from frontdesk.clients.realtime import QueueTransport, WebSocketTransport
from frontdesk.config import Settings
from frontdesk.schemas.appointment import Appointment
from frontdesk.schemas.slots import SlotResponse
from frontdesk.schemas.views import AggregateStatistics
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.channel import EventChannel, TransportFactory
from frontdesk.services.commands import AppointmentCommands
from frontdesk.services.exceptions import SlotCalculationError
from frontdesk.services.ledger import AppointmentLedger
from frontdesk.services.mock_store import AppointmentRepository, get_mock_store
from frontdesk.services.notifications import LoggingNotifier, Notifier
from frontdesk.services.reconciliation import ReconciliationOrchestrator
from frontdesk.services.slots import DailyGrid, available_slots
from frontdesk.services.statistics import StatisticsService
from frontdesk.services.views import DerivedViewRegistry

logger = logging.getLogger(__name__)


class ReceptionDashboard:
    """One salon's reception session: ledger, views, feed and actions wired together."""

    def __init__(
        self,
        settings: Settings,
        client: SalonBackendClient,
        *,
        notifier: Optional[Notifier] = None,
        transport_factory: Optional[TransportFactory] = None,
        repository: Optional[AppointmentRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.tz = ZoneInfo(settings.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.notifier = notifier or LoggingNotifier()
        self.grid = DailyGrid.from_settings(settings)
        self.ledger = AppointmentLedger()
        self.service = AppointmentService(
            client,
            salon_id=settings.salon_id,
            branch_id=settings.branch_id,
            repository=repository,
        )
        self.views = DerivedViewRegistry(
            self.service,
            self.ledger,
            page_size=settings.default_page_size,
            timeout=settings.refetch_timeout,
            tz=self.tz,
            clock=self.clock,
        )
        self.statistics = StatisticsService(
            self.service,
            self.ledger,
            page_size=settings.statistics_page_size,
            timeout=settings.refetch_timeout,
            tz=self.tz,
            clock=self.clock,
        )
        self.orchestrator = ReconciliationOrchestrator(
            self.views,
            self.statistics,
            self.service,
            notifier=self.notifier,
            timeout=settings.refetch_timeout,
            tz=self.tz,
            clock=self.clock,
        )

        factory = transport_factory or self._default_transport_factory()
        self.channel: Optional[EventChannel] = None
        if factory is not None:
            self.channel = EventChannel(
                factory,
                on_event=self.orchestrator.on_event,
                on_connected=self.orchestrator.flush,
                notifier=self.notifier,
                auto_reconnect=settings.channel_auto_reconnect,
                backoff_base=settings.channel_backoff_base,
                backoff_cap=settings.channel_backoff_cap,
                max_reconnect_attempts=settings.channel_max_reconnect_attempts,
                tz=self.tz,
            )

        self.commands = AppointmentCommands(
            self.service,
            self.ledger,
            self.orchestrator,
            self.channel,
            actor_role=settings.actor_role,
            notifier=self.notifier,
            timeout=settings.mutation_timeout,
            grid=self.grid,
            tz=self.tz,
            clock=self.clock,
        )

    def _default_transport_factory(self) -> Optional[TransportFactory]:
        salon_id = self.settings.salon_id
        if self.client.use_mock_data:
            feed = get_mock_store().feed
            return lambda: QueueTransport(feed, salon_id)
        url = self.settings.websocket_url()
        if url is None:
            logger.warning("No websocket URL configured; real-time updates are disabled")
            return None
        token = self.settings.backend_token
        heartbeat = self.settings.channel_heartbeat
        return lambda: WebSocketTransport(url, token=token, heartbeat=heartbeat)

    async def start(self) -> None:
        if self.channel is not None:
            await self.channel.start()
        logger.info("Reception dashboard started for salon %s", self.settings.salon_id)

    async def stop(self) -> None:
        if self.channel is not None:
            await self.channel.stop()
        await self.orchestrator.drain()
        logger.info("Reception dashboard stopped for salon %s", self.settings.salon_id)

    def today(self) -> date:
        return self.clock().date()

    async def get_statistics(self, refresh: bool = False) -> AggregateStatistics:
        return await self.statistics.current(refresh=refresh)

    async def available_slots(
        self, day: date, resource_id: Optional[str], duration_minutes: int
    ) -> SlotResponse:
        """Start slots on ``day`` checked against every appointment the ledger knows."""

        if duration_minutes <= 0:
            raise SlotCalculationError(f"Requested duration must be positive, got {duration_minutes}")
        if self.statistics.latest is None:
            await self.statistics.current()
        bookings = list(self.ledger.snapshot().values())
        slots = available_slots(day, resource_id, duration_minutes, bookings, grid=self.grid)
        return SlotResponse(
            date=day,
            resource_id=resource_id,
            duration_minutes=duration_minutes,
            slots=slots,
        )

    def search(self, term: str) -> List[Appointment]:
        return sorted(self.ledger.search(term), key=lambda appointment: appointment.start)
