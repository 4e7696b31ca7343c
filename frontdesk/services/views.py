"""Paginated projections of the appointment ledger.

Each view owns a page cursor (moved only by page-change requests) and a
sequence counter. Every fetch takes a fresh sequence number and its response
is applied only if no newer fetch has been issued for the same view since, so
rapid page changes converge on the last requested page and late responses are
discarded on arrival.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Awaitable, Callable, Dict, List, Optional

from frontdesk.schemas.appointment import Appointment, AppointmentPage, PaymentStatus
from frontdesk.schemas.views import PAGED_VIEWS, SortDirection, ViewId, ViewSnapshot
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.ledger import AppointmentLedger

logger = logging.getLogger(__name__)

Loader = Callable[[int, int, str, str], Awaitable[AppointmentPage]]
Predicate = Callable[[Appointment, date, Optional[tzinfo]], bool]


def _local_date(appointment: Appointment, tz: Optional[tzinfo]) -> date:
    start = appointment.start
    if tz is not None and start.tzinfo is not None:
        start = start.astimezone(tz)
    return start.date()


def _any(appointment: Appointment, today: date, tz: Optional[tzinfo]) -> bool:
    return True


def _scheduled_today(appointment: Appointment, today: date, tz: Optional[tzinfo]) -> bool:
    return _local_date(appointment, tz) == today


def _payment_pending(appointment: Appointment, today: date, tz: Optional[tzinfo]) -> bool:
    return appointment.payment_status is PaymentStatus.PENDING


@dataclass(frozen=True)
class ViewDefinition:
    view_id: ViewId
    sort_field: str
    sort_direction: SortDirection
    predicate: Predicate


VIEW_DEFINITIONS: Dict[ViewId, ViewDefinition] = {
    ViewId.ALL_APPOINTMENTS: ViewDefinition(
        ViewId.ALL_APPOINTMENTS, "createdAt", SortDirection.ASC, _any
    ),
    ViewId.TODAY: ViewDefinition(
        ViewId.TODAY, "appointmentDate", SortDirection.ASC, _scheduled_today
    ),
    ViewId.PENDING_PAYMENTS: ViewDefinition(
        ViewId.PENDING_PAYMENTS, "totalAmount", SortDirection.DESC, _payment_pending
    ),
}


class DerivedView:
    def __init__(
        self,
        definition: ViewDefinition,
        loader: Loader,
        ledger: AppointmentLedger,
        *,
        page_size: int,
        timeout: float,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime],
    ) -> None:
        self.definition = definition
        self._loader = loader
        self._ledger = ledger
        self._timeout = timeout
        self._tz = tz
        self._clock = clock
        self.page = 0
        self.size = page_size
        self.total_elements = 0
        self.total_pages = 0
        self.last_refreshed_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._item_ids: List[str] = []
        self._issued = 0
        self._applied = 0

    @property
    def view_id(self) -> ViewId:
        return self.definition.view_id

    @property
    def latest_seq(self) -> int:
        return self._issued

    @property
    def loaded(self) -> bool:
        return self._applied > 0

    def matches(self, appointment: Appointment) -> bool:
        return self.definition.predicate(appointment, self._clock().date(), self._tz)

    async def refetch(self) -> bool:
        """Reload the current page; return ``False`` if the result was superseded."""

        self._issued += 1
        seq = self._issued
        page, size = self.page, self.size
        logger.debug("Fetching %s page=%s size=%s seq=%s", self.view_id.value, page, size, seq)
        try:
            result = await asyncio.wait_for(
                self._loader(
                    page,
                    size,
                    self.definition.sort_field,
                    self.definition.sort_direction.value,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            error = ServiceError(
                f"Refreshing {self.view_id.value} timed out", code=ErrorCode.TIMEOUT, cause=exc
            )
            self._record_error(seq, error)
            raise error from exc
        except ServiceError as exc:
            self._record_error(seq, exc)
            raise

        if seq != self._issued:
            logger.debug(
                "Discarding superseded %s response seq=%s (latest %s)",
                self.view_id.value,
                seq,
                self._issued,
            )
            return False

        self._ledger.replace_many(result.content)
        self._item_ids = [appointment.id for appointment in result.content]
        self.total_elements = result.total_elements
        self.total_pages = result.total_pages
        self.last_refreshed_at = self._clock()
        self.last_error = None
        self._applied = seq
        return True

    def _record_error(self, seq: int, error: ServiceError) -> None:
        if seq == self._issued:
            self.last_error = str(error)
        logger.warning("Refreshing %s failed: %s", self.view_id.value, error)

    async def change_page(self, page: int, size: Optional[int] = None) -> bool:
        """Move the cursor and load it; a failed load puts the cursor back."""

        previous = (self.page, self.size)
        self.page = page
        if size is not None:
            self.size = size
        seq = self._issued + 1
        try:
            return await self.refetch()
        except ServiceError:
            # Only the latest request owns the cursor.
            if seq == self._issued:
                self.page, self.size = previous
            raise

    def items(self) -> List[Appointment]:
        """Current page read through the ledger, dropping rows that left the view."""

        records = self._ledger.snapshot()
        items = []
        for appointment_id in self._item_ids:
            appointment = records.get(appointment_id)
            if appointment is not None and self.matches(appointment):
                items.append(appointment)
        return items

    def snapshot(self) -> ViewSnapshot:
        return ViewSnapshot(
            view_id=self.view_id,
            page=self.page,
            size=self.size,
            sort_field=self.definition.sort_field,
            sort_direction=self.definition.sort_direction,
            total_elements=self.total_elements,
            total_pages=self.total_pages,
            last_refreshed_at=self.last_refreshed_at,
            last_error=self.last_error,
            items=self.items(),
        )


class DerivedViewRegistry:
    """Lazily created paginated views over one ledger."""

    def __init__(
        self,
        service: AppointmentService,
        ledger: AppointmentLedger,
        *,
        page_size: int = 9,
        timeout: float = 10.0,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._service = service
        self._ledger = ledger
        self._page_size = page_size
        self._timeout = timeout
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz))
        self._views: Dict[ViewId, DerivedView] = {}
        self._loaders: Dict[ViewId, Loader] = {
            ViewId.ALL_APPOINTMENTS: service.list_appointments,
            ViewId.TODAY: service.list_today,
            ViewId.PENDING_PAYMENTS: service.list_pending_payments,
        }

    @property
    def ledger(self) -> AppointmentLedger:
        return self._ledger

    def get(self, view_id: ViewId) -> DerivedView:
        if view_id not in PAGED_VIEWS:
            raise ValueError(f"{view_id.value} is not a paginated view")
        view = self._views.get(view_id)
        if view is None:
            view = DerivedView(
                VIEW_DEFINITIONS[view_id],
                self._loaders[view_id],
                self._ledger,
                page_size=self._page_size,
                timeout=self._timeout,
                tz=self._tz,
                clock=self._clock,
            )
            self._views[view_id] = view
            logger.debug("Created view %s", view_id.value)
        return view

    def active(self) -> List[ViewId]:
        return list(self._views)

    async def refetch(self, view_id: ViewId) -> bool:
        return await self.get(view_id).refetch()

    async def change_page(self, view_id: ViewId, page: int, size: Optional[int] = None) -> ViewSnapshot:
        view = self.get(view_id)
        await view.change_page(page, size)
        return view.snapshot()

    async def snapshot(self, view_id: ViewId) -> ViewSnapshot:
        """Snapshot of a view, loading its first page on first access."""

        view = self.get(view_id)
        if not view.loaded:
            await view.refetch()
        return view.snapshot()
