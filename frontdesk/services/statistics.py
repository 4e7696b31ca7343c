from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, tzinfo
from typing import Callable, Iterable, List, Optional

from frontdesk.schemas.appointment import Appointment, AppointmentStatus
from frontdesk.schemas.views import AggregateStatistics
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.ledger import AppointmentLedger

logger = logging.getLogger(__name__)


def compute_statistics(
    appointments: Iterable[Appointment],
    today: date,
    tz: Optional[tzinfo] = None,
    computed_at: Optional[datetime] = None,
) -> AggregateStatistics:
    """Dashboard counters over the complete appointment set.

    ``total_pending_payments`` counts completed sessions still awaiting
    payment. It is not the size of the pending-payments list, which also holds
    appointments that have not been served yet.
    """

    customers = set()
    today_count = 0
    pending = 0
    income = 0.0
    for appointment in appointments:
        if appointment.customer_phone:
            customers.add(appointment.customer_phone)
        start = appointment.start
        if tz is not None and start.tzinfo is not None:
            start = start.astimezone(tz)
        on_today = start.date() == today
        if on_today:
            today_count += 1
        if appointment.awaiting_payment:
            pending += 1
        if on_today and appointment.status is AppointmentStatus.PAID:
            income += appointment.final_amount

    return AggregateStatistics(
        total_customers=len(customers),
        total_today_appointments=today_count,
        total_pending_payments=pending,
        total_daily_income=round(income, 2),
        computed_at=computed_at,
    )


class StatisticsService:
    """Aggregate counters refreshed from an unpaginated sweep of the backend."""

    def __init__(
        self,
        service: AppointmentService,
        ledger: AppointmentLedger,
        *,
        page_size: int = 200,
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
        self._issued = 0
        self._shared: Optional[asyncio.Task] = None
        self.latest: Optional[AggregateStatistics] = None
        self.last_error: Optional[str] = None

    async def _sweep(self) -> List[Appointment]:
        records: List[Appointment] = []
        page = 0
        while True:
            result = await self._service.list_appointments(page, self._page_size)
            records.extend(result.content)
            page += 1
            if page >= result.total_pages or not result.content:
                return records

    async def refresh(self) -> Optional[AggregateStatistics]:
        """Recompute the counters; returns ``None`` if a newer refresh superseded this one."""

        self._issued += 1
        seq = self._issued
        try:
            records = await asyncio.wait_for(self._sweep(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            error = ServiceError("Refreshing statistics timed out", code=ErrorCode.TIMEOUT, cause=exc)
            if seq == self._issued:
                self.last_error = str(error)
            raise error from exc
        except ServiceError as exc:
            if seq == self._issued:
                self.last_error = str(exc)
            raise

        if seq != self._issued:
            logger.debug("Discarding superseded statistics sweep seq=%s", seq)
            return None

        self._ledger.replace_many(records)
        now = self._clock()
        self.latest = compute_statistics(records, now.date(), self._tz, computed_at=now)
        self.last_error = None
        logger.debug("Statistics refreshed from %s appointments", len(records))
        return self.latest

    async def current(self, refresh: bool = False) -> AggregateStatistics:
        """Latest counters, computing them when missing or when ``refresh`` is set.

        Callers that arrive while a sweep started here is running wait for it
        instead of issuing their own, so none of them sees a superseded result.
        """

        while refresh or self.latest is None:
            task = self._shared
            if task is None or task.done():
                task = self._shared = asyncio.create_task(self.refresh())
            result = await task
            if result is not None:
                return result
            # A background refresh superseded this sweep; wait for the next one.
            refresh = False
        return self.latest
