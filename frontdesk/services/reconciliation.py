"""Turns channel events into targeted refreshes.

Refreshes are coalesced per target: while a refresh of a view (or of one
appointment record) is running, further requests for it are folded into a
single trailing refresh that starts once the running one finishes. A target
is therefore never fetched twice concurrently, and the last trigger is always
followed by a fetch that starts after it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional, Set

from frontdesk.schemas.events import ChannelEvent, EventType
from frontdesk.schemas.views import ViewId
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.notifications import Notification, Notifier
from frontdesk.services.statistics import StatisticsService
from frontdesk.services.views import DerivedViewRegistry

logger = logging.getLogger(__name__)

V = ViewId

EVENT_INVALIDATIONS: Dict[EventType, FrozenSet[ViewId]] = {
    EventType.APPOINTMENT_CREATED: frozenset({V.ALL_APPOINTMENTS, V.TODAY, V.STATISTICS}),
    EventType.APPOINTMENT_UPDATED: frozenset(
        {V.ALL_APPOINTMENTS, V.TODAY, V.PENDING_PAYMENTS, V.STATISTICS}
    ),
    EventType.APPOINTMENT_CANCELLED: frozenset(
        {V.ALL_APPOINTMENTS, V.TODAY, V.PENDING_PAYMENTS, V.STATISTICS}
    ),
    EventType.PAYMENT_RECEIVED: frozenset(
        {V.PENDING_PAYMENTS, V.ALL_APPOINTMENTS, V.TODAY, V.STATISTICS}
    ),
    EventType.PAYMENT_CONFIRMED: frozenset(
        {V.PENDING_PAYMENTS, V.ALL_APPOINTMENTS, V.TODAY, V.STATISTICS}
    ),
    EventType.SESSION_COMPLETED: frozenset({V.TODAY, V.ALL_APPOINTMENTS, V.STATISTICS}),
}


class ReconciliationOrchestrator:
    def __init__(
        self,
        views: DerivedViewRegistry,
        statistics: StatisticsService,
        service: AppointmentService,
        *,
        notifier: Optional[Notifier] = None,
        timeout: float = 10.0,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._views = views
        self._statistics = statistics
        self._service = service
        self._notifier = notifier
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(tz))
        self._inflight: Dict[Hashable, asyncio.Task] = {}
        self._trailing: Set[Hashable] = set()
        self.fetch_counts: Dict[Hashable, int] = {}

    def invalidations(self, event: ChannelEvent) -> Set[ViewId]:
        event_type = event.event_type
        if event_type is None:
            return set()
        views = set(EVENT_INVALIDATIONS[event_type])
        if (
            event_type is EventType.APPOINTMENT_CREATED
            and event.appointment_date is not None
            and event.appointment_date != self._clock().date()
        ):
            views.discard(ViewId.TODAY)
        return views

    async def on_event(self, event: ChannelEvent) -> Set[ViewId]:
        """Schedule the refreshes an event calls for and return the invalidated views."""

        views = self.invalidations(event)
        logger.info(
            "Event %s invalidates %s",
            event.type,
            ", ".join(sorted(view.value for view in views)) or "nothing",
        )
        for view_id in views:
            self.request_refetch(view_id)
        if event.appointment_id:
            self.refresh_record(event.appointment_id)
        return views

    async def flush(self, views: Iterable[ViewId]) -> None:
        for view_id in views:
            self.request_refetch(view_id)

    def _is_active(self, view_id: ViewId) -> bool:
        if view_id is ViewId.STATISTICS:
            return self._statistics.latest is not None
        return view_id in self._views.active()

    def request_refetch(self, view_id: ViewId, *, force: bool = False) -> Optional[asyncio.Task]:
        """Refresh a view in the background; views nobody has opened are skipped."""

        if not force and not self._is_active(view_id):
            logger.debug("Skipping refresh of unopened view %s", view_id.value)
            return None
        if view_id is ViewId.STATISTICS:
            return self._schedule(view_id, self._statistics.refresh)
        return self._schedule(view_id, lambda: self._views.refetch(view_id))

    def refresh_record(self, appointment_id: str) -> asyncio.Task:
        return self._schedule(("record", appointment_id), lambda: self._fetch_record(appointment_id))

    def refresh_all(self) -> List[asyncio.Task]:
        views = [*self._views.active(), ViewId.STATISTICS]
        return [task for task in (self.request_refetch(view_id) for view_id in views) if task]

    async def pull(self, appointment_id: Optional[str], views: Iterable[ViewId]) -> None:
        """Explicit reconciliation used while the event feed is unavailable."""

        tasks = [task for task in (self.request_refetch(view_id) for view_id in views) if task]
        if appointment_id:
            tasks.append(self.refresh_record(appointment_id))
        if tasks:
            await asyncio.gather(*tasks)

    async def drain(self) -> None:
        """Wait until no refresh is running or queued."""

        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    def _schedule(self, key: Hashable, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        task = self._inflight.get(key)
        if task is not None and not task.done():
            self._trailing.add(key)
            return task
        task = asyncio.create_task(self._drive(key, factory))
        self._inflight[key] = task
        return task

    async def _drive(self, key: Hashable, factory: Callable[[], Awaitable[object]]) -> None:
        try:
            while True:
                self._trailing.discard(key)
                self.fetch_counts[key] = self.fetch_counts.get(key, 0) + 1
                try:
                    await factory()
                except ServiceError as exc:
                    self._report(key, exc)
                if key not in self._trailing:
                    return
                logger.debug("Running trailing refresh for %s", key)
        finally:
            self._inflight.pop(key, None)

    async def _fetch_record(self, appointment_id: str) -> None:
        try:
            appointment = await asyncio.wait_for(
                self._service.get(appointment_id), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise ServiceError(
                f"Fetching appointment {appointment_id} timed out",
                code=ErrorCode.TIMEOUT,
                cause=exc,
            ) from exc
        self._views.ledger.upsert(appointment)

    def _report(self, key: Hashable, exc: ServiceError) -> None:
        target = key.value if isinstance(key, ViewId) else f"appointment {key[1]}"
        logger.warning("Background refresh of %s failed (%s): %s", target, exc.code.value, exc)
        if self._notifier is not None:
            self._notifier.notify(
                Notification(
                    level="warning",
                    title="Refresh failed",
                    message=f"Could not refresh {target}: {exc}",
                    code=exc.code,
                )
            )
