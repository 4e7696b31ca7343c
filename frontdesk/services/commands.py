from __future__ import annotations

import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Tuple, TypeVar

from frontdesk.schemas.appointment import BookingRequest, CommandResult
from frontdesk.schemas.views import ViewId
from frontdesk.services import lifecycle
from frontdesk.services.appointment import AppointmentService
from frontdesk.services.channel import EventChannel
from frontdesk.services.exceptions import ErrorCode, ServiceError
from frontdesk.services.ledger import AppointmentLedger
from frontdesk.services.lifecycle import Action
from frontdesk.services.notifications import Notification, Notifier
from frontdesk.services.reconciliation import ReconciliationOrchestrator
from frontdesk.services.slots import DailyGrid, available_slots

logger = logging.getLogger(__name__)

ACTION_VIEWS: Dict[Action, FrozenSet[ViewId]] = {
    Action.CANCEL: frozenset(
        {ViewId.ALL_APPOINTMENTS, ViewId.TODAY, ViewId.PENDING_PAYMENTS, ViewId.STATISTICS}
    ),
    Action.CONFIRM_PAYMENT: frozenset(
        {ViewId.PENDING_PAYMENTS, ViewId.ALL_APPOINTMENTS, ViewId.TODAY, ViewId.STATISTICS}
    ),
    Action.COMPLETE_SESSION: frozenset(
        {ViewId.TODAY, ViewId.ALL_APPOINTMENTS, ViewId.STATISTICS}
    ),
}

BOOK_VIEWS: FrozenSet[ViewId] = frozenset(
    {ViewId.ALL_APPOINTMENTS, ViewId.TODAY, ViewId.STATISTICS}
)

_SUCCESS_TITLES = {
    Action.CANCEL: "Appointment cancelled",
    Action.CONFIRM_PAYMENT: "Payment confirmed",
    Action.COMPLETE_SESSION: "Session completed",
}

_REFETCH_ON = (ErrorCode.INVALID_STATUS, ErrorCode.BUSINESS_RULE_VIOLATION)

T = TypeVar("T")


class AppointmentCommands:
    """Reception actions on a single appointment.

    The backend is the only judge of whether an action is allowed; the local
    precheck is a hint. Nothing here writes to the ledger: the resulting state
    arrives through the event channel, or through an explicit pull when the
    channel is down.
    """

    def __init__(
        self,
        service: AppointmentService,
        ledger: AppointmentLedger,
        orchestrator: ReconciliationOrchestrator,
        channel: Optional[EventChannel] = None,
        *,
        actor_role: str = "RECEPTION",
        notifier: Optional[Notifier] = None,
        timeout: float = 10.0,
        grid: Optional[DailyGrid] = None,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._service = service
        self._grid = grid or DailyGrid(tz=tz)
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._channel = channel
        self._actor_role = actor_role
        self._notifier = notifier
        self._timeout = timeout
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz))

    def precheck(self, appointment_id: str, action: Action) -> Optional[Tuple[ErrorCode, str]]:
        appointment = self._ledger.get(appointment_id)
        if appointment is None:
            return None
        return lifecycle.check(appointment, action, self._clock().date(), self._tz)

    def slot_hint(self, request: BookingRequest) -> Optional[Tuple[ErrorCode, str]]:
        """Whether the requested start is a free slot according to the ledger."""

        start = request.start
        if self._tz is not None and start.tzinfo is not None:
            start = start.astimezone(self._tz)
        slots = available_slots(
            start.date(),
            request.resource_id,
            request.duration_minutes,
            self._ledger.snapshot().values(),
            grid=self._grid,
        )
        if any(slot.start == start.time() for slot in slots):
            return None
        return (
            ErrorCode.BUSINESS_RULE_VIOLATION,
            f"{start.strftime('%Y-%m-%d %H:%M')} is not a free {request.duration_minutes} minute slot",
        )

    async def book(self, request: BookingRequest) -> CommandResult:
        if request.start.tzinfo is None and self._tz is not None:
            request = request.model_copy(update={"start": request.start.replace(tzinfo=self._tz)})
        self._log_hint("book", request.customer_name, self.slot_hint(request))
        appointment_id, message = await self._call(
            "book", None, lambda: self._service.book(request, self._actor_role)
        )
        return await self._succeeded("book", appointment_id, message, "Appointment booked", BOOK_VIEWS)

    async def cancel(self, appointment_id: str, reason: str = "Cancelled by reception") -> CommandResult:
        return await self._execute(
            Action.CANCEL,
            appointment_id,
            lambda: self._service.cancel(appointment_id, self._actor_role, reason),
        )

    async def confirm_payment(self, appointment_id: str) -> CommandResult:
        return await self._execute(
            Action.CONFIRM_PAYMENT,
            appointment_id,
            lambda: self._service.confirm_payment(appointment_id, self._actor_role),
        )

    async def complete_session(self, appointment_id: str) -> CommandResult:
        return await self._execute(
            Action.COMPLETE_SESSION,
            appointment_id,
            lambda: self._service.complete_session(appointment_id, self._actor_role),
        )

    async def _execute(
        self,
        action: Action,
        appointment_id: str,
        call: Callable[[], Awaitable[str]],
    ) -> CommandResult:
        self._log_hint(action.value, appointment_id, self.precheck(appointment_id, action))
        message = await self._call(action.value, appointment_id, call)
        return await self._succeeded(
            action.value, appointment_id, message, _SUCCESS_TITLES[action], ACTION_VIEWS[action]
        )

    @staticmethod
    def _log_hint(action: str, target: str, hint: Optional[Tuple[ErrorCode, str]]) -> None:
        if hint is not None:
            logger.info(
                "Local check expects %s on %s to fail (%s: %s); asking the backend anyway",
                action,
                target,
                hint[0].value,
                hint[1],
            )

    async def _call(
        self,
        action: str,
        appointment_id: Optional[str],
        call: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            target = f"appointment {appointment_id}" if appointment_id else "new appointment"
            error = ServiceError(f"{action} for {target} timed out", code=ErrorCode.TIMEOUT, cause=exc)
            await self._failed(action, appointment_id, error)
            raise error from exc
        except ServiceError as exc:
            await self._failed(action, appointment_id, exc)
            raise

    async def _succeeded(
        self,
        action: str,
        appointment_id: str,
        message: str,
        title: str,
        views: FrozenSet[ViewId],
    ) -> CommandResult:
        logger.info("%s succeeded for appointment %s", action, appointment_id)
        self._notify(Notification(level="success", title=title, message=message))
        if self._channel is None or not self._channel.connected:
            logger.info("Event channel unavailable; pulling state for %s", appointment_id)
            await self._orchestrator.pull(appointment_id, views)
        return CommandResult(appointment_id=appointment_id, action=action, message=message)

    async def _failed(self, action: str, appointment_id: Optional[str], error: ServiceError) -> None:
        logger.warning(
            "%s failed for appointment %s (%s): %s",
            action,
            appointment_id or "(new)",
            error.code.value,
            error,
        )
        self._notify(
            Notification(
                level="error",
                title=f"Could not {action.replace('-', ' ')}",
                message=str(error),
                code=error.code,
            )
        )
        if appointment_id and error.code in _REFETCH_ON:
            await self._orchestrator.refresh_record(appointment_id)

    def _notify(self, notification: Notification) -> None:
        if self._notifier is not None:
            self._notifier.notify(notification)
