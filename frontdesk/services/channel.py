"""Real-time appointment feed.

The channel owns one transport at a time and walks
``disconnected -> connecting -> connected -> disconnected``. A clean close
from the server ends the session. A network failure schedules reconnects with
capped exponential backoff and jitter until ``max_reconnect_attempts`` is
reached, after which the channel reports ``degraded`` and waits for a manual
``reconnect()``. Every view is queued for a refresh after an error so that
events missed while offline are recovered once the feed is back.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Set

from frontdesk.clients.realtime import ChannelTransport
from frontdesk.schemas.events import (
    ChannelEvent,
    ChannelHealth,
    ChannelState,
    ChannelStatus,
    DisconnectReason,
)
from frontdesk.schemas.views import PAGED_VIEWS, ViewId
from frontdesk.services.exceptions import ChannelConnectionError, ErrorCode, MalformedEventError
from frontdesk.services.notifications import Notification, Notifier

logger = logging.getLogger(__name__)

HEARTBEAT_FRAMES = frozenset({"heartbeat", "ping", "pong"})
WELCOME_MESSAGE = "Welcome to real-time appointment updates"
ALL_VIEWS = frozenset(PAGED_VIEWS + (ViewId.STATISTICS,))

FIELD_ALIASES = {
    "appointment_id": ("appointmentId", "appointment_id", "id"),
    "customer_name": ("customerName", "customer_name", "name"),
    "time_slot": ("timeSlot", "time_slot", "appointmentTime", "appointment_time", "scheduled_time"),
    "appointment_date": ("appointmentDate", "appointment_date", "date"),
    "amount": ("amount", "totalAmount", "total_amount", "finalAmount"),
}

EventHandler = Callable[[ChannelEvent], Awaitable[Any]]
FlushHandler = Callable[[Set[ViewId]], Awaitable[Any]]
TransportFactory = Callable[[], ChannelTransport]


def _first(source: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


def _event_date(value: Any, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Calendar day of an event timestamp, read in the salon timezone when it has an offset."""

    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        try:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                logger.debug("Unreadable event date %r", value)
                return None
    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.date()


def normalise_event(
    message: Mapping[str, Any],
    received_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> ChannelEvent:
    """Resolve field aliases so consumers only see canonical names.

    The payload may sit under ``appointment_data`` or be flattened into the
    message; nested values win over top-level ones. Offset timestamps are dated
    in ``tz`` when one is given.
    """

    event_type = message.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("Event has no type")

    nested = message.get("appointment_data")
    source = {**message, **nested} if isinstance(nested, Mapping) else dict(message)

    appointment_id = _first(source, FIELD_ALIASES["appointment_id"])
    amount = _first(source, FIELD_ALIASES["amount"])
    if amount is not None:
        try:
            amount = float(amount)
        except (TypeError, ValueError) as exc:
            raise MalformedEventError(f"Event amount {amount!r} is not a number", cause=exc) from exc
    customer_name = _first(source, FIELD_ALIASES["customer_name"])
    time_slot = _first(source, FIELD_ALIASES["time_slot"])

    return ChannelEvent(
        type=event_type,
        appointment_id=str(appointment_id) if appointment_id is not None else None,
        customer_name=str(customer_name) if customer_name is not None else None,
        time_slot=str(time_slot) if time_slot is not None else None,
        appointment_date=_event_date(_first(source, FIELD_ALIASES["appointment_date"]), tz),
        amount=amount,
        payload=source,
        received_at=received_at or datetime.now(timezone.utc),
    )


def parse_frame(frame: str, tz: Optional[tzinfo] = None) -> Optional[ChannelEvent]:
    """Turn one raw frame into an event, or ``None`` for keep-alive traffic."""

    text = frame.strip()
    if not text or text.lower() in HEARTBEAT_FRAMES:
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"Frame is not JSON: {text[:80]!r}", cause=exc) from exc
    if not isinstance(message, dict):
        raise MalformedEventError("Frame is not a JSON object")
    if message.get("type") == "HEARTBEAT":
        return None
    if message.get("appointment_data") == WELCOME_MESSAGE:
        return None
    return normalise_event(message, tz=tz)


class EventChannel:
    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        on_event: EventHandler,
        on_connected: Optional[FlushHandler] = None,
        notifier: Optional[Notifier] = None,
        auto_reconnect: bool = True,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        max_reconnect_attempts: int = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._on_event = on_event
        self._on_connected = on_connected
        self._notifier = notifier
        self._auto_reconnect = auto_reconnect
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._max_reconnect_attempts = max_reconnect_attempts
        self._sleep = sleep
        self._rng = rng
        self._tz = tz
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[ViewId] = set()

        self.state = ChannelState.DISCONNECTED
        self.health = ChannelHealth.CLOSED
        self.reconnect_attempts = 0
        self.last_disconnect: Optional[DisconnectReason] = None
        self.last_error: Optional[str] = None
        self.connected_at: Optional[datetime] = None
        self.malformed_count = 0

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> ChannelStatus:
        return ChannelStatus(
            state=self.state,
            health=self.health,
            reconnect_attempts=self.reconnect_attempts,
            last_disconnect=self.last_disconnect,
            last_error=self.last_error,
            connected_at=self.connected_at,
        )

    def pending_invalidations(self) -> Set[ViewId]:
        return set(self._pending)

    def queue_invalidation(self, views: Iterable[ViewId]) -> None:
        """Remember views to refresh as soon as the feed is connected again."""

        self._pending.update(views)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based), half fixed and half jittered."""

        ceiling = min(self._backoff_cap, self._backoff_base * (2 ** (attempt - 1)))
        return ceiling / 2 + self._rng() * ceiling / 2

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="frontdesk-event-channel")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = ChannelState.DISCONNECTED
        self.health = ChannelHealth.CLOSED
        logger.info("Event channel stopped")

    async def reconnect(self) -> None:
        """Manual reconnect; resets the retry budget."""

        logger.info("Manual reconnect requested")
        await self.stop()
        self.reconnect_attempts = 0
        await self.start()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while True:
            self.state = ChannelState.CONNECTING
            self.health = (
                ChannelHealth.RECONNECTING if self.reconnect_attempts else ChannelHealth.CONNECTING
            )
            transport = self._transport_factory()
            try:
                await transport.connect()
                await self._opened()
                await self._read(transport)
            except ChannelConnectionError as exc:
                failure: Optional[ChannelConnectionError] = exc
            else:
                failure = None
            finally:
                await transport.close()

            self.state = ChannelState.DISCONNECTED
            self.connected_at = None
            if failure is None:
                self.last_disconnect = DisconnectReason.CLEAN
                self.health = ChannelHealth.CLOSED
                logger.info("Event channel closed cleanly by the server")
                return

            if not self._handle_failure(failure):
                return
            self.reconnect_attempts += 1
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info(
                "Reconnecting event channel in %.1fs (attempt %s/%s)",
                delay,
                self.reconnect_attempts,
                self._max_reconnect_attempts,
            )
            await self._sleep(delay)

    def _handle_failure(self, failure: ChannelConnectionError) -> bool:
        """Record a network failure; return ``True`` when another attempt is due."""

        self.last_disconnect = DisconnectReason.ERROR
        self.last_error = str(failure)
        self.queue_invalidation(ALL_VIEWS)
        logger.warning("Event channel lost: %s", failure)
        if self.reconnect_attempts == 0:
            self._notify(
                Notification(
                    level="error",
                    title="Real-time updates disconnected",
                    message="Live updates are paused; lists still refresh after each action.",
                    code=ErrorCode.CHANNEL_DISCONNECTED,
                    persistent=True,
                )
            )

        if not self._auto_reconnect or self.reconnect_attempts >= self._max_reconnect_attempts:
            self.health = ChannelHealth.DEGRADED
            logger.error(
                "Event channel gave up after %s reconnect attempts", self.reconnect_attempts
            )
            self._notify(
                Notification(
                    level="error",
                    title="Real-time updates unavailable",
                    message="Reconnect manually to resume live updates.",
                    code=ErrorCode.CHANNEL_DISCONNECTED,
                    persistent=True,
                )
            )
            return False

        self.health = ChannelHealth.RECONNECTING
        return True

    async def _opened(self) -> None:
        recovered = self.last_disconnect is DisconnectReason.ERROR
        self.state = ChannelState.CONNECTED
        self.health = ChannelHealth.HEALTHY
        self.reconnect_attempts = 0
        self.connected_at = datetime.now(timezone.utc)
        logger.info("Event channel connected")
        if recovered:
            if self._notifier is not None:
                self._notifier.dismiss(ErrorCode.CHANNEL_DISCONNECTED)
            self._notify(
                Notification(level="success", title="Real-time updates restored", message="Live updates resumed.")
            )

        pending, self._pending = self._pending, set()
        if pending and self._on_connected is not None:
            logger.info("Flushing %s queued view refreshes", len(pending))
            await self._on_connected(pending)

    async def _read(self, transport: ChannelTransport) -> None:
        while True:
            frame = await transport.receive()
            if frame is None:
                return
            await self.handle_frame(frame)

    async def handle_frame(self, frame: str) -> Optional[ChannelEvent]:
        """Parse and dispatch one frame; returns the dispatched event, if any."""

        try:
            event = parse_frame(frame, self._tz)
        except MalformedEventError as exc:
            self.malformed_count += 1
            logger.warning("Dropping malformed event (%s): %s", exc.code.value, exc)
            return None
        if event is None:
            return None
        if event.event_type is None:
            logger.info("Ignoring event of unknown type %s", event.type)
            return None
        logger.debug("Event %s for appointment %s", event.type, event.appointment_id)
        await self._on_event(event)
        return event

    def _notify(self, notification: Notification) -> None:
        if self._notifier is not None:
            self._notifier.notify(notification)
