from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp

from frontdesk.services.exceptions import ChannelConnectionError
from frontdesk.services.mock_store import EventFeed

logger = logging.getLogger(__name__)

_CLEAN_CLOSE_CODES = {aiohttp.WSCloseCode.OK}


class ChannelTransport(Protocol):
    """One push connection. ``receive`` returns ``None`` on a clean close."""

    async def connect(self) -> None: ...

    async def receive(self) -> Optional[str]: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Push feed over a websocket using aiohttp."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        heartbeat: float | None = 30.0,
    ) -> None:
        self._url = url
        self._heartbeat = heartbeat
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def connect(self) -> None:
        self._session = aiohttp.ClientSession(headers=self._headers)
        try:
            self._ws = await self._session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            await self.close()
            raise ChannelConnectionError(f"Unable to open {self._url}", cause=exc) from exc
        logger.info("Websocket connected to %s", self._url)

    async def receive(self) -> Optional[str]:
        if self._ws is None:
            raise ChannelConnectionError("Websocket is not connected")
        message = await self._ws.receive()
        if message.type == aiohttp.WSMsgType.TEXT:
            return message.data
        if message.type == aiohttp.WSMsgType.BINARY:
            return message.data.decode("utf-8", errors="replace")
        if message.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
        ):
            close_code = self._ws.close_code
            if close_code in _CLEAN_CLOSE_CODES:
                return None
            raise ChannelConnectionError(f"Websocket closed with code {close_code}")
        if message.type == aiohttp.WSMsgType.ERROR:
            exc = self._ws.exception()
            raise ChannelConnectionError(f"Websocket error: {exc}", cause=exc)
        # Control frames are handled by aiohttp; anything else is ignorable.
        return ""

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class QueueTransport:
    """Push feed read from the in-memory backend's ``EventFeed``."""

    def __init__(self, feed: EventFeed, salon_id: int) -> None:
        self._feed = feed
        self._salon_id = salon_id
        self._queue: Optional[asyncio.Queue] = None

    async def connect(self) -> None:
        self._queue = self._feed.subscribe(self._salon_id)
        logger.info("Subscribed to in-memory event feed for salon %s", self._salon_id)

    async def receive(self) -> Optional[str]:
        if self._queue is None:
            raise ChannelConnectionError("Event feed is not connected")
        item = await self._queue.get()
        if item is None:
            return None
        if isinstance(item, Exception):
            raise ChannelConnectionError(str(item), cause=item)
        return item

    async def close(self) -> None:
        if self._queue is not None:
            self._feed.unsubscribe(self._salon_id, self._queue)
        self._queue = None
