"""WebSocket connection to a ComfyUI server.

Holds at most one open socket, runs a listener task that hands every text
frame to the registered subscriptions, and discards binary (preview) frames.
"""
import asyncio
import json
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import aiohttp

from .errors import ProtocolError
from .request_manager import ComfyRequestManager
from .subscription import EventRecorder, Observer, Predicate, Subscription


class ConnectionStatus(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    open = "open"
    closed = "closed"


class ComfyConnection:
    """Manages the WebSocket used to receive server notifications."""

    def __init__(self, requests: ComfyRequestManager, logger: logging.Logger):
        self._requests = requests
        self._logger = logger
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._subscriptions: list[Observer] = []
        self._connect_lock = asyncio.Lock()
        self.status = ConnectionStatus.disconnected

    @property
    def is_open(self) -> bool:
        return (
            self.status is ConnectionStatus.open
            and self._ws is not None
            and not self._ws.closed
        )

    @property
    def subscriptions(self) -> tuple[Observer, ...]:
        return tuple(self._subscriptions)

    async def connect(self) -> bool:
        """Open the socket, closing the current one first.

        Returns once the attempt has finished: True if the socket is open,
        False if it failed. A failed attempt is logged, not raised.
        """
        async with self._connect_lock:
            return await self._connect()

    async def _connect(self) -> bool:
        if self._ws is not None:
            await self.disconnect()

        self.status = ConnectionStatus.connecting
        url = self._requests.ws_url()
        self._logger.info("Connecting to url: %s", url)
        session = await self._requests.ensure_session()
        try:
            ws = await session.ws_connect(
                url,
                headers=self._requests.headers(),
                max_msg_size=2**30,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error("WebSocket error: %s", e)
            self.status = ConnectionStatus.closed
            return False

        self._ws = ws
        self.status = ConnectionStatus.open
        self._logger.info("Connection open")
        self._listener_task = asyncio.create_task(self._listen(ws))
        return True

    async def disconnect(self):
        """Close the socket if there is one. Safe to call repeatedly."""
        ws, self._ws = self._ws, None
        if ws is None:
            return

        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        await ws.close()
        self.status = ConnectionStatus.closed
        self._logger.info("Connection closed")

    @contextmanager
    def subscribe(self, predicate: Predicate) -> Iterator[Subscription]:
        """Register a one-shot subscription for the duration of the block."""
        subscription = Subscription(predicate)
        self._subscriptions.append(subscription)
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    @contextmanager
    def record(self, predicate: Predicate) -> Iterator[EventRecorder]:
        """Collect every event accepted by ``predicate`` for the duration of the block."""
        recorder = EventRecorder(predicate)
        self._subscriptions.append(recorder)
        try:
            yield recorder
        finally:
            self.unsubscribe(recorder)

    def unsubscribe(self, subscription: Observer):
        """Remove a subscription or recorder. Safe to call more than once."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        subscription.cancel()

    async def _listen(self, ws: aiohttp.ClientWebSocketResponse):
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    # Previews, not used by this client
                    self._logger.debug("Received binary data (%d bytes)", len(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._logger.error("WebSocket error: %s", ws.exception())
                    break
        except aiohttp.ClientError as e:
            self._logger.error("WebSocket error: %s", e)
        finally:
            if self._ws is ws:
                self.status = ConnectionStatus.closed
                self._logger.info("Connection closed")

    def _dispatch(self, data: str):
        self._logger.debug("Received data: %s", data)
        try:
            event = json.loads(data)
        except ValueError as e:
            error = ProtocolError(f"Malformed WebSocket frame: {e}")
            for subscription in list(self._subscriptions):
                subscription.fail(error)
            return
        if not isinstance(event, dict):
            return
        for subscription in list(self._subscriptions):
            subscription.deliver(event)
