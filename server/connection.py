"""Outbound delivery for one WebSocket connection.

Broadcasts only ever enqueue; a writer task drains the queue in order. A
client that stops reading fills its queue and starts losing messages instead
of stalling everyone else in the room.
"""

import asyncio
import logging
from typing import Optional

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)


class WebSocketHandle:
    """Non-blocking ``try_send`` wrapper around a websockets connection."""

    def __init__(self, websocket, queue_size: int = 64, send_timeout: float = 5.0):
        self.websocket = websocket
        self.send_timeout = send_timeout
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self.websocket.state is State.OPEN

    def start(self) -> None:
        """Start the writer task. Must be called from a running event loop."""
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    def try_send(self, payload: str) -> bool:
        """Queue a payload. Returns False if it was dropped."""
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Send queue full for %s, dropping message", self.websocket.remote_address)
            return False
        return True

    async def _drain(self) -> None:
        while not self._closed:
            payload = await self._queue.get()
            try:
                await asyncio.wait_for(self.websocket.send(payload), timeout=self.send_timeout)
            except ConnectionClosed:
                self._closed = True
            except asyncio.TimeoutError:
                logger.warning("Send timed out for %s, closing", self.websocket.remote_address)
                self._closed = True
                await self.websocket.close()

    async def close(self) -> None:
        """Stop the writer task. Queued messages are discarded."""
        self._closed = True
        if self._writer and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._writer = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()
