#Purpose: The Socket.IO "adapter/client".
#Sole responsibility: carry events between ChannelSession and the server.
#Encapsulates Socket.IO specific details:
#auth handshake ({"token": credential})
#transport preference (websocket first, polling fallback)
#fire-and-forget emit on the running loop
#It should not contain retry policy; ChannelSession owns reconnection.

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Sequence

import socketio
from dotenv import load_dotenv

# Read the realtime server URL from environment
# Example in .env:
# SOCKET_URL=https://realtime.example.org
load_dotenv()
SOCKET_URL = os.getenv("SOCKET_URL", "http://localhost:5000")

logger = logging.getLogger(__name__)


class SocketIOTransport:
    """
    Socket.IO transport for ChannelSession.

    The library's own reconnection is disabled so that the session's bounded
    retry is the only one running.
    """

    def __init__(self, transports: Sequence[str] = ("websocket", "polling"), wait_timeout: float = 5.0):
        self.transports = list(transports)
        self.wait_timeout = wait_timeout
        self._client = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
        self._tasks: set = set()

    @property
    def connected(self) -> bool:
        return self._client.connected

    @property
    def sid(self):
        return self._client.sid

    async def connect(self, url: str, credential: str) -> None:
        await self._client.connect(
            url,
            auth={"token": credential},
            transports=self.transports,
            wait_timeout=self.wait_timeout,
        )

    async def disconnect(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self._client.disconnect()

    def emit(self, event: str, payload: Any = None) -> None:
        task = asyncio.ensure_future(self._client.emit(event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._on_emit_done)

    def _on_emit_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Socket.IO emit failed: %s", exc)

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        # disconnect handlers receive a reason on newer servers and nothing on
        # older ones; normalize to a single optional argument
        def _handler(*args):
            handler(args[0] if args else None)

        self._client.on(event, _handler)


def socketio_transport_factory(**options) -> Callable[[], SocketIOTransport]:
    """Factory for ChannelSession(transport_factory=...)."""
    return lambda: SocketIOTransport(**options)
