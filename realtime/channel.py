"""
Purpose: Owns the lifecycle of one authenticated realtime connection.
What it does:
- connect(credential) / disconnect() / set_identity(credential)
- emit(event, payload): best effort. Dropped (and recorded) while disconnected.
- on(event, handler) -> Handle: subscribe; survives reconnects of the same identity.
- Observable ChannelStatus (connection state, last error, reconnect attempt).
- Bounded reconnect with exponential backoff, then a persistent error.

Single-writer rule: only the identity consumer creates/destroys the session
(connect / set_identity / disconnect) and only the request lifecycle and
helper desk call emit. Everyone else just subscribes.

The transport is duck-typed. A transport must provide:
    connected                      -> bool
    async connect(url, credential) -> None (raise on failure)
    async disconnect()             -> None
    emit(event, payload)           -> None (fire and forget)
    on(event, handler)             -> None (handler(data))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from .events import Events
from .scheduling import Handle

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ChannelStatus:
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: Optional[str] = None
    reconnect_attempt: int = 0
    gave_up: bool = False  # reconnect attempts exhausted

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED


@dataclass(frozen=True)
class DroppedEmission:
    event: str
    payload: Any
    at: float


def connection_label(status: ChannelStatus) -> str:
    """Text for the passive connection indicator."""
    if status.connection_state == ConnectionState.CONNECTED:
        return "Connected"
    if status.gave_up:
        return "Connection lost"
    if status.connection_state == ConnectionState.CONNECTING or status.reconnect_attempt:
        return "Connecting"
    return "Disconnected"


class ChannelSession:
    """
    One realtime connection per authenticated identity.
    """

    def __init__(
        self,
        transport_factory: Callable[[], Any],
        url: str,
        *,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 5.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        max_dropped: int = 50,
    ):
        self.transport_factory = transport_factory
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max
        self._sleep = sleep
        self._clock = clock

        self._transport = None
        self._credential: Optional[str] = None
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None

        self._status = ChannelStatus()
        self._state_listeners: List[Callable[[ChannelStatus], None]] = []

        # event name -> handlers; registered with each new transport
        self._handlers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        # bumped whenever the handler registry is discarded
        self.generation = 0
        self.dropped: Deque[DroppedEmission] = deque(maxlen=max_dropped)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> ChannelStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status.is_connected and self._transport is not None and self._transport.connected

    @property
    def has_channel(self) -> bool:
        return self._transport is not None

    @property
    def credential(self) -> Optional[str]:
        return self._credential

    def subscribe_state(self, listener: Callable[[ChannelStatus], None]) -> Handle:
        self._state_listeners.append(listener)

        def _release():
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return Handle(_release)

    def _set_status(self, **changes) -> None:
        values = {
            "connection_state": self._status.connection_state,
            "last_error": self._status.last_error,
            "reconnect_attempt": self._status.reconnect_attempt,
            "gave_up": self._status.gave_up,
        }
        values.update(changes)
        status = ChannelStatus(**values)
        if status == self._status:
            return
        self._status = status
        for listener in list(self._state_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Channel state listener failed")

    # ------------------------------------------------------------------
    # Identity-driven lifecycle
    # ------------------------------------------------------------------

    async def connect(self, credential: str) -> ChannelSession:
        """
        Idempotent. Reuses a live connection for the same credential; tears down
        a stale handle (or a connection for another identity) before connecting.
        """
        if not credential:
            raise ValueError("A credential is required to open the channel.")

        if self._transport is not None:
            if self._transport.connected and credential == self._credential:
                logger.debug("Channel already connected, reusing")
                return self
            logger.info("Tearing down stale channel before reconnecting")
            await self._teardown_transport()

        self._cancel_reconnect()
        self._closing = False
        self._credential = credential
        self._set_status(reconnect_attempt=0, gave_up=False, last_error=None)

        if not await self._open_transport():
            self._schedule_reconnect()
        return self

    async def disconnect(self) -> None:
        """Releases the channel; terminal until the next connect()."""
        self._closing = True
        self._cancel_reconnect()
        await self._teardown_transport()
        self._credential = None
        self._handlers.clear()
        self.generation += 1
        self._set_status(
            connection_state=ConnectionState.DISCONNECTED,
            reconnect_attempt=0,
            gave_up=False,
            last_error=None,
        )
        logger.info("Channel disconnected")

    async def set_identity(self, credential: Optional[str]) -> None:
        """
        Follows the authenticated identity: cleared -> disconnect,
        changed -> disconnect + reconnect, unchanged -> no-op.
        """
        if not credential:
            if self._transport is not None or self._credential is not None:
                await self.disconnect()
            return
        if credential == self._credential and self._transport is not None:
            return
        await self.connect(credential)

    # ------------------------------------------------------------------
    # Emit / subscribe
    # ------------------------------------------------------------------

    def emit(self, event: str, payload: Any = None) -> bool:
        """
        Best-effort send. Returns False (and records a DroppedEmission) when
        the channel is not connected; the caller decides whether to re-emit.
        """
        if not self.is_connected:
            self.dropped.append(DroppedEmission(event=event, payload=payload, at=self._clock()))
            logger.warning("Emit dropped, channel not connected. Event: %s", event)
            return False
        logger.debug("emit: %s %s", event, payload)
        self._transport.emit(event, payload)
        return True

    def on(self, event: str, handler: Callable[[Any], None]) -> Handle:
        """
        Subscribes handler to event. Without an active channel this is a
        no-op returning an inert handle.
        """
        if self._transport is None:
            logger.warning("on() called but no channel. Event: %s", event)
            return Handle()

        is_new_event = event not in self._handlers
        self._handlers[event].append(handler)
        if is_new_event:
            self._bind_event(self._transport, event)

        def _release():
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return Handle(_release)

    def _dispatch(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception:
                logger.exception("Handler for %s failed", event)

    def _bind_event(self, transport, event: str) -> None:
        transport.on(event, lambda data, _event=event: self._dispatch(_event, data))

    # ------------------------------------------------------------------
    # Transport plumbing
    # ------------------------------------------------------------------

    async def _open_transport(self) -> bool:
        transport = self.transport_factory()
        self._transport = transport
        transport.on(Events.CONNECT, lambda _data=None: self._on_transport_connect(transport))
        transport.on(Events.DISCONNECT, lambda reason=None: self._on_transport_drop(transport, reason))
        transport.on(Events.CONNECT_ERROR, lambda err=None: self._on_transport_error(transport, err))
        for event in list(self._handlers):
            self._bind_event(transport, event)

        self._set_status(connection_state=ConnectionState.CONNECTING)
        logger.info("Connecting to %s", self.url)
        try:
            await transport.connect(self.url, self._credential)
        except Exception as exc:  # noqa: BLE001
            if transport is self._transport:
                self._set_status(connection_state=ConnectionState.DISCONNECTED, last_error=str(exc))
            logger.warning("connect_error: %s", exc)
            return False

        if transport is not self._transport:
            return False
        self._on_transport_connect(transport)
        return True

    async def _teardown_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Ignoring error while closing transport: %s", exc)

    def _on_transport_connect(self, transport) -> None:
        if transport is not self._transport:
            return
        if self._status.connection_state != ConnectionState.CONNECTED:
            logger.info("Channel connected")
        self._set_status(
            connection_state=ConnectionState.CONNECTED,
            last_error=None,
            reconnect_attempt=0,
            gave_up=False,
        )

    def _on_transport_drop(self, transport, reason) -> None:
        if transport is not self._transport or self._closing:
            return
        logger.info("Channel dropped, reason: %s", reason)
        self._set_status(
            connection_state=ConnectionState.DISCONNECTED,
            last_error=f"disconnected: {reason}" if reason else "disconnected",
        )
        self._schedule_reconnect()

    def _on_transport_error(self, transport, error) -> None:
        if transport is not self._transport:
            return
        message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
        logger.warning("connect_error: %s", message)
        self._set_status(connection_state=ConnectionState.DISCONNECTED, last_error=message)

    # ------------------------------------------------------------------
    # Bounded reconnect
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        return min(self.reconnect_delay * (2 ** max(0, attempt - 1)), self.reconnect_delay_max)

    def _schedule_reconnect(self) -> None:
        if self._closing or self._credential is None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while attempt < self.max_reconnect_attempts:
            attempt += 1
            self._set_status(reconnect_attempt=attempt)
            await self._sleep(self.backoff_delay(attempt))
            if self._closing:
                return
            logger.info("Reconnect attempt %s/%s", attempt, self.max_reconnect_attempts)
            await self._teardown_transport()
            if await self._open_transport():
                return

        message = f"Unable to reach server after {self.max_reconnect_attempts} attempts"
        logger.error(message)
        self._set_status(
            connection_state=ConnectionState.DISCONNECTED,
            last_error=message,
            gave_up=True,
        )

    async def wait_reconnected(self) -> None:
        """Awaits the running reconnect loop, if any."""
        task = self._reconnect_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
