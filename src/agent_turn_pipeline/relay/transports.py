"""Client channels a turn can be delivered over.

Three flavours, tried in this order during negotiation:

- ``PushChannelTransport``: server-sent events. The host hands ``frames()`` to
  its streaming HTTP response; a closed response counts as a cancel.
- ``SocketTransport``: full duplex. Text frames out, and a ``{"type": "cancel"}``
  frame from the client cancels the turn.
- ``BlockingTransport``: no streaming. Events are collected and the host reads
  the terminal one with ``result()``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from loguru import logger

from agent_turn_pipeline.errors import TransportError
from agent_turn_pipeline.relay.events import KEEPALIVE_FRAME, TurnEvent


@runtime_checkable
class Transport(Protocol):
    name: str
    supports_streaming: bool
    cancelled: asyncio.Event

    @property
    def available(self) -> bool: ...

    @property
    def writable(self) -> bool: ...

    async def open(self) -> None: ...

    async def send(self, event: TurnEvent) -> None: ...

    async def close(self) -> None: ...


class _BaseTransport:
    name = "base"
    supports_streaming = True

    def __init__(self, *, available: bool = True):
        self._available = available
        self._disconnected = False
        self._write_failed = False
        self._closed = False
        self.cancelled = asyncio.Event()

    @property
    def available(self) -> bool:
        return self._available and not self._disconnected

    @property
    def writable(self) -> bool:
        return not (self._disconnected or self._write_failed or self._closed)

    def disconnect(self) -> None:
        """Client went away. Any running turn is cancelled."""
        if self._disconnected:
            return
        self._disconnected = True
        # A channel that already failed a write ends the turn as failed, not cancelled.
        if not self._closed and not self._write_failed:
            self.cancelled.set()

    def _ensure_writable(self) -> None:
        if not self.writable:
            raise TransportError(f"{self.name} channel is not writable")


class PushChannelTransport(_BaseTransport):
    name = "push"

    def __init__(self, *, available: bool = True, keepalive_seconds: float = 15.0):
        super().__init__(available=available)
        self._keepalive_seconds = keepalive_seconds
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._attached = asyncio.Event()

    async def open(self) -> None:
        if not self._available:
            raise TransportError("push channel is not available")
        await self._attached.wait()
        if self._disconnected:
            raise TransportError("push channel disconnected before the turn started")

    async def send(self, event: TurnEvent) -> None:
        self._ensure_writable()
        await self._queue.put(event.to_sse())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    async def frames(self) -> AsyncIterator[str]:
        """Frames for the HTTP response body. Ends after the terminal event."""
        self._attached.set()
        try:
            while True:
                try:
                    frame = await asyncio.wait_for(self._queue.get(), timeout=self._keepalive_seconds)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
                if frame is None:
                    return
                yield frame
        finally:
            if not self._closed:
                logger.debug("Push channel consumer went away before the turn finished")
                self.disconnect()


class SocketConnection(Protocol):
    async def accept(self) -> None: ...

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str: ...


class SocketTransport(_BaseTransport):
    name = "socket"

    def __init__(self, connection: SocketConnection | None, *, available: bool = True):
        super().__init__(available=available and connection is not None)
        self._connection = connection
        self._reader: asyncio.Task | None = None

    async def open(self) -> None:
        if not self.available:
            raise TransportError("socket channel is not available")
        try:
            await self._connection.accept()
        except Exception as ex:
            raise TransportError(f"socket handshake failed: {ex}") from ex
        self._reader = asyncio.create_task(self._read_client_frames())

    async def send(self, event: TurnEvent) -> None:
        self._ensure_writable()
        try:
            await self._connection.send_text(event.to_json())
        except Exception as ex:
            self._write_failed = True
            raise TransportError(f"socket write failed: {ex}") from ex

    async def close(self) -> None:
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        self._reader = None

    async def _read_client_frames(self) -> None:
        while True:
            try:
                raw = await self._connection.receive_text()
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                logger.debug(f"Socket closed by client: {ex}")
                self.disconnect()
                return
            if self._is_cancel_frame(raw):
                logger.debug("Client requested cancel over socket")
                self.cancelled.set()

    @staticmethod
    def _is_cancel_frame(raw: str) -> bool:
        try:
            frame = json.loads(raw)
        except ValueError:
            return raw.strip().lower() == "cancel"
        return isinstance(frame, dict) and frame.get("type") == "cancel"


class BlockingTransport(_BaseTransport):
    name = "blocking"
    supports_streaming = False

    def __init__(self) -> None:
        super().__init__(available=True)
        self._events: list[TurnEvent] = []

    async def open(self) -> None:
        return None

    async def send(self, event: TurnEvent) -> None:
        self._ensure_writable()
        self._events.append(event)

    async def close(self) -> None:
        self._closed = True

    @property
    def events(self) -> list[TurnEvent]:
        return list(self._events)

    def result(self) -> TurnEvent | None:
        for event in reversed(self._events):
            if event.is_terminal:
                return event
        return None
