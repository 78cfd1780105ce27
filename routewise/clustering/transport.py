"""
Transports for ClusterSubscription.

A transport moves JSON message dicts. Every failure of the underlying
connection surfaces as TransportError so the subscription can tell network
trouble (retried) from server-reported errors (not retried).
"""
import abc
import asyncio
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import websockets

from routewise.clustering.channel import ClusterChannel

LOGGER = logging.getLogger(__name__)


class TransportError(ConnectionError):
    pass


class Transport(abc.ABC):
    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def recv(self) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...


class WebSocketTransport(Transport):
    def __init__(self, url: str, params: Optional[Dict[str, str]] = None, open_timeout: float = 10.0):
        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        self.url = f"{url}{'&' if '?' in url else '?'}{query}" if query else url
        self.open_timeout = open_timeout
        self._ws = None

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise TransportError(f"cannot connect to {self.url}: {exc}") from exc

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportError("not connected")
        try:
            await self._ws.send(json.dumps(message))
        except websockets.exceptions.ConnectionClosed as exc:
            raise TransportError(f"connection closed: {exc}") from exc

    async def recv(self) -> Dict[str, Any]:
        if self._ws is None:
            raise TransportError("not connected")
        try:
            raw = await self._ws.recv()
        except websockets.exceptions.ConnectionClosed as exc:
            raise TransportError(f"connection closed: {exc}") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise TransportError(f"malformed frame: {exc}") from exc

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


_CLOSED = object()


class LocalTransport(Transport):
    """In-process transport that talks straight to a ClusterChannel."""

    def __init__(self, channel: ClusterChannel):
        self.channel = channel
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self.connected = False
        self.sent = []

    async def connect(self) -> None:
        self.connected = True

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.connected:
            raise TransportError("not connected")
        self.sent.append(message)
        for out in self.channel.handle(message):
            self._inbox.put_nowait(out)

    async def recv(self) -> Dict[str, Any]:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise TransportError("connection closed")
        return item

    def drop(self) -> None:
        """Simulate the connection dropping under the reader."""
        self.connected = False
        self._inbox.put_nowait(_CLOSED)

    async def close(self) -> None:
        if self.connected:
            self.connected = False
            self._inbox.put_nowait(_CLOSED)
