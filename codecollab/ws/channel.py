"""
Client side of a project room.

Frames on the wire are JSON envelopes: ``{"event": <name>, "data": <payload>}``.
Handlers are keyed by event name and there is exactly one per event;
subscribing again replaces the previous handler, so a reconnect never leads
to duplicate delivery.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union
from urllib.parse import quote

import websockets

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]

PROJECT_MESSAGE = "project-message"
JOINED = "joined"
ERROR = "error"


class ChannelClosed(Exception):
    """The underlying transport is gone."""


class Transport(Protocol):
    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]


def project_room_url(base_url: str, project_id: str, token: str) -> str:
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url.rstrip('/')}/ws/projects/{quote(project_id)}?token={quote(token)}"


class WebSocketTransport:
    def __init__(self, connection: Any) -> None:
        self._conn = connection

    @classmethod
    async def connect(cls, url: str) -> "WebSocketTransport":
        return cls(await websockets.connect(url))

    async def send(self, text: str) -> None:
        try:
            await self._conn.send(text)
        except websockets.ConnectionClosed as e:
            raise ChannelClosed(str(e)) from e

    async def recv(self) -> str:
        try:
            frame = await self._conn.recv()
        except websockets.ConnectionClosed as e:
            raise ChannelClosed(str(e)) from e
        return frame.decode("utf-8") if isinstance(frame, bytes) else frame

    async def close(self) -> None:
        await self._conn.close()


def websocket_transport_factory(base_url: str, token: str) -> TransportFactory:
    async def factory(project_id: str) -> Transport:
        return await WebSocketTransport.connect(project_room_url(base_url, project_id, token))

    return factory


class SessionChannel:
    def __init__(self, transport_factory: TransportFactory) -> None:
        self._factory = transport_factory
        self._transport: Optional[Transport] = None
        self._handlers: Dict[str, Handler] = {}
        self._listener: Optional[asyncio.Task] = None
        self.project_id: Optional[str] = None

    @property
    def joined(self) -> bool:
        return self._transport is not None

    async def join(self, project_id: str) -> None:
        if self._transport is not None:
            await self.leave()
        self._transport = await self._factory(project_id)
        self.project_id = project_id
        self._listener = asyncio.create_task(self.listen())
        logger.info("[channel] joined room %s", project_id)

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers[event] = handler

    def unsubscribe(self, event: str) -> None:
        self._handlers.pop(event, None)

    async def publish(self, event: str, payload: Any) -> None:
        if self._transport is None:
            raise ChannelClosed("not joined to a room")
        await self._transport.send(json.dumps({"event": event, "data": payload}))

    async def dispatch(self, frame: str) -> None:
        try:
            envelope = json.loads(frame)
        except ValueError:
            logger.warning("[channel] dropping non-JSON frame: %.200s", frame)
            return
        if not isinstance(envelope, dict) or "event" not in envelope:
            logger.warning("[channel] dropping frame without event: %.200s", frame)
            return

        handler = self._handlers.get(envelope["event"])
        if handler is None:
            return
        try:
            result = handler(envelope.get("data"))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("[channel] handler for %s failed", envelope["event"])

    async def listen(self) -> None:
        transport = self._transport
        if transport is None:
            return
        while True:
            try:
                frame = await transport.recv()
            except ChannelClosed:
                logger.info("[channel] room %s closed", self.project_id)
                if self._transport is transport:
                    self._transport = None
                break
            await self.dispatch(frame)

    async def leave(self) -> None:
        listener, self._listener = self._listener, None
        transport, self._transport = self._transport, None
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        if transport is not None:
            await transport.close()
