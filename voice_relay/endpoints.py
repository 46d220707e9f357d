"""Frame types and the two socket adapters the forwarding engine talks to.

The engine never touches Starlette or ``websockets`` objects directly. Each leg
is wrapped in an endpoint exposing ``is_open``, ``receive``, ``send`` and
``close``; library exceptions are translated into :class:`TransportError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Union

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException
from websockets.protocol import State

from .errors import TransportError, UpstreamConnectError

logger = logging.getLogger("voice_relay.endpoints")

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
INTERNAL_ERROR = 1011
NO_STATUS_RECEIVED = 1005


@dataclass(frozen=True)
class Message:
    """One data frame. ``str`` payloads are text frames, ``bytes`` are binary.

    ``final`` is False for every part of a fragmented message except the last.
    """

    payload: Union[str, bytes]
    final: bool = True

    @property
    def is_binary(self) -> bool:
        return isinstance(self.payload, (bytes, bytearray))

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class Close:
    code: int = NORMAL_CLOSURE
    reason: str = ""


Frame = Union[Message, Close]


class Endpoint(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def receive(self) -> Frame: ...

    async def send(self, message: Message) -> None: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


def _join(parts: list[Union[str, bytes]]) -> Union[str, bytes]:
    if len(parts) == 1:
        return parts[0]
    if isinstance(parts[0], str):
        return "".join(parts)  # type: ignore[arg-type]
    return b"".join(parts)  # type: ignore[arg-type]


class ClientEndpoint:
    """The browser leg, served through Starlette's ASGI WebSocket.

    ASGI only delivers whole messages, so every received message is final and
    fragments sent to this leg are buffered until the closing part arrives.
    The browser then gets them joined as a single message; fragment
    boundaries and count are only kept on the upstream leg.
    """

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._lock = asyncio.Lock()
        self._parts: list[Union[str, bytes]] = []

    @property
    def websocket(self) -> WebSocket:
        return self._ws

    @property
    def is_open(self) -> bool:
        return (
            self._ws.client_state is WebSocketState.CONNECTED
            and self._ws.application_state is WebSocketState.CONNECTED
        )

    async def receive(self) -> Frame:
        try:
            message = await self._ws.receive()
        except (RuntimeError, OSError) as exc:
            raise TransportError(f"client receive failed: {exc}") from exc

        if message["type"] == "websocket.disconnect":
            return Close(
                code=message.get("code", NO_STATUS_RECEIVED),
                reason=message.get("reason") or "",
            )
        if message.get("bytes") is not None:
            return Message(message["bytes"])
        return Message(message.get("text") or "")

    async def send(self, message: Message) -> None:
        async with self._lock:
            self._parts.append(message.payload)
            if not message.final:
                return
            payload = _join(self._parts)
            self._parts.clear()
            try:
                if isinstance(payload, str):
                    await self._ws.send_text(payload)
                else:
                    await self._ws.send_bytes(bytes(payload))
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                raise TransportError(f"client send failed: {exc}") from exc

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        async with self._lock:
            if not self.is_open:
                return
            try:
                await self._ws.close(code=code, reason=reason)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                raise TransportError(f"client close failed: {exc}") from exc


class UpstreamEndpoint:
    """The voice agent leg, a ``websockets`` client connection.

    Fragment boundaries survive in both directions: receiving streams each
    fragment separately and sending replays buffered fragments as one
    fragmented message.
    """

    def __init__(self, connection: ClientConnection):
        self._conn = connection
        self._lock = asyncio.Lock()
        self._parts: list[Union[str, bytes]] = []
        self._fragments: Optional[AsyncIterator[Union[str, bytes]]] = None
        self._pending: Union[str, bytes, None] = None

    @property
    def is_open(self) -> bool:
        return self._conn.state is State.OPEN

    async def receive(self) -> Frame:
        try:
            if self._fragments is None:
                self._fragments = aiter(self._conn.recv_streaming())
                self._pending = await anext(self._fragments)
            current = self._pending
            # Look one fragment ahead to learn whether ``current`` ends the message.
            try:
                self._pending = await anext(self._fragments)
            except StopAsyncIteration:
                self._fragments = None
                self._pending = None
                return Message(current, final=True)  # type: ignore[arg-type]
            return Message(current, final=False)  # type: ignore[arg-type]
        except ConnectionClosed as exc:
            self._fragments = None
            if exc.rcvd is not None:
                return Close(code=exc.rcvd.code, reason=exc.rcvd.reason)
            if exc.sent is not None:
                # Failed locally, e.g. 1009 for a frame over max_size.
                return Close(code=exc.sent.code, reason=exc.sent.reason)
            raise TransportError(f"upstream connection lost: {exc}") from exc
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"upstream receive failed: {exc}") from exc

    async def send(self, message: Message) -> None:
        async with self._lock:
            self._parts.append(message.payload)
            if not message.final:
                return
            parts, self._parts = self._parts, []
            try:
                if len(parts) == 1:
                    await self._conn.send(parts[0])
                else:
                    await self._conn.send(parts)
            except (WebSocketException, OSError) as exc:
                raise TransportError(f"upstream send failed: {exc}") from exc

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        async with self._lock:
            if self._conn.state in (State.CLOSING, State.CLOSED):
                return
            try:
                await self._conn.close(code=code, reason=reason)
            except (WebSocketException, OSError) as exc:
                raise TransportError(f"upstream close failed: {exc}") from exc


async def connect_upstream(
    url: str,
    api_key: str,
    *,
    open_timeout: float = 10.0,
    close_timeout: float = 5.0,
    max_size: int = 2**20,
) -> UpstreamEndpoint:
    """Open the voice agent connection, presenting the server's own credential."""

    logger.debug("Connecting to upstream %s", url)
    try:
        connection = await connect(
            url,
            additional_headers={"Authorization": f"Token {api_key}"},
            open_timeout=open_timeout,
            close_timeout=close_timeout,
            max_size=max_size,
        )
    except InvalidStatus as exc:
        raise UpstreamConnectError(
            f"upstream rejected handshake with HTTP {exc.response.status_code}"
        ) from exc
    except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
        raise UpstreamConnectError(f"could not reach upstream: {exc}") from exc
    return UpstreamEndpoint(connection)
