"""Per-connection orchestration: authenticate, dial upstream, relay, unwind."""

from __future__ import annotations

import contextlib
import logging
from enum import Enum
from typing import Awaitable, Callable

from fastapi import WebSocket
from fastapi.responses import PlainTextResponse

from .endpoints import GOING_AWAY, INTERNAL_ERROR, NORMAL_CLOSURE, ClientEndpoint, Endpoint
from .errors import AuthenticationError, TransportError, UpstreamConnectError
from .forwarding import CancelSignal, run_duplex
from .registry import ConnectionHandle, ConnectionRegistry, new_connection_id
from .shutdown import SHUTDOWN_REASON, ShutdownCoordinator
from .tokens import SessionTokenService

logger = logging.getLogger("voice_relay.session")

UpstreamConnector = Callable[[], Awaitable[Endpoint]]

POLICY_VIOLATION = 1008


class SessionState(Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    UPSTREAM_HANDSHAKE = "upstream_handshake"
    FORWARDING = "forwarding"
    CLOSING = "closing"
    CLOSED = "closed"


class ProxySession:
    """Drives one browser connection through its whole lifecycle.

    The session owns both sockets. The registry only sees a handle while the
    session is forwarding, and the shutdown path closes the client through it.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        tokens: SessionTokenService,
        registry: ConnectionRegistry,
        connect_upstream: UpstreamConnector,
        shutdown: ShutdownCoordinator | None = None,
    ):
        self.id = new_connection_id()
        self.state = SessionState.CONNECTING
        self._websocket = websocket
        self._tokens = tokens
        self._registry = registry
        self._connect_upstream = connect_upstream
        self._shutdown = shutdown
        self._client = ClientEndpoint(websocket)
        self._upstream: Endpoint | None = None
        self._registered = False

    def _transition(self, state: SessionState) -> None:
        logger.debug("[%s] %s -> %s", self.id, self.state.value, state.value)
        self.state = state

    async def run(self) -> None:
        if self._shutdown is not None and self._shutdown.closing:
            logger.info("[%s] Rejected upgrade: server is shutting down", self.id)
            await self._deny(503, "Service Unavailable")
            self._transition(SessionState.CLOSED)
            return

        self._transition(SessionState.AUTHENTICATING)
        try:
            protocol = self._authenticate()
        except AuthenticationError as exc:
            logger.warning("[%s] Rejected upgrade: %s", self.id, exc)
            await self._deny(401, "Unauthorized")
            self._transition(SessionState.CLOSED)
            return

        await self._websocket.accept(subprotocol=protocol)
        logger.info("[%s] Client connected to /api/voice-agent", self.id)

        try:
            self._transition(SessionState.UPSTREAM_HANDSHAKE)
            try:
                logger.info("[%s] Connecting to upstream voice agent...", self.id)
                self._upstream = await self._connect_upstream()
            except UpstreamConnectError as exc:
                logger.error("[%s] Upstream connection error: %s", self.id, exc)
                with contextlib.suppress(TransportError):
                    await self._client.close(INTERNAL_ERROR, "Upstream connection error")
                return
            logger.info("[%s] Connected to upstream voice agent", self.id)

            self._transition(SessionState.FORWARDING)
            self._register()
            if self._shutdown is not None and self._shutdown.closing:
                # Registered after the drain took its snapshot.
                with contextlib.suppress(TransportError):
                    await self._client.close(GOING_AWAY, SHUTDOWN_REASON)
                return
            sent, received = await run_duplex(
                self._client, self._upstream, CancelSignal(), label=f"[{self.id}]"
            )
            logger.info(
                "[%s] Forwarding finished (%d sent upstream, %d received)", self.id, sent, received
            )
        finally:
            await self._unwind()

    def _authenticate(self) -> str:
        offered = self._websocket.scope.get("subprotocols") or []
        if not offered:
            raise AuthenticationError("no subprotocols offered")
        protocol = self._tokens.select_protocol(offered)
        if protocol is None:
            raise AuthenticationError("missing or invalid session token")
        return protocol

    async def _deny(self, status_code: int, body: str) -> None:
        response = PlainTextResponse(body, status_code=status_code)
        try:
            await self._websocket.send_denial_response(response)
        except RuntimeError:
            # Server without the websocket.http.response extension: close
            # before accept, which it answers with HTTP 403.
            await self._websocket.close(code=POLICY_VIOLATION)

    def _register(self) -> None:
        while True:
            handle = ConnectionHandle(id=self.id, client=self._client, upstream=self._upstream)
            try:
                self._registry.add(handle)
            except KeyError:
                self.id = new_connection_id()
                continue
            self._registered = True
            return

    async def _unwind(self) -> None:
        self._transition(SessionState.CLOSING)
        endpoints = [self._client]
        if self._upstream is not None:
            endpoints.append(self._upstream)
        try:
            for endpoint in endpoints:
                if endpoint.is_open:
                    with contextlib.suppress(TransportError):
                        await endpoint.close(NORMAL_CLOSURE, "Connection ended")
        finally:
            if self._registered:
                self._registry.remove(self.id)
                self._registered = False
            self._transition(SessionState.CLOSED)
        logger.info("[%s] Connection closed (%d active)", self.id, len(self._registry))
