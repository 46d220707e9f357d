"""Drain live sessions when the process is asked to stop."""

from __future__ import annotations

import asyncio
import logging

from .endpoints import GOING_AWAY
from .errors import TransportError
from .registry import ConnectionHandle, ConnectionRegistry

logger = logging.getLogger("voice_relay.shutdown")

SHUTDOWN_REASON = "Server shutting down"


class ShutdownCoordinator:
    def __init__(self, registry: ConnectionRegistry, *, timeout: float = 5.0):
        self._registry = registry
        self._timeout = timeout
        self._closing = False
        self._drained = asyncio.Event()

    @property
    def closing(self) -> bool:
        """True once draining started; new upgrades must be refused."""

        return self._closing

    async def drain(self) -> int:
        """Close every open client with 1001, each bounded by the timeout.

        Returns the number of connections that closed cleanly. Calling it again
        after a drain is a no-op.
        """

        if self._closing:
            await self._drained.wait()
            return 0
        self._closing = True
        try:
            handles = [handle for handle in self._registry.snapshot() if handle.is_open]
            logger.info("Shutting down... Closing %d active connection(s)...", len(handles))
            results = await asyncio.gather(*(self._close_one(handle) for handle in handles))
            closed = sum(results)
            logger.info("All connections closed (%d/%d cleanly).", closed, len(handles))
            return closed
        finally:
            self._drained.set()

    async def _close_one(self, handle: ConnectionHandle) -> bool:
        try:
            await asyncio.wait_for(handle.close(GOING_AWAY, SHUTDOWN_REASON), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Timed out closing connection %s after %.1fs", handle.id, self._timeout)
            return False
        except TransportError as exc:
            logger.error("Error closing connection %s: %s", handle.id, exc)
            return False
        return True
