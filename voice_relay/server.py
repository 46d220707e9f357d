"""uvicorn server that drains relay sessions before it stops."""

from __future__ import annotations

import logging
import socket
from typing import Optional

import uvicorn

from .shutdown import ShutdownCoordinator

logger = logging.getLogger("voice_relay.server")


class RelayServer(uvicorn.Server):
    """Closes live sessions with 1001 before uvicorn tears connections down.

    uvicorn on its own would answer a termination signal by closing every
    WebSocket with 1012. Upgrades arriving while the drain runs are refused by
    the session layer.
    """

    def __init__(self, config: uvicorn.Config, shutdown: ShutdownCoordinator):
        super().__init__(config)
        self._coordinator = shutdown

    async def shutdown(self, sockets: Optional[list[socket.socket]] = None) -> None:
        logger.info("Termination requested; draining relay sessions")
        await self._coordinator.drain()
        await super().shutdown(sockets=sockets)
