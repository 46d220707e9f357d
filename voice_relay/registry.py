"""Registry of sessions currently in the forwarding phase."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from .endpoints import NORMAL_CLOSURE, Endpoint


def new_connection_id() -> str:
    """Short id for log correlation; not a security boundary."""

    return uuid.uuid4().hex[:8]


@dataclass
class ConnectionHandle:
    """One client ↔ upstream session, owned by its :class:`ProxySession`."""

    id: str
    client: Endpoint
    upstream: Optional[Endpoint] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.client.is_open

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self.client.close(code, reason)


class ConnectionRegistry:
    """Connection id → handle map shared by every session and the shutdown path.

    All operations are synchronous, so the lock is never held across socket I/O.
    Callers iterate over :meth:`snapshot` rather than the live mapping.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._handles: Dict[str, ConnectionHandle] = {}

    def add(self, handle: ConnectionHandle) -> ConnectionHandle:
        with self._lock:
            if handle.id in self._handles:
                raise KeyError(f"Connection {handle.id} already registered")
            self._handles[handle.id] = handle
            return handle

    def remove(self, connection_id: str) -> Optional[ConnectionHandle]:
        with self._lock:
            return self._handles.pop(connection_id, None)

    def get(self, connection_id: str) -> ConnectionHandle:
        with self._lock:
            if connection_id not in self._handles:
                raise KeyError(f"Connection {connection_id} not found")
            return self._handles[connection_id]

    def snapshot(self) -> List[ConnectionHandle]:
        with self._lock:
            return list(self._handles.values())

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
