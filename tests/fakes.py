"""In-memory endpoints standing in for real sockets."""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Union

from voice_relay.endpoints import Close, Frame, Message
from voice_relay.errors import TransportError


class FakeEndpoint:
    """Scripted endpoint: ``receive`` replays queued frames, ``send`` records.

    Queue an exception instance to make the next ``receive`` raise it.
    """

    def __init__(self, frames: Iterable[Union[Frame, BaseException]] = ()):
        self.inbox: asyncio.Queue[Union[Frame, BaseException]] = asyncio.Queue()
        for frame in frames:
            self.inbox.put_nowait(frame)
        self.sent: List[Message] = []
        self.closed_with: Optional[Close] = None
        self.open = True
        self.fail_send: Optional[Exception] = None
        self.receive_cancelled = False

    @property
    def is_open(self) -> bool:
        return self.open

    async def receive(self) -> Frame:
        try:
            item = await self.inbox.get()
        except asyncio.CancelledError:
            self.receive_cancelled = True
            raise
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, Close):
            self.open = False
        return item

    async def send(self, message: Message) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed_with is None:
            self.closed_with = Close(code, reason)
        self.open = False


class EchoUpstream(FakeEndpoint):
    """Upstream that records what it is sent and sends it straight back."""

    async def send(self, message: Message) -> None:
        await super().send(message)
        self.inbox.put_nowait(message)


class StuckEndpoint(FakeEndpoint):
    """Endpoint whose close never completes."""

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await asyncio.Event().wait()


class BrokenCloseEndpoint(FakeEndpoint):
    async def close(self, code: int = 1000, reason: str = "") -> None:
        raise TransportError("socket already gone")
