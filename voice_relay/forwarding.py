"""Duplex message pumps between the client and upstream endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Optional, TypeVar

from .endpoints import NORMAL_CLOSURE, Close, Endpoint
from .errors import TransportError

logger = logging.getLogger("voice_relay.forwarding")

T = TypeVar("T")

DEFAULT_CLOSE_REASON = "Connection closed"
CLIENT_TO_UPSTREAM = "client→upstream"
UPSTREAM_TO_CLIENT = "upstream→client"

# Binary audio is chatty; only every Nth binary frame gets a log line.
_BINARY_LOG_INTERVAL = {CLIENT_TO_UPSTREAM: 100, UPSTREAM_TO_CLIENT: 10}


class ForwardingCancelled(Exception):
    """Raised inside a pump when the session's cancel signal fires."""


class CancelSignal:
    """One-shot cancellation shared by both pumps of a session."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        When the signal wins, the pending operation is cancelled and
        :class:`ForwardingCancelled` is raised.
        """

        if self._event.is_set():
            # Never start new work once cancelled.
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ForwardingCancelled()

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            waiter.cancel()

        if operation.done() and not operation.cancelled():
            # Finished in the same step as the signal; keep what was read.
            return operation.result()
        if self._event.is_set():
            operation.cancel()
            await asyncio.gather(operation, return_exceptions=True)
            raise ForwardingCancelled()
        return operation.result()


def _sendable(code: int) -> bool:
    return code in (1000, 1001, 1002, 1003, 1007, 1008, 1009, 1010, 1011, 1012, 1013, 1014) or (
        3000 <= code <= 4999
    )


def propagated_close(close: Close) -> Close:
    """Close to send onward; codes that may not appear on the wire become 1000."""

    if _sendable(close.code):
        return close
    return Close(NORMAL_CLOSURE, DEFAULT_CLOSE_REASON)


async def forward(
    source: Endpoint,
    destination: Endpoint,
    direction: str,
    cancel: CancelSignal,
    *,
    label: str = "",
) -> int:
    """Pump frames from ``source`` to ``destination`` until close, failure or cancel.

    Returns the number of data frames read from ``source``.
    """

    count = 0
    log_interval = _BINARY_LOG_INTERVAL.get(direction, 10)
    try:
        while True:
            frame = await cancel.race(source.receive())

            if isinstance(frame, Close):
                outgoing = propagated_close(frame)
                logger.info(
                    "%s %s close received (code=%s reason=%r)",
                    label,
                    direction,
                    frame.code,
                    frame.reason,
                )
                if destination.is_open:
                    await cancel.race(destination.close(outgoing.code, outgoing.reason))
                break

            count += 1
            if not frame.is_binary or count % log_interval == 0:
                logger.debug(
                    "%s %s #%d (binary: %s, size: %d, final: %s)",
                    label,
                    direction,
                    count,
                    frame.is_binary,
                    frame.size,
                    frame.final,
                )

            if not destination.is_open:
                continue
            await cancel.race(destination.send(frame))
    except ForwardingCancelled:
        logger.debug("%s %s cancelled after %d message(s)", label, direction, count)
    except TransportError as exc:
        logger.warning("%s WebSocket error in %s: %s", label, direction, exc)
    return count


async def run_duplex(
    client: Endpoint,
    upstream: Endpoint,
    cancel: Optional[CancelSignal] = None,
    *,
    label: str = "",
) -> tuple[int, int]:
    """Run both pumps; the first to finish cancels the other.

    Returns the message counts ``(client→upstream, upstream→client)``.
    """

    cancel = cancel or CancelSignal()

    async def pump(source: Endpoint, destination: Endpoint, direction: str) -> int:
        try:
            return await forward(source, destination, direction, cancel, label=label)
        finally:
            cancel.cancel()

    tasks = [
        asyncio.create_task(pump(client, upstream, CLIENT_TO_UPSTREAM)),
        asyncio.create_task(pump(upstream, client, UPSTREAM_TO_CLIENT)),
    ]
    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        cancel.cancel()
        for task in tasks:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)
        raise

    counts = []
    for direction, result in zip((CLIENT_TO_UPSTREAM, UPSTREAM_TO_CLIENT), results):
        if isinstance(result, BaseException):
            logger.error("%s %s pump crashed", label, direction, exc_info=result)
            counts.append(0)
        else:
            counts.append(result)
    return counts[0], counts[1]
