from __future__ import annotations

import asyncio
import socket
from http import HTTPStatus

import pytest
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from voice_relay.endpoints import Close, Message, connect_upstream
from voice_relay.errors import UpstreamConnectError


def _port(server) -> int:
    return next(iter(server.sockets)).getsockname()[1]


@pytest.mark.asyncio
async def test_upstream_endpoint_relays_fragments_and_close():
    seen_headers = {}
    received = []

    async def agent(ws):
        seen_headers["authorization"] = ws.request.headers.get("Authorization")
        await ws.send(["he", "llo"])
        await ws.send(b"\x00\x01")
        received.append([fragment async for fragment in ws.recv_streaming()])
        await ws.close(4001, "done")

    async with serve(agent, "127.0.0.1", 0) as server:
        upstream = await connect_upstream(f"ws://127.0.0.1:{_port(server)}", "secret-key")
        assert upstream.is_open

        assert await upstream.receive() == Message("he", final=False)
        assert await upstream.receive() == Message("llo", final=True)
        assert await upstream.receive() == Message(b"\x00\x01")

        await upstream.send(Message("ab", final=False))
        await upstream.send(Message("cd"))

        assert await asyncio.wait_for(upstream.receive(), timeout=2) == Close(4001, "done")
        assert not upstream.is_open

    assert seen_headers["authorization"] == "Token secret-key"
    assert received == [["ab", "cd"]]


@pytest.mark.asyncio
async def test_upstream_close_is_sent_with_code_and_reason():
    closes = []

    async def agent(ws):
        try:
            await ws.recv()
        except ConnectionClosed:
            pass
        closes.append((ws.close_code, ws.close_reason))

    async with serve(agent, "127.0.0.1", 0) as server:
        upstream = await connect_upstream(f"ws://127.0.0.1:{_port(server)}", "k")
        await upstream.close(1000, "Connection ended")
        await upstream.close(1000, "twice is harmless")
        for _ in range(100):
            if closes:
                break
            await asyncio.sleep(0.01)

    assert closes == [(1000, "Connection ended")]


@pytest.mark.asyncio
async def test_refused_connection_raises_upstream_connect_error():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    with pytest.raises(UpstreamConnectError):
        await connect_upstream(f"ws://127.0.0.1:{port}", "k", open_timeout=2)


@pytest.mark.asyncio
async def test_rejected_handshake_raises_upstream_connect_error():
    def reject(connection, request):
        return connection.respond(HTTPStatus.UNAUTHORIZED, "bad key\n")

    async def agent(ws):
        await ws.close()

    async with serve(agent, "127.0.0.1", 0, process_request=reject) as server:
        with pytest.raises(UpstreamConnectError, match="401"):
            await connect_upstream(f"ws://127.0.0.1:{_port(server)}", "wrong")


@pytest.mark.asyncio
async def test_oversized_upstream_frame_becomes_message_too_big_close():
    async def agent(ws):
        await ws.send(b"x" * 5000)
        await ws.wait_closed()

    async with serve(agent, "127.0.0.1", 0) as server:
        upstream = await connect_upstream(
            f"ws://127.0.0.1:{_port(server)}", "k", max_size=1024
        )
        frame = await asyncio.wait_for(upstream.receive(), timeout=2)

    assert isinstance(frame, Close)
    assert frame.code == 1009
    assert not upstream.is_open
