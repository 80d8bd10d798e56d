"""Tests for the websocket relay against a real local websockets server."""

import asyncio
import json
import socket
import uuid
from unittest.mock import AsyncMock, patch

import pytest
import websockets
import websockets.asyncio.client
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from meshcall.core.config import MeshSettings
from meshcall.core.exceptions import ChannelDisconnected
from meshcall.core.session import MeshSession
from meshcall.core.types import NegotiationState
from meshcall.plugins.websocket import WebsocketRelay
from tests.fakes import FakeCapture, FakeConnectionFactory, eventually


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class RoomRelay:
    """Minimal room relay speaking the meshcall wire format."""

    def __init__(self):
        self.rooms: dict[str, dict[str, object]] = {}

    async def handle(self, websocket):
        user_id = uuid.uuid4().hex[:8]
        room = None
        try:
            async for raw in websocket:
                data = json.loads(raw)
                kind = data.get("type")
                if kind == "join-room":
                    room = data["roomId"]
                    peers = self.rooms.setdefault(room, {})
                    for peer in peers.values():
                        await peer.send(json.dumps({"type": "user-joined", "userId": user_id}))
                    peers[user_id] = websocket
                    await websocket.send(
                        json.dumps({"type": "joined-room", "roomId": room, "userId": user_id})
                    )
                elif kind == "leave-room":
                    await self._leave(room, user_id)
                    room = None
                elif kind in ("offer", "answer", "ice-candidate") and room is not None:
                    target = self.rooms.get(room, {}).get(data.pop("target"))
                    if target is not None:
                        data["from"] = user_id
                        await target.send(json.dumps(data))
        except ConnectionClosed:
            pass
        finally:
            await self._leave(room, user_id)

    async def _leave(self, room, user_id):
        peers = self.rooms.get(room)
        if not peers or peers.pop(user_id, None) is None:
            return
        for peer in list(peers.values()):
            try:
                await peer.send(json.dumps({"type": "user-left", "userId": user_id}))
            except ConnectionClosed:
                pass


@pytest.fixture
async def echo_server():
    async def echo(websocket):
        async for message in websocket:
            if message == "close-abnormally":
                await websocket.close(code=1011, reason="server error")
                return
            await websocket.send(message)

    async with serve(echo, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}"


@pytest.fixture
async def room_server():
    relay = RoomRelay()
    async with serve(relay.handle, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}"


class TestWebsocketRelay:
    def test_uses_asyncio_client(self):
        # additional_headers and ClientConnection belong to the asyncio client
        assert websockets.connect is websockets.asyncio.client.connect

    async def test_headers_are_sent(self):
        relay = WebsocketRelay("ws://relay.test", additional_headers={"Authorization": "Bearer t"})
        with patch.object(websockets, "connect", AsyncMock()) as connect:
            await relay.connect()
        assert connect.call_args.kwargs["additional_headers"] == {"Authorization": "Bearer t"}

    async def test_send_and_receive(self, echo_server):
        relay = WebsocketRelay(echo_server)
        await relay.connect()
        try:
            assert relay.connected
            await relay.send('{"type": "join-room", "roomId": "r1"}')
            messages = relay.messages()
            assert await messages.__anext__() == '{"type": "join-room", "roomId": "r1"}'
            await messages.aclose()
        finally:
            await relay.close()
        assert not relay.connected

    async def test_connect_refused(self):
        relay = WebsocketRelay(f"ws://127.0.0.1:{_free_port()}")
        with pytest.raises(ChannelDisconnected):
            await relay.connect()
        assert not relay.connected

    async def test_invalid_url(self):
        relay = WebsocketRelay("not a websocket url")
        with pytest.raises(ChannelDisconnected):
            await relay.connect()

    async def test_send_without_connection(self):
        relay = WebsocketRelay("ws://127.0.0.1:1")
        with pytest.raises(ChannelDisconnected):
            await relay.send("{}")

    async def test_abnormal_close_raises_channel_disconnected(self, echo_server):
        relay = WebsocketRelay(echo_server)
        await relay.connect()
        await relay.send("close-abnormally")
        with pytest.raises(ChannelDisconnected):
            async for _ in relay.messages():
                pass
        assert not relay.connected
        await relay.close()


class TestMeshOverWebsocket:
    async def test_two_sessions_negotiate_through_relay(self, room_server):
        settings = MeshSettings(ice_servers=[], reconnect_delay=0.01, negotiation_timeout=5.0)
        first = MeshSession(WebsocketRelay(room_server), FakeCapture(), FakeConnectionFactory(), settings)
        second = MeshSession(WebsocketRelay(room_server), FakeCapture(), FakeConnectionFactory(), settings)
        try:
            for session in (first, second):
                await session.start()
                await session.wait_until_connected(timeout=2.0)

            await first.join("r1")
            await first.wait_until_joined(timeout=2.0)
            await second.join("r1")
            await second.wait_until_joined(timeout=2.0)

            # the first member offers to the newcomer, the newcomer answers
            await eventually(
                lambda: (
                    (link := first.links.get(second.local_id)) is not None
                    and link.state == NegotiationState.STABLE
                ),
                timeout=2.0,
            )
            await eventually(lambda: set(second.members) == {first.local_id, second.local_id})
            assert second.links.get(first.local_id).state == NegotiationState.STABLE

            await second.leave()
            await eventually(lambda: first.members == [first.local_id], timeout=2.0)
            await first.wait()
            assert len(first.links) == 0
        finally:
            await asyncio.gather(first.close(), second.close())
