import dataclasses
from typing import Any

import pytest

from meshcall.core.config import MeshSettings
from meshcall.core.media import LocalMediaController
from meshcall.core.peer import PeerLinkManager
from meshcall.core.session import MeshSession
from tests.fakes import FakeCapture, FakeConnectionFactory, FakeRelay


@pytest.fixture
def settings() -> MeshSettings:
    return MeshSettings(
        ice_servers=[],
        negotiation_timeout=5.0,
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )


@dataclasses.dataclass
class Harness:
    session: MeshSession
    relay: FakeRelay
    capture: FakeCapture
    factory: FakeConnectionFactory
    membership_events: list = dataclasses.field(default_factory=list)
    status_events: list = dataclasses.field(default_factory=list)

    async def deliver(self, *payloads: Any) -> None:
        """Feed frames through the relay and wait until they are fully handled."""
        for payload in payloads:
            self.relay.feed(payload)
        await self.relay.settle()
        await self.session.wait()

    async def join_as(self, local_id: str, room_id: str = "r1") -> None:
        await self.session.join(room_id)
        await self.deliver({"type": "joined-room", "roomId": room_id, "userId": local_id})

    def link(self, remote_id: str):
        return self.session.links.get(remote_id)


@pytest.fixture
async def harness(settings):
    relay = FakeRelay()
    capture = FakeCapture()
    factory = FakeConnectionFactory()
    session = MeshSession(relay, capture, factory, settings)
    h = Harness(session=session, relay=relay, capture=capture, factory=factory)
    session.on_membership_changed(h.membership_events.append)
    session.on_status_changed(h.status_events.append)

    await session.start()
    await session.wait_until_connected(timeout=1.0)
    yield h
    await session.close()


@pytest.fixture
async def media() -> LocalMediaController:
    controller = LocalMediaController(FakeCapture())
    await controller.acquire()
    return controller


@pytest.fixture
def sent() -> list:
    return []


@pytest.fixture
def factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()


@pytest.fixture
async def manager(factory, media, sent):
    async def send(message):
        sent.append(message)

    links = PeerLinkManager(
        factory,
        media,
        send,
        ice_servers=["stun:stun.example.org:3478"],
        negotiation_timeout=5.0,
    )
    links.local_id = "A"
    yield links
    await links.close_all()
    await links.wait()
