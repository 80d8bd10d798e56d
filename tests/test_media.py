import asyncio

import pytest

from meshcall.core.exceptions import MediaAcquisitionDenied
from meshcall.core.media import LocalMediaController
from tests.fakes import FakeCapture


class TestLocalMediaController:
    async def test_acquire_is_idempotent(self):
        capture = FakeCapture()
        controller = LocalMediaController(capture)
        first = await controller.acquire()
        second = await controller.acquire()
        assert first is second
        assert capture.requests == 1
        assert controller.tracks == capture.tracks

    async def test_concurrent_acquire_shares_one_request(self):
        capture = FakeCapture()
        capture.prompt = asyncio.Event()
        controller = LocalMediaController(capture)

        tasks = [asyncio.create_task(controller.acquire()) for _ in range(3)]
        await asyncio.sleep(0)
        capture.prompt.set()
        sessions = await asyncio.gather(*tasks)

        assert capture.requests == 1
        assert sessions[0] is sessions[1] is sessions[2]

    async def test_denied_capture(self):
        controller = LocalMediaController(FakeCapture(deny=True))
        with pytest.raises(MediaAcquisitionDenied):
            await controller.acquire()
        assert controller.session is None

    async def test_acquire_after_denial_asks_again(self):
        capture = FakeCapture(deny=True)
        controller = LocalMediaController(capture)
        with pytest.raises(MediaAcquisitionDenied):
            await controller.acquire()
        capture.deny = False
        await controller.acquire()
        assert capture.requests == 2

    async def test_set_enabled_flips_tracks(self):
        capture = FakeCapture()
        controller = LocalMediaController(capture)
        await controller.acquire()

        assert controller.set_enabled(False) is True
        assert capture.tracks[0].enabled is False
        assert controller.session.enabled is False

        controller.set_enabled(True)
        assert capture.tracks[0].enabled is True

    async def test_set_enabled_without_session_is_noop(self):
        controller = LocalMediaController(FakeCapture())
        assert controller.set_enabled(False) is False

    async def test_release_stops_capture(self):
        capture = FakeCapture()
        controller = LocalMediaController(capture)
        await controller.acquire()
        controller.release()
        assert capture.tracks[0].stopped is True
        assert controller.session is None
        assert controller.tracks == []
        controller.release()
