import asyncio

import pytest

from meshcall.core.utils.utils import cancel_and_wait, spawn


class TestCancelAndWait:
    async def test_cancel_single_task(self):
        async def long_running():
            await asyncio.sleep(10)

        task = asyncio.create_task(long_running())
        await cancel_and_wait(task)

        assert task.cancelled()

    async def test_cancel_multiple_tasks(self):
        async def slow_task():
            await asyncio.sleep(100)

        tasks = [asyncio.create_task(slow_task()) for _ in range(3)]
        await cancel_and_wait(*tasks)

        assert all(t.cancelled() for t in tasks)

    async def test_cancel_already_done_task(self):
        async def quick():
            return 42

        task = asyncio.create_task(quick())
        await task

        await cancel_and_wait(task)

        assert task.done()
        assert not task.cancelled()

    async def test_cancel_no_futures(self):
        await cancel_and_wait()

    async def test_caller_cancellation_propagates(self):
        started = asyncio.Event()

        async def stubborn():
            try:
                await asyncio.sleep(100)
            except asyncio.CancelledError:
                await asyncio.sleep(0.05)
                raise

        inner = asyncio.create_task(stubborn())

        async def closer():
            started.set()
            await cancel_and_wait(inner)

        outer = asyncio.create_task(closer())
        await started.wait()
        await asyncio.sleep(0)
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer


class TestSpawn:
    async def test_reference_dropped_when_done(self):
        tasks: set[asyncio.Task] = set()
        done = asyncio.Event()

        async def work():
            await done.wait()

        task = spawn(work(), tasks, name="work")
        assert tasks == {task}
        assert task.get_name() == "work"

        done.set()
        await task
        await asyncio.sleep(0)
        assert tasks == set()
