import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger(__name__)


async def cancel_and_wait(*futures: asyncio.Future) -> None:
    """Cancel the given tasks and wait until all of them have finished.

    Already finished tasks are left alone. A cancellation of the caller
    itself is not swallowed.
    """
    pending = [f for f in futures if not f.done()]
    if not pending:
        return
    for future in pending:
        future.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    current = asyncio.current_task()
    if current is not None and current.cancelling():
        raise asyncio.CancelledError


def spawn(
    coro: Coroutine, tasks: set[asyncio.Task], name: Optional[str] = None
) -> asyncio.Task:
    """Start a background task and keep a strong reference to it until it ends."""
    task = asyncio.create_task(coro, name=name)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task
