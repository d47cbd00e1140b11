import asyncio
import logging
from typing import Awaitable, Iterable, Optional, Set


logger = logging.getLogger(__name__)


async def cancel_tasks(tasks: Iterable[asyncio.Task]) -> None:
    """Cancel tasks and wait until every one of them has finished."""
    task_list = [t for t in tasks if t is not None]
    for t in task_list:
        if not t.done():
            t.cancel()
    if task_list:
        await asyncio.gather(*task_list, return_exceptions=True)


def spawn_detached(coro: Awaitable, registry: Set[asyncio.Task], name: Optional[str] = None) -> asyncio.Task:
    """Schedule ``coro`` without awaiting it, keeping a strong reference in ``registry``."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    registry.add(task)

    def _done(t: asyncio.Task) -> None:
        registry.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Detached task %s failed: %s", t.get_name(), exc)

    task.add_done_callback(_done)
    return task
