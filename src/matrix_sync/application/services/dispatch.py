"""Fire-and-forget request dispatch with a process-wide synchronous mode.

In the default asynchronous mode a dispatched coroutine runs as a background
task and the caller gets the task back immediately. In synchronous mode, meant
for tests, the coroutine is awaited before `dispatch` returns and the caller
gets an already-completed future. Observable results are identical; only the
timing differs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

_synchronous_requests = False
_background_tasks: set[asyncio.Future[Any]] = set()


def set_synchronous_requests(enabled: bool) -> None:
    """Switch every session between asynchronous and synchronous dispatch."""

    global _synchronous_requests
    _synchronous_requests = enabled
    logger.info("dispatch_mode_changed synchronous=%s", enabled)


def synchronous_requests_enabled() -> bool:
    return _synchronous_requests


async def dispatch(coroutine: Coroutine[Any, Any, T], *, label: str) -> asyncio.Future[T]:
    """Run coroutine according to the dispatch mode and return its future."""

    loop = asyncio.get_running_loop()
    if not _synchronous_requests:
        task = loop.create_task(coroutine, name=label)
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        task.add_done_callback(lambda done: _log_outcome(done, label=label))
        return task

    future: asyncio.Future[T] = loop.create_future()
    try:
        result = await coroutine
    except Exception as error:  # noqa: BLE001
        future.set_exception(error)
    else:
        future.set_result(result)
    _log_outcome(future, label=label)
    return future


def _log_outcome(future: asyncio.Future[Any], *, label: str) -> None:
    if future.cancelled():
        logger.debug("dispatched_request_cancelled label=%s", label)
        return
    error = future.exception()
    if error is not None:
        logger.warning("dispatched_request_failed label=%s error=%s", label, error)
