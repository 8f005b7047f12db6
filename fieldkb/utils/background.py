"""Detached background tasks for fire-and-forget side effects.

The embedding cache and the embedding service both perform writes that
the caller must never wait on: refreshing hit counters after a cache hit,
deleting an expired entry, and writing freshly computed embeddings back
to the cache.  :class:`BackgroundTasks` makes that contract explicit:

1. **spawn** -- schedule a coroutine on the running loop and return
   immediately.  The task is held in a strong-reference set until it
   finishes so the event loop cannot garbage-collect it mid-flight.
2. **log, never raise** -- a done-callback inspects the finished task and
   logs any exception under the caller-supplied event name.  Failures are
   never propagated to whoever spawned the task.
3. **drain** -- tests and shutdown paths can await every outstanding task.
   Nothing in the request path ever calls it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from fieldkb.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


class BackgroundTasks:
    """Owns a set of detached asyncio tasks whose failures are only logged.

    Parameters
    ----------
    logger:
        Structured logger used for failure reports.  Defaults to this
        module's logger.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._logger = logger or _logger
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], event: str) -> asyncio.Task[Any]:
        """Schedule *coro* without awaiting it.

        *event* names the log event emitted if the coroutine raises.
        """
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _on_done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self._logger.error(event, error=str(exc), error_type=type(exc).__name__)

        task.add_done_callback(_on_done)
        return task

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
