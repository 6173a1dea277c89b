"""
Render Scheduler

Keeps at most one in-flight render per viewport key. Starting a render for a
key cancels (and waits out) the previous one; only the render that is still
current when it finishes may commit its bitmap to the shared surface.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, TypeVar

from .errors import RenderCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderScheduler:

    def __init__(self):
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._surface: Dict[Hashable, Any] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._latest: Dict[Hashable, object] = {}

    def surface(self, key: Hashable) -> Optional[Any]:
        """Last committed render for ``key``."""
        return self._surface.get(key)

    def in_flight(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def submit(self, key: Hashable, job: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``job`` as the current render for ``key``.

        Cancelling the previous render and starting this one happen under a
        per-key lock, so a render only starts once its predecessor has
        stopped. A submit that is overtaken while waiting never starts.

        Raises:
            RenderCancelledError: a newer render for the same key superseded
                this one before it finished
        """
        ticket = object()
        self._latest[key] = ticket

        async with self._lock_for(key):
            await self.cancel(key)
            if self._latest.get(key) is not ticket:
                logger.debug(f"Render for {key!r} superseded before it started")
                raise RenderCancelledError(f"Render for {key!r} was superseded")

            task = asyncio.create_task(job())
            self._tasks[key] = task

        try:
            result = await task
        except asyncio.CancelledError:
            if self._tasks.get(key) is not task:
                logger.debug(f"Render for {key!r} superseded")
                raise RenderCancelledError(f"Render for {key!r} was superseded") from None
            self._tasks.pop(key, None)
            raise

        if self._tasks.get(key) is not task:
            logger.debug(f"Discarding stale render for {key!r}")
            raise RenderCancelledError(f"Render for {key!r} was superseded")

        self._tasks.pop(key, None)
        self._surface[key] = result
        return result

    async def cancel(self, key: Hashable) -> None:
        """Cancel the in-flight render for ``key`` and wait until it has stopped."""
        previous = self._tasks.pop(key, None)
        if previous is None or previous.done():
            return
        previous.cancel()
        await asyncio.wait([previous])

    async def cancel_all(self) -> None:
        for key in list(self._tasks):
            await self.cancel(key)
