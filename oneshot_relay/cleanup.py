from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Set, Tuple

import anyio

from .errors import NotFound, RelayError
from .storage import BlobStore

log = logging.getLogger(__name__)


class CleanupScheduler:
    """
    Deletes delivered blobs after a grace delay.

    ``schedule`` only enqueues, so it is safe to call while a connection is
    being torn down. A single worker task started with the application
    consumes the queue in FIFO order.
    """

    def __init__(
        self,
        store: BlobStore,
        delay_seconds: float = 1.0,
        on_removed: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = store
        self.delay_seconds = delay_seconds
        self.on_removed = on_removed
        self._queue: Optional[asyncio.Queue[Tuple[str, float]]] = None
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[str] = None
        self._pending: List[Tuple[str, float]] = []
        self._stopped = False
        self._late: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, identifier: str) -> None:
        due = time.monotonic() + self.delay_seconds
        if self._queue is not None:
            self._queue.put_nowait((identifier, due))
        elif self._stopped:
            # Worker already gone; delete right away instead of queueing.
            log.info("Cleanup worker stopped, deleting %s now", identifier)
            task = asyncio.get_running_loop().create_task(self._remove(identifier))
            self._late.add(task)
            task.add_done_callback(self._late.discard)
        else:
            # Not started yet; picked up by start().
            self._pending.append((identifier, due))

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._queue = asyncio.Queue()
        for item in self._pending:
            self._queue.put_nowait(item)
        self._pending.clear()
        self._task = asyncio.create_task(self._run(self._queue))
        log.debug("Cleanup worker started (delay=%ss)", self.delay_seconds)

    async def stop(self) -> None:
        """Stop the worker and delete whatever is still queued right away."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._stopped = True

        leftovers = [self._current] if self._current else []
        self._current = None
        queue, self._queue = self._queue, None
        while queue is not None and not queue.empty():
            identifier, _ = queue.get_nowait()
            queue.task_done()
            leftovers.append(identifier)
        for identifier in leftovers:
            await self._remove(identifier)
        log.debug("Cleanup worker stopped (%d flushed)", len(leftovers))

    async def drain(self) -> None:
        """Wait until every deletion scheduled so far has been attempted."""
        if self._queue is not None:
            await self._queue.join()
        if self._late:
            await asyncio.gather(*self._late)

    async def _run(self, queue: asyncio.Queue[Tuple[str, float]]) -> None:
        while True:
            identifier, due = await queue.get()
            self._current = identifier
            try:
                wait = due - time.monotonic()
                if wait > 0:
                    await anyio.sleep(wait)
                await self._remove(identifier)
                self._current = None
            finally:
                queue.task_done()

    async def _remove(self, identifier: str) -> None:
        try:
            await self.store.remove(identifier)
            log.info("Deleted %s after download", identifier)
        except NotFound:
            log.debug("%s was already removed", identifier)
        except (RelayError, OSError) as exc:
            log.warning("Could not delete %s: %s", identifier, exc)
        finally:
            if self.on_removed is not None:
                self.on_removed(identifier)
