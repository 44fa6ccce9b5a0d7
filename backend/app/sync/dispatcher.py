import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class SyncDispatcher:
    """
    Fixed pool of asyncio worker tasks draining a bounded queue of connection ids.

    submit() never blocks: when the queue is full it returns False and the
    caller decides what to do with the connection.
    """

    def __init__(self, handler: Callable[[int], Awaitable[None]], workers: int = 4, queue_size: int = 100):
        self.handler = handler
        self.workers = max(1, workers)
        self.queue_size = max(1, queue_size)
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self._running = 0

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    @property
    def in_flight(self) -> int:
        """Queued plus currently running syncs."""
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + self._running

    async def start(self):
        if self.started:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"sync-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info(f"Sync dispatcher started with {self.workers} workers")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        logger.info("Sync dispatcher stopped")

    def submit(self, connection_id: int) -> bool:
        if self._queue is None:
            logger.warning(f"Sync dispatcher not running, dropping connection {connection_id}")
            return False
        try:
            self._queue.put_nowait(connection_id)
        except asyncio.QueueFull:
            logger.warning(f"Sync queue full, rejecting connection {connection_id}")
            return False
        return True

    async def join(self):
        """Wait until every submitted sync has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, index: int):
        while True:
            connection_id = await self._queue.get()
            self._running += 1
            try:
                await self.handler(connection_id)
            except Exception:
                logger.exception(f"Sync worker {index} failed on connection {connection_id}")
            finally:
                self._running -= 1
                self._queue.task_done()
