"""Fire-and-forget task dispatch backed by an asyncio worker pool."""
import asyncio
import inspect
from typing import Any, Callable, List, Optional, Set, Tuple

from lexivault.exceptions import ServiceUnavailableError
from lexivault.utils.logger import logger


class TaskQueue:
    """
    Worker pool that runs scheduled tasks independently of their caller.

    ``schedule`` enqueues and returns immediately; the caller never joins
    on an individual task. Coroutine functions are awaited on the loop,
    plain callables run in a thread.
    """

    def __init__(self, max_workers: int = 4):
        """
        Initialize task queue.

        Args:
            max_workers: Number of concurrent worker coroutines
        """
        self.max_workers = max(1, max_workers)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._delayed: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Spawn the worker coroutines on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"task-worker-{i}")
            for i in range(self.max_workers)
        ]
        logger.info(f"Task queue started with {self.max_workers} workers")

    def schedule(self, func: Callable[..., Any], *args: Any, delay: float = 0.0) -> None:
        """
        Schedule ``func(*args)`` to run after ``delay`` seconds.

        Raises:
            ServiceUnavailableError: If the queue has not been started
        """
        if self._queue is None or not self.running:
            raise ServiceUnavailableError("Task queue is not running")

        entry: Tuple[Callable[..., Any], Tuple[Any, ...]] = (func, args)
        if delay <= 0:
            self._queue.put_nowait(entry)
            return

        task = asyncio.create_task(self._enqueue_later(entry, delay))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def _enqueue_later(self, entry: Tuple[Callable[..., Any], Tuple[Any, ...]], delay: float) -> None:
        await asyncio.sleep(delay)
        self._queue.put_nowait(entry)

    async def _worker(self, worker_id: int) -> None:
        while True:
            func, args = await self._queue.get()
            try:
                if inspect.iscoroutinefunction(func):
                    await func(*args)
                else:
                    result = await asyncio.to_thread(func, *args)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                name = getattr(func, "__qualname__", repr(func))
                logger.error(f"Task {name} failed in worker {worker_id}: {str(e)}", exc_info=True)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every scheduled task, including delayed and follow-up ones, has run."""
        if self._queue is None:
            return
        while True:
            await self._queue.join()
            if not self._delayed:
                break
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel workers and pending delayed entries."""
        for task in list(self._delayed) + self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, *self._delayed, return_exceptions=True)
        self._workers = []
        self._delayed.clear()
        self._queue = None
        logger.info("Task queue stopped")
