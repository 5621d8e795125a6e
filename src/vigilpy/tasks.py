"""Bounded background work queue for fire-and-continue side effects.

log(), track() and send_alert() return immediately; their store writes,
sink flushes and channel deliveries run here. The queue is bounded, so a
burst that outpaces the workers drops jobs (and counts them) instead of
growing memory without limit.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]
DropHandler = Callable[[], None]

DEFAULT_MAXSIZE = 1000
DEFAULT_WORKERS = 4
DEFAULT_ERROR_HISTORY = 50


class BackgroundTaskQueue:
    """Runs submitted coroutine factories on a fixed pool of worker tasks.

    Args:
        maxsize: Maximum number of queued jobs.
        workers: Number of concurrent worker tasks.
        error_history: How many recent job failures to keep.
    """

    def __init__(
        self,
        maxsize: int = DEFAULT_MAXSIZE,
        workers: int = DEFAULT_WORKERS,
        error_history: int = DEFAULT_ERROR_HISTORY,
    ) -> None:
        self._maxsize = maxsize
        self._worker_count = workers
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[Job, str]] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._closed = False
        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self.dropped = 0
        self.errors: deque[str] = deque(maxlen=error_history)

    @property
    def started(self) -> bool:
        return self._queue is not None and not self._closed

    def start(self) -> None:
        """Start the workers on the running event loop.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        if self._queue is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._closed = False
        self._workers = [
            self._loop.create_task(self._worker(), name=f"vigilpy-worker-{i}")
            for i in range(self._worker_count)
        ]

    def submit(
        self, job: Job, label: str = "job", on_drop: DropHandler | None = None
    ) -> bool:
        """Queue a coroutine factory without waiting for it.

        Safe to call from the event loop thread and from other threads. If
        the queue was never started and the caller runs inside an event
        loop, the workers are started on that loop.

        Args:
            job: Zero-argument callable returning the awaitable to run.
            label: Name used in logs and failure history.
            on_drop: Called once if the job is dropped. For jobs handed
                over from another thread this can happen after submit()
                has returned True, on the loop thread.

        Returns:
            True if the job was accepted (or handed to the loop thread).
        """
        if self._closed:
            LOGGER.debug("Background queue closed; dropping %s", label)
            self._drop(on_drop)
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._queue is None and running is not None:
            self.start()
        if self._loop is None:
            LOGGER.debug("No event loop for background job %s; dropping", label)
            self._drop(on_drop)
            return False
        if running is self._loop:
            return self._enqueue(job, label, on_drop)
        try:
            self._loop.call_soon_threadsafe(self._enqueue, job, label, on_drop)
        except RuntimeError:
            LOGGER.debug("Event loop closed; dropping %s", label)
            self._drop(on_drop)
            return False
        return True

    def _enqueue(self, job: Job, label: str, on_drop: DropHandler | None) -> bool:
        if self._queue is None or self._closed:
            self._drop(on_drop)
            return False
        try:
            self._queue.put_nowait((job, label))
        except asyncio.QueueFull:
            LOGGER.warning("Background queue full; dropping %s", label)
            self._drop(on_drop)
            return False
        self.submitted += 1
        return True

    def _drop(self, on_drop: DropHandler | None) -> None:
        self.dropped += 1
        if on_drop is None:
            return
        try:
            on_drop()
        except Exception:
            LOGGER.warning("Drop handler failed", exc_info=True)

    async def _worker(self) -> None:
        assert self._queue is not None
        while True:
            job, label = await self._queue.get()
            try:
                await job()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failed += 1
                self.errors.append(f"{label}: {exc!r}")
                LOGGER.warning("Background job %s failed", label, exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until every queued job has finished.

        Returns:
            False if the timeout expired first.
        """
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self, timeout: float | None = 5.0) -> None:
        """Refuse new jobs, drain what is queued and cancel the workers."""
        if self._queue is None:
            self._closed = True
            return
        if not await self.drain(timeout):
            LOGGER.warning(
                "Background queue did not drain within %ss; %d jobs abandoned",
                timeout,
                self._queue.qsize(),
            )
        self._closed = True
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    def stats(self) -> dict[str, Any]:
        """Return queue counters and recent failures."""
        return {
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
            "pending": self._queue.qsize() if self._queue is not None else 0,
            "recent_errors": list(self.errors),
        }
