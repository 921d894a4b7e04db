"""In-process background worker for transcription jobs.

Jobs (single-response transcription, batch processing) are submitted by
request handlers and drained from a bounded asyncio queue by a fixed number
of worker coroutines. The handler never awaits the job; it gets a TaskHandle
whose outcome can be inspected or awaited.

Nothing is persisted: jobs queued or running when the process exits are
abandoned.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from voice_intake.utils.errors import QueueFullError

logger = logging.getLogger(__name__)


class TaskHandle:
    """Observable outcome of a submitted job."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.submitted_at = time.monotonic()
        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        # Mark the exception as retrieved so unobserved failures only log once.
        self._future.add_done_callback(
            lambda f: f.cancelled() or f.exception()
        )

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def cancelled(self) -> bool:
        return self._future.cancelled()

    @property
    def error(self) -> BaseException | None:
        """The exception the job raised, or None while pending or on success."""
        if not self._future.done() or self._future.cancelled():
            return None
        return self._future.exception()

    async def result(self) -> Any:
        """Wait for the job and return its value, re-raising its error."""
        return await asyncio.shield(self._future)


@dataclass
class _Job:
    handle: TaskHandle
    func: Callable[..., Awaitable[Any]]
    args: tuple[Any, ...] = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)


class TaskWorker:
    """Bounded queue drained by `concurrency` worker coroutines.

    Args:
        concurrency: Number of jobs run at the same time.
        max_queue_size: Jobs that may wait before submit() is refused.
    """

    def __init__(self, concurrency: int = 1, max_queue_size: int = 100) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.max_queue_size = max_queue_size
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=max_queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Jobs waiting in the queue (not counting the ones running)."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker coroutines on the running loop."""
        if self._running:
            return
        self._workers = [
            asyncio.create_task(self._run(i), name=f"task-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._running = True
        logger.info("Task worker started with %d worker(s)", self.concurrency)

    def submit(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> TaskHandle:
        """Queue func(*args, **kwargs) and return immediately.

        Starts the worker on first use.

        Raises:
            QueueFullError: If the queue is at capacity.
        """
        if not self._running:
            self.start()

        handle = TaskHandle(name or getattr(func, "__name__", "task"))
        try:
            self._queue.put_nowait(_Job(handle, func, args, kwargs))
        except asyncio.QueueFull as exc:
            handle._future.cancel()
            raise QueueFullError(
                f"Background queue is full ({self.max_queue_size} pending jobs)"
            ) from exc

        logger.debug("Queued job %s (%d pending)", handle.name, self._queue.qsize())
        return handle

    async def _run(self, worker_index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: _Job) -> None:
        handle = job.handle
        if handle.done:
            return
        wait_time = time.monotonic() - handle.submitted_at
        logger.info(
            "Running job %s after %.2fs in queue", handle.name, wait_time
        )
        try:
            value = await job.func(*job.args, **job.kwargs)
        except asyncio.CancelledError:
            handle._future.cancel()
            raise
        except Exception as exc:
            logger.error("Job %s failed: %s", handle.name, exc, exc_info=True)
            handle._future.set_exception(exc)
        else:
            handle._future.set_result(value)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self, timeout: float | None = None) -> None:
        """Drain queued jobs, then stop the workers.

        Jobs still running after `timeout` seconds are cancelled, along with
        anything left in the queue.
        """
        if not self._running:
            return
        self._running = False
        logger.info("Task worker stopping (%d pending)", self.pending)

        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Task worker did not drain within %ss, cancelling", timeout
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self._queue.empty():
            job = self._queue.get_nowait()
            job.handle._future.cancel()
            self._queue.task_done()
