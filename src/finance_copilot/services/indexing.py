import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from finance_copilot.domain.periods import format_duration
from finance_copilot.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IndexingJob:
    name: str
    run: Callable[[], Any]


class IndexingQueue:
    """
    Background work queue for embedding jobs.

    Jobs run one at a time on a worker thread. A job runs exactly once: a
    failure is logged with the job name and counted, and is never retried.
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[IndexingJob] | None = None
        self.worker: asyncio.Task[None] | None = None
        self.loop: asyncio.AbstractEventLoop | None = None
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self.worker is not None and not self.worker.done()

    def start(self) -> None:
        if self.running:
            return
        self.queue = asyncio.Queue()
        self.loop = asyncio.get_running_loop()
        self.worker = asyncio.create_task(self._work(), name="indexing-worker")
        logger.info("[INDEX] Background indexing worker started.")

    async def stop(self, drain: bool = True) -> None:
        if not self.running:
            return
        if drain:
            await self.join()
        assert self.worker is not None
        self.worker.cancel()
        try:
            await self.worker
        except asyncio.CancelledError:
            pass
        self.worker = None
        logger.info(
            "[INDEX] Background indexing worker stopped (completed: %s, failed: %s).",
            self.completed,
            self.failed,
        )

    def submit(self, name: str, run: Callable[[], Any]) -> None:
        """Queue a job; callable from the event loop or from a worker thread."""
        if self.queue is None or self.loop is None or not self.running:
            raise RuntimeError("Indexing queue is not running")
        job = IndexingJob(name=name, run=run)
        try:
            on_loop = asyncio.get_running_loop() is self.loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            self.queue.put_nowait(job)
        else:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, job)
        logger.debug("[INDEX] Queued job '%s'.", name)

    async def join(self) -> None:
        if self.queue is not None:
            await self.queue.join()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pending": self.queue.qsize() if self.queue is not None else 0,
            "completed": self.completed,
            "failed": self.failed,
        }

    async def _work(self) -> None:
        assert self.queue is not None
        while True:
            job = await self.queue.get()
            start = perf_counter()
            try:
                result = await asyncio.to_thread(job.run)
            except Exception:
                self.failed += 1
                logger.exception("[INDEX] Job '%s' failed after %s.", job.name, format_duration(perf_counter() - start))
            else:
                self.completed += 1
                logger.info(
                    "[INDEX] Job '%s' finished in %s (result: %s).",
                    job.name,
                    format_duration(perf_counter() - start),
                    result,
                )
            finally:
                self.queue.task_done()
