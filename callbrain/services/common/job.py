"""
Asynchronous jobs and the worker pool that runs them.

A ``Job`` carries its own bookkeeping (timestamps, status, error text) and an
``execute`` coroutine. A ``JobQueue`` feeds jobs to a fixed number of worker
tasks and reports outcomes through optional callbacks.
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from callbrain.utils import get_current_timestamp_utc

logger = logging.getLogger(__name__)

# seconds an idle worker waits before re-checking for shutdown
WORKER_POLL_INTERVAL = 1.0


class JobStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class Job(ABC):
    """Unit of work for a ``JobQueue``. Subclasses implement ``execute``."""

    job_id: str
    created_at: datetime = field(default_factory=get_current_timestamp_utc)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: JobStatus = JobStatus.PENDING
    error_message: str | None = None

    @abstractmethod
    async def execute(self) -> None:
        """Run the job. Exceptions mark the job failed; they never stop the worker."""

    def _finish(self, status: JobStatus) -> None:
        self.finished_at = get_current_timestamp_utc()
        self.status = status

    def mark_started(self) -> None:
        self.started_at = get_current_timestamp_utc()
        self.status = JobStatus.IN_PROGRESS

    def mark_completed(self) -> None:
        self._finish(JobStatus.COMPLETED)

    def mark_failed(self, error_message: str) -> None:
        self._finish(JobStatus.FAILED)
        self.error_message = error_message

    def mark_cancelled(self) -> None:
        self._finish(JobStatus.CANCELLED)

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


TJob = TypeVar("TJob", bound=Job)
JobCallback = Callable[[TJob], Any]


class JobQueue(Generic[TJob]):
    """
    FIFO of jobs drained by ``concurrency`` worker tasks.

    Workers are spawned lazily by the first ``add_job``. A job cancelled while
    it is still waiting is dropped when a worker reaches it. Callbacks may be
    plain functions or coroutines; an exception inside a callback is logged and
    does not affect the job's outcome.
    """

    def __init__(
        self,
        concurrency: int = 1,
        on_job_complete: JobCallback | None = None,
        on_job_failed: JobCallback | None = None,
        on_job_started: JobCallback | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._concurrency = concurrency
        self._pending: asyncio.Queue[TJob] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._stopping = asyncio.Event()
        self._callbacks: dict[str, JobCallback | None] = {
            "started": on_job_started,
            "complete": on_job_complete,
            "failed": on_job_failed,
        }

        self._active: dict[str, TJob] = {}
        self._counts = {"processed": 0, "failed": 0, "skipped": 0}

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def add_job(self, job: TJob) -> None:
        """Queue a job, spawning the workers if they are not running yet."""
        self._pending.put_nowait(job)
        await self.start()

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"job-worker-{index}")
            for index in range(self._concurrency)
        ]

    async def stop(self, wait_for_completion: bool = True) -> None:
        """
        Stop the workers.

        With ``wait_for_completion`` each worker finishes the job it holds;
        otherwise workers are cancelled mid-job. Jobs still waiting stay queued.
        """
        if not self._running:
            return

        self._running = False
        self._stopping.set()

        if not wait_for_completion:
            for task in self._workers:
                task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    # -------------------------------------------------------------- #
    # Workers
    # -------------------------------------------------------------- #

    async def _next_job(self) -> TJob | None:
        try:
            return await asyncio.wait_for(self._pending.get(), timeout=WORKER_POLL_INTERVAL)
        except asyncio.TimeoutError:
            return None

    async def _worker(self, index: int) -> None:
        while self._running:
            try:
                job = await self._next_job()
                if job is None:
                    if self._stopping.is_set():
                        break
                    continue

                try:
                    if job.status == JobStatus.CANCELLED:
                        self._counts["skipped"] += 1
                    else:
                        self._active[job.job_id] = job
                        await self._run(job)
                finally:
                    self._active.pop(job.job_id, None)
                    self._pending.task_done()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[JobQueue] Worker {index} crashed on a job: {e}")

    async def _run(self, job: TJob) -> None:
        job.mark_started()
        await self._notify("started", job)

        try:
            await job.execute()
        except Exception as e:
            job.mark_failed(f"{type(e).__name__}: {e}")
            self._counts["failed"] += 1
            await self._notify("failed", job)
            return

        job.mark_completed()
        self._counts["processed"] += 1
        await self._notify("complete", job)

    async def _notify(self, event: str, job: TJob) -> None:
        callback = self._callbacks[event]
        if callback is None:
            return
        try:
            result = callback(job)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"[JobQueue] {event} callback raised for job {job.job_id}: {e}")

    # -------------------------------------------------------------- #
    # Inspection
    # -------------------------------------------------------------- #

    def get_queue_size(self) -> int:
        """Jobs waiting for a worker."""
        return self._pending.qsize()

    def get_active_jobs(self) -> list[TJob]:
        return list(self._active.values())

    def is_running(self) -> bool:
        return self._running

    def get_statistics(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "concurrency": self._concurrency,
            "queue_size": self.get_queue_size(),
            "active_job_ids": list(self._active),
            "total_processed": self._counts["processed"],
            "total_failed": self._counts["failed"],
            "total_skipped": self._counts["skipped"],
        }

    async def wait_until_empty(self) -> None:
        """Block until every queued job has been taken and finished."""
        await self._pending.join()
