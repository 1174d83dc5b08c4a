"""Unit tests for the generic job queue."""

import asyncio
from dataclasses import dataclass, field

import pytest

from callbrain.services.common.job import Job, JobQueue, JobStatus


@dataclass
class RecordedJob(Job):
    log: list = field(default_factory=list)
    delay: float = 0.0
    fail_with: Exception | None = None
    gate: asyncio.Event | None = None

    async def execute(self) -> None:
        self.log.append(("start", self.job_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.log.append(("end", self.job_id))


@pytest.mark.unit
class TestJobQueue:
    async def test_jobs_complete_and_callbacks_fire(self):
        completed, started = [], []
        queue = JobQueue(
            on_job_complete=lambda job: completed.append(job.job_id),
            on_job_started=lambda job: started.append(job.job_id),
        )
        jobs = [RecordedJob(job_id=f"job-{i}") for i in range(3)]
        for job in jobs:
            await queue.add_job(job)

        await queue.wait_until_empty()
        await queue.stop()

        assert completed == ["job-0", "job-1", "job-2"]
        assert started == completed
        assert all(job.status == JobStatus.COMPLETED for job in jobs)
        assert queue.get_statistics()["total_processed"] == 3

    async def test_failed_job_does_not_stop_the_queue(self):
        failed = []

        async def on_failed(job):
            failed.append(job)

        queue = JobQueue(on_job_failed=on_failed)
        bad = RecordedJob(job_id="bad", fail_with=RuntimeError("boom"))
        good = RecordedJob(job_id="good")
        await queue.add_job(bad)
        await queue.add_job(good)

        await queue.wait_until_empty()
        await queue.stop()

        assert [job.job_id for job in failed] == ["bad"]
        assert bad.status == JobStatus.FAILED
        assert bad.error_message == "RuntimeError: boom"
        assert good.status == JobStatus.COMPLETED

    async def test_workers_run_jobs_in_parallel(self):
        gate = asyncio.Event()
        log: list = []
        queue = JobQueue(concurrency=2)
        await queue.add_job(RecordedJob(job_id="a", log=log, gate=gate))
        await queue.add_job(RecordedJob(job_id="b", log=log, gate=gate))

        for _ in range(50):
            if len(queue.get_active_jobs()) == 2:
                break
            await asyncio.sleep(0.01)

        assert {job.job_id for job in queue.get_active_jobs()} == {"a", "b"}
        gate.set()
        await queue.wait_until_empty()
        await queue.stop()

    async def test_cancelled_jobs_are_skipped(self):
        gate = asyncio.Event()
        log: list = []
        queue = JobQueue(concurrency=1)
        blocker = RecordedJob(job_id="blocker", log=log, gate=gate)
        pending = RecordedJob(job_id="pending", log=log)
        await queue.add_job(blocker)
        await queue.add_job(pending)

        pending.mark_cancelled()
        gate.set()
        await queue.wait_until_empty()
        await queue.stop()

        assert ("start", "pending") not in log
        assert queue.get_statistics()["total_skipped"] == 1

    async def test_callback_errors_are_contained(self):
        def broken(job):
            raise ValueError("callback broke")

        queue = JobQueue(on_job_complete=broken)
        job = RecordedJob(job_id="job")
        await queue.add_job(job)
        await queue.wait_until_empty()
        await queue.stop()

        assert job.status == JobStatus.COMPLETED

    async def test_stop_and_restart(self):
        queue = JobQueue()
        await queue.start()
        assert queue.is_running()
        await queue.stop()
        assert not queue.is_running()

        job = RecordedJob(job_id="later")
        await queue.add_job(job)
        await queue.wait_until_empty()
        await queue.stop()
        assert job.status == JobStatus.COMPLETED

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            JobQueue(concurrency=0)
