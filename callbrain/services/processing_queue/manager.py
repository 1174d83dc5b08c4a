"""
Processing Queue Service.

Drives a finished recording through transcribe, summarize, extract tasks and
embed:
- Idempotent enqueue; a recording id is never in flight twice
- A fixed pool of workers; one failing recording never blocks another
- Per-stage retry with backoff; a permanent error or an exhausted budget fails
  the recording with the raw error message
- Stages whose output is already persisted are skipped, so interrupted
  recordings resume where they stopped
- Status transitions published to subscribers as ``StateTransition`` events
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.manager import ServicesManager

from callbrain.server.sql_models import RecordingStatus
from callbrain.services.common.errors import (
    AdapterError,
    PermanentAdapterError,
    StorageError,
    TransientAdapterError,
)
from callbrain.services.common.job import Job, JobQueue
from callbrain.services.common.models import (
    UNIT_SUMMARY,
    UNIT_TRANSCRIPT,
    EmbeddedUnit,
    Recording,
    SpeakerAssignment,
    StateTransition,
    TranscriptionResult,
    TranscriptSegment,
)
from callbrain.services.manager import Manager
from callbrain.services.processing_queue.retry import RetryPolicy
from callbrain.services.processing_queue.state_machine import (
    RESUMABLE_STATES,
    is_terminal,
    validate_transition,
)
from callbrain.services.summarization_manager.prompts import DEFAULT_PROMPT_TEMPLATE
from callbrain.utils import OWNER_SPEAKER_SLOT, get_current_timestamp_utc, speaker_label

DEFAULT_PIPELINE_WORKERS = 4

STAGE_TRANSCRIBE = "transcribe"
STAGE_SUMMARIZE = "summarize"
STAGE_EXTRACT = "extract_tasks"
STAGE_EMBED = "embed"

# forward order of the automatic pipeline
STATUS_ORDER = (
    RecordingStatus.PROCESSING,
    RecordingStatus.TRANSCRIBING,
    RecordingStatus.SUMMARIZING,
    RecordingStatus.COMPLETE,
)


class StageFailedError(Exception):
    """A stage gave up: permanent error or attempts exhausted."""

    def __init__(self, stage: str, error: AdapterError):
        super().__init__(str(error))
        self.stage = stage
        self.error = error


def primary_counterpart_contact(speakers: list[SpeakerAssignment]) -> str | None:
    """Contact of the lowest non-owner slot, falling back to the owner slot."""
    others = sorted(
        (s for s in speakers if s.speaker_slot != OWNER_SPEAKER_SLOT and s.contact_id),
        key=lambda s: s.speaker_slot,
    )
    if others:
        return others[0].contact_id
    owner = next((s for s in speakers if s.speaker_slot == OWNER_SPEAKER_SLOT), None)
    return owner.contact_id if owner else None


def participant_contacts(speakers: list[SpeakerAssignment]) -> tuple[str, ...]:
    """Every contact assigned to a speaker slot, in slot order."""
    ordered = sorted((s for s in speakers if s.contact_id), key=lambda s: s.speaker_slot)
    return tuple(dict.fromkeys(s.contact_id for s in ordered))


def task_contact_ids(speakers: list[SpeakerAssignment]) -> dict[str, str | None]:
    """
    Map task owner labels to contact ids.

    A task is linked to its owner slot's contact; when the owner slot has no
    contact (usually the device owner), to the primary counterpart.
    """
    counterpart = primary_counterpart_contact(speakers)
    return {
        speaker_label(speaker.speaker_slot): speaker.contact_id or counterpart
        for speaker in speakers
    }


def transcription_from_row(row: dict[str, Any]) -> TranscriptionResult:
    segments = [
        TranscriptSegment(
            speaker=segment["speaker"],
            start=segment["start"],
            end=segment["end"],
            text=segment["text"],
        )
        for segment in row.get("segments") or []
    ]
    return TranscriptionResult(full_text=row["full_text"], segments=segments)


# -------------------------------------------------------------- #
# Recording Job
# -------------------------------------------------------------- #


@dataclass
class RecordingJob(Job):
    """
    One pass of a recording through the pipeline.

    Attributes:
        recording_id: Recording being processed
        services: Reference to ServicesManager for accessing services
        queue_service: Owning ProcessingQueueService (events, policy)
        completion: Resolved with the final status when the job ends
        final_status: Status the recording was left in, None if unknown
        attempts: Failed attempts per stage during this job
        last_error: Last adapter error message seen
    """

    recording_id: str = ""
    services: "ServicesManager" = None  # type: ignore
    queue_service: "ProcessingQueueService" = None  # type: ignore
    completion: asyncio.Future | None = None
    final_status: RecordingStatus | None = None
    attempts: dict[str, int] = field(default_factory=dict)
    last_error: str | None = None

    async def wait(self) -> RecordingStatus | None:
        """Wait for the job to end and return the recording's final status."""
        return await asyncio.shield(self.completion)

    def resolve(self, status: RecordingStatus | None) -> None:
        self.final_status = status
        if self.completion is not None and not self.completion.done():
            self.completion.set_result(status)

    # -------------------------------------------------------------- #
    # Job Execution
    # -------------------------------------------------------------- #

    async def execute(self) -> None:
        """
        Run every stage that has not produced persisted output yet.

        Stage failures end in ``failed`` and never escape. Storage failures
        beyond the storage budget do escape, leaving the recording in a
        resumable status.
        """
        if not self.services:
            raise RuntimeError("ServicesManager not provided to RecordingJob")

        sql = self.services.sql_recording_service_manager
        recording = await self._storage("get_recording", lambda: sql.get_recording(self.recording_id))
        if recording is None:
            await self.services.logging_service.warning(
                f"Recording {self.recording_id} not found, nothing to process"
            )
            self.final_status = None
            return

        if is_terminal(recording.status):
            await self.services.logging_service.info(
                f"Recording {self.recording_id} is already {recording.status.value}, skipping"
            )
            self.final_status = recording.status
            return

        try:
            await self._run_pipeline(recording)
        except StageFailedError as e:
            await self._fail(recording, e)

        self.final_status = recording.status

    async def _run_pipeline(self, recording: Recording) -> None:
        sql = self.services.sql_recording_service_manager
        speakers = await self._storage(
            "get_speaker_assignments", lambda: sql.get_speaker_assignments(recording.id)
        )

        await self.services.logging_service.info(
            f"Processing recording {recording.id} (status={recording.status.value}, "
            f"speakers={len(speakers)})"
        )

        transcript = await self._transcribe(recording, speakers)
        await self._advance(recording, RecordingStatus.TRANSCRIBING)

        summary = await self._summarize(recording, transcript)
        await self._advance(recording, RecordingStatus.SUMMARIZING)

        await self._extract_tasks(recording, transcript, speakers)
        await self._embed(recording, transcript, summary, speakers)
        await self._advance(recording, RecordingStatus.COMPLETE)

        await self.services.logging_service.info(f"Recording {recording.id} complete")

    # -------------------------------------------------------------- #
    # Stages
    # -------------------------------------------------------------- #

    async def _transcribe(
        self, recording: Recording, speakers: list[SpeakerAssignment]
    ) -> dict[str, Any]:
        sql = self.services.sql_recording_service_manager
        row = await self._storage("get_transcript", lambda: sql.get_transcript(recording.id))
        if row is not None:
            await self.services.logging_service.debug(
                f"Recording {recording.id}: transcript exists, skipping transcription"
            )
            return row

        result = await self._run_stage(
            STAGE_TRANSCRIBE,
            lambda: self.services.transcription_adapter.transcribe(
                recording.file_path,
                speakers=speakers,
                system_audio_path=recording.system_audio_path,
            ),
        )
        await self._storage("create_transcript", lambda: sql.create_transcript(recording.id, result))
        return await self._storage("get_transcript", lambda: sql.get_transcript(recording.id))

    async def _summarize(self, recording: Recording, transcript: dict[str, Any]) -> dict[str, Any]:
        sql = self.services.sql_recording_service_manager
        row = await self._storage("get_summary", lambda: sql.get_summary(recording.id))
        if row is not None:
            await self.services.logging_service.debug(
                f"Recording {recording.id}: summary exists, skipping summarization"
            )
            return row

        template = DEFAULT_PROMPT_TEMPLATE
        missing_template = False
        if recording.prompt_template_id:
            template_row = await self._storage(
                "get_prompt_template",
                lambda: sql.get_prompt_template(recording.prompt_template_id),
            )
            if template_row is None:
                missing_template = True
            else:
                template = template_row["template"]

        async def summarize() -> str:
            if missing_template:
                raise PermanentAdapterError(
                    f"Prompt template {recording.prompt_template_id} not found"
                )
            return await self.services.summarization_adapter.summarize(
                transcript["full_text"], template, context=recording.context
            )

        summary_text = await self._run_stage(STAGE_SUMMARIZE, summarize)
        await self._storage(
            "create_summary", lambda: sql.create_summary(recording.id, summary_text, template)
        )
        return await self._storage("get_summary", lambda: sql.get_summary(recording.id))

    async def _extract_tasks(
        self,
        recording: Recording,
        transcript: dict[str, Any],
        speakers: list[SpeakerAssignment],
    ) -> None:
        if recording.tasks_extracted_at is not None:
            await self.services.logging_service.debug(
                f"Recording {recording.id}: tasks already extracted, skipping"
            )
            return

        sql = self.services.sql_recording_service_manager
        reference_date = recording.created_at.date()
        tasks = await self._run_stage(
            STAGE_EXTRACT,
            lambda: self.services.task_extractor.extract_tasks(
                transcript["full_text"], reference_date=reference_date
            ),
        )
        await self._storage(
            "create_tasks",
            lambda: sql.create_tasks(recording.id, tasks, contact_ids=task_contact_ids(speakers)),
        )
        recording.tasks_extracted_at = get_current_timestamp_utc()

    async def _embed(
        self,
        recording: Recording,
        transcript: dict[str, Any],
        summary: dict[str, Any],
        speakers: list[SpeakerAssignment],
    ) -> None:
        sql = self.services.sql_recording_service_manager
        contact_id = primary_counterpart_contact(speakers)
        participants = participant_contacts(speakers)

        targets = [
            (UNIT_TRANSCRIPT, transcript, "full_text", sql.set_transcript_embedding),
            (UNIT_SUMMARY, summary, "summary_text", sql.set_summary_embedding),
        ]
        for unit_type, row, text_key, record_embedding in targets:
            if row.get("embedding_id"):
                await self.services.logging_service.debug(
                    f"Recording {recording.id}: {unit_type} already embedded, skipping"
                )
                continue

            text = row[text_key]
            vector = await self._run_stage(
                STAGE_EMBED, lambda: self.services.embedding_adapter.embed(text)
            )
            unit = EmbeddedUnit(
                unit_type=unit_type,
                unit_id=row["id"],
                text=text,
                created_at=recording.created_at,
                recording_id=recording.id,
                contact_id=contact_id,
                participant_contact_ids=participants,
            )
            embedding_id = await self._storage(
                "index_unit",
                lambda: self.services.embedding_store_manager.index_unit(unit, vector),
            )
            await self._storage(
                "record_embedding", lambda: record_embedding(row["id"], embedding_id)
            )

    # -------------------------------------------------------------- #
    # Retry Helpers
    # -------------------------------------------------------------- #

    async def _run_stage(self, stage: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """
        Call a stage adapter under the stage retry policy.

        Every failed attempt increments the recording's retry_count.

        Raises:
            StageFailedError: Permanent error or attempts exhausted
        """
        policy = self.queue_service.policy
        sql = self.services.sql_recording_service_manager

        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except AdapterError as e:
                error = e
            except StorageError:
                raise
            except Exception as e:
                # unclassified adapter failures are retried
                error = TransientAdapterError(str(e) or type(e).__name__, stage=stage)

            self.attempts[stage] = attempt
            self.last_error = str(error)
            await self._storage(
                "increment_retry_count", lambda: sql.increment_retry_count(self.recording_id)
            )
            await self.services.logging_service.warning(
                f"Recording {self.recording_id}: {stage} attempt {attempt}/"
                f"{policy.max_attempts} failed "
                f"({'transient' if error.transient else 'permanent'}): {error}"
            )

            if not error.transient or attempt >= policy.max_attempts:
                raise StageFailedError(stage, error)

            await asyncio.sleep(policy.delay_for(attempt))

    async def _storage(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Call the store, retrying StorageError without touching stage attempts."""
        policy = self.queue_service.policy

        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except StorageError as e:
                limit = policy.storage_max_attempts
                await self.services.logging_service.error(
                    f"Recording {self.recording_id}: storage error during {operation} "
                    f"(attempt {attempt}{'/' + str(limit) if limit else ''}): {e}"
                )
                if limit is not None and attempt >= limit:
                    raise
                await asyncio.sleep(policy.delay_for(attempt))

    # -------------------------------------------------------------- #
    # Transitions
    # -------------------------------------------------------------- #

    async def _advance(self, recording: Recording, target: RecordingStatus) -> None:
        """Move forward to ``target`` unless the recording is already there or beyond."""
        current_index = STATUS_ORDER.index(recording.status)
        target_index = STATUS_ORDER.index(target)
        if current_index >= target_index:
            return

        # catch up intermediate states left behind by an interrupted run
        for status in STATUS_ORDER[current_index + 1 : target_index + 1]:
            await self._set_status(recording, status)

    async def _fail(self, recording: Recording, failure: StageFailedError) -> None:
        message = str(failure.error) or type(failure.error).__name__
        await self.services.logging_service.error(
            f"Recording {recording.id} failed at {failure.stage}: {message}"
        )
        await self._set_status(recording, RecordingStatus.FAILED, error_message=message)

    async def _set_status(
        self, recording: Recording, status: RecordingStatus, error_message: str | None = None
    ) -> None:
        validate_transition(recording.status, status)
        sql = self.services.sql_recording_service_manager
        await self._storage(
            "update_recording_status",
            lambda: sql.update_recording_status(recording.id, status, error_message=error_message),
        )
        recording.status = status
        self.queue_service.publish_transition(recording.id, status)


# -------------------------------------------------------------- #
# Processing Queue Service
# -------------------------------------------------------------- #


class ProcessingQueueService(Manager):
    """
    Service owning the recording pipeline workers.

    ``enqueue`` only schedules work. Callers follow progress through
    ``RecordingJob.wait()`` or a ``subscribe()`` event queue.
    """

    def __init__(
        self,
        context: Context,
        concurrency: int | None = None,
        policy: RetryPolicy | None = None,
    ):
        """
        Initialize the processing queue.

        Args:
            context: Application context
            concurrency: Parallel recordings (defaults to env: PIPELINE_WORKERS)
            policy: Stage retry policy (defaults to RetryPolicy.from_env())
        """
        super().__init__(context)

        if concurrency is None:
            concurrency = int(os.getenv("PIPELINE_WORKERS", str(DEFAULT_PIPELINE_WORKERS)))

        self.policy = policy or RetryPolicy.from_env()
        self.concurrency = concurrency
        self._in_flight: dict[str, RecordingJob] = {}
        self._subscribers: list[asyncio.Queue[StateTransition]] = []
        self._job_counter = 0

        self.job_queue: JobQueue[RecordingJob] = JobQueue(
            concurrency=concurrency,
            on_job_complete=self._on_job_complete,
            on_job_failed=self._on_job_failed,
            on_job_started=self._on_job_started,
        )

    # -------------------------------------------------------------- #
    # Manager Lifecycle
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"ProcessingQueueService initialized (workers={self.concurrency}, "
            f"max_attempts={self.policy.max_attempts}, delays={self.policy.delays})"
        )

    async def on_close(self) -> None:
        await self.job_queue.stop(wait_for_completion=True)
        for job in list(self._in_flight.values()):
            job.mark_cancelled()
            job.resolve(None)
        self._in_flight.clear()
        if self.services:
            await self.services.logging_service.info("ProcessingQueueService stopped")

    # -------------------------------------------------------------- #
    # Queue Operations
    # -------------------------------------------------------------- #

    async def enqueue(self, recording_id: str) -> RecordingJob | None:
        """
        Schedule a recording for processing.

        Idempotent: an id already in flight returns the existing job. A
        recording that is already complete or failed resolves without calling
        any adapter.

        Returns:
            The job handle, or None when the application is shutting down
        """
        if not recording_id:
            raise ValueError("recording_id cannot be empty")

        existing = self._in_flight.get(recording_id)
        if existing is not None:
            return existing

        if self.context.is_shutting_down():
            await self.services.logging_service.warning(
                f"Shutdown in progress, not enqueuing recording {recording_id}"
            )
            return None

        self._job_counter += 1
        job = RecordingJob(
            job_id=f"{recording_id}-{self._job_counter}",
            recording_id=recording_id,
            services=self.services,
            queue_service=self,
            completion=asyncio.get_running_loop().create_future(),
        )
        self._in_flight[recording_id] = job
        await self.job_queue.add_job(job)

        await self.services.logging_service.debug(
            f"Enqueued recording {recording_id} (queue size: {self.job_queue.get_queue_size()})"
        )
        return job

    def discard(self, recording_id: str) -> bool:
        """
        Drop a job that has not started yet.

        Returns:
            True if a pending job was removed; running jobs are never interrupted
        """
        job = self._in_flight.get(recording_id)
        if job is None or job.started_at is not None or job.is_finished:
            return False

        job.mark_cancelled()
        del self._in_flight[recording_id]
        job.resolve(None)
        return True

    def in_flight(self) -> dict[str, RecordingJob]:
        """Recordings queued or running, by id."""
        return dict(self._in_flight)

    async def resume_pending(self) -> list[RecordingJob]:
        """
        Re-enqueue every recording left in a non-terminal status, oldest first.

        Returns:
            One job handle per resumed recording
        """
        recordings = await self.services.sql_recording_service_manager.list_recordings_by_status(
            list(RESUMABLE_STATES)
        )
        resumed = []
        for recording in recordings:
            job = await self.enqueue(recording.id)
            if job is not None:
                resumed.append(job)

        if resumed:
            await self.services.logging_service.info(f"Resumed {len(resumed)} recordings")
        return resumed

    async def wait_until_idle(self) -> None:
        """Wait until every queued recording has been processed."""
        await self.job_queue.wait_until_empty()

    def get_statistics(self) -> dict[str, Any]:
        stats = self.job_queue.get_statistics()
        stats["in_flight"] = list(self._in_flight.keys())
        stats["subscribers"] = len(self._subscribers)
        return stats

    # -------------------------------------------------------------- #
    # Event Stream
    # -------------------------------------------------------------- #

    def subscribe(self) -> asyncio.Queue[StateTransition]:
        """Get a queue receiving every status transition from now on."""
        queue: asyncio.Queue[StateTransition] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[StateTransition]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish_transition(self, recording_id: str, status: RecordingStatus) -> None:
        event = StateTransition(
            recording_id=recording_id, status=status, at=get_current_timestamp_utc()
        )
        for queue in self._subscribers:
            queue.put_nowait(event)

    # -------------------------------------------------------------- #
    # Job Callbacks
    # -------------------------------------------------------------- #

    async def _on_job_started(self, job: RecordingJob) -> None:
        await self.services.logging_service.debug(f"Started job {job.job_id}")

    async def _on_job_complete(self, job: RecordingJob) -> None:
        self._release(job)
        job.resolve(job.final_status)
        await self.services.logging_service.debug(
            f"Finished job {job.job_id}: "
            f"{job.final_status.value if job.final_status else 'no recording'}"
        )

    async def _on_job_failed(self, job: RecordingJob) -> None:
        self._release(job)
        job.resolve(None)
        await self.services.logging_service.error(
            f"Job {job.job_id} for recording {job.recording_id} aborted: {job.error_message}"
        )

    def _release(self, job: RecordingJob) -> None:
        if self._in_flight.get(job.recording_id) is job:
            del self._in_flight[job.recording_id]
