from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.server.db_models import TranscriptSegmentsList
from callbrain.server.sql_models import (
    PromptTemplateModel,
    RecordingModel,
    RecordingStatus,
    SpeakerAssignmentModel,
    SummaryModel,
    TaskModel,
    TaskStatus,
    TranscriptModel,
)
from callbrain.services.common.models import (
    ExtractedTask,
    Recording,
    SpeakerAssignment,
    Task,
    TranscriptionResult,
)
from callbrain.services.manager import Manager
from callbrain.utils import OWNER_SPEAKER_SLOT, generate_16_char_uuid, get_current_timestamp_utc

# -------------------------------------------------------------- #
# SQL Recording Manager Service
# -------------------------------------------------------------- #


class SQLRecordingManagerService(Manager):
    """
    Relational persistence for recordings and everything a recording owns.

    Every write is scoped to one recording. Status writes are plain UPDATEs
    (last writer wins). Driver failures surface as ``StorageError`` from the
    SQL client.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SQLRecordingManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("SQLRecordingManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Prompt Templates
    # -------------------------------------------------------------- #

    async def create_prompt_template(self, name: str, template: str) -> str:
        """
        Insert a summarization prompt template.

        Returns:
            template_id: The generated ID for the template
        """
        if not template.strip():
            raise ValueError("template cannot be empty")

        template_id = generate_16_char_uuid()
        stmt = insert(PromptTemplateModel).values(
            id=template_id,
            name=name,
            template=template,
            created_at=get_current_timestamp_utc(),
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(f"Inserted prompt template: {template_id} ({name})")
        return template_id

    async def get_prompt_template(self, template_id: str) -> dict[str, Any] | None:
        stmt = select(PromptTemplateModel).where(PromptTemplateModel.id == template_id)
        rows = await self.server.sql_client.execute(stmt)
        return rows[0] if rows else None

    # -------------------------------------------------------------- #
    # Recording CRUD Methods
    # -------------------------------------------------------------- #

    async def create_recording(
        self,
        file_path: str,
        duration_seconds: float = 0.0,
        speakers: list[SpeakerAssignment] | None = None,
        system_audio_path: str | None = None,
        prompt_template_id: str | None = None,
        context: str | None = None,
        created_at: datetime | None = None,
    ) -> str:
        """
        Insert a finished recording and its speaker assignments.

        The recording starts in ``processing``. When no owner slot is given,
        slot 1 is created as the device owner.

        Args:
            file_path: Microphone track
            duration_seconds: Length of the recording
            speakers: Speaker assignments (recording_id is filled in)
            system_audio_path: Optional counterpart track
            prompt_template_id: Selected prompt template
            context: Free text supplied by the user
            created_at: When the recording stopped (defaults to now)

        Returns:
            recording_id: The generated ID for the recording
        """
        if not file_path:
            raise ValueError("file_path cannot be empty")

        speakers = list(speakers or [])
        slots = [speaker.speaker_slot for speaker in speakers]
        if len(slots) != len(set(slots)):
            raise ValueError("speaker slots must be unique per recording")
        if any(slot < 1 for slot in slots):
            raise ValueError("speaker slots start at 1")
        if OWNER_SPEAKER_SLOT not in slots:
            speakers.insert(0, SpeakerAssignment(recording_id="", speaker_slot=OWNER_SPEAKER_SLOT))

        recording_id = generate_16_char_uuid()
        timestamp = created_at or get_current_timestamp_utc()

        stmts = [
            insert(RecordingModel).values(
                id=recording_id,
                created_at=timestamp,
                updated_at=timestamp,
                file_path=file_path,
                system_audio_path=system_audio_path,
                duration_seconds=duration_seconds,
                prompt_template_id=prompt_template_id,
                status=RecordingStatus.PROCESSING,
                error_message=None,
                retry_count=0,
                context=context,
            )
        ]
        for speaker in speakers:
            stmts.append(
                insert(SpeakerAssignmentModel).values(
                    id=generate_16_char_uuid(),
                    recording_id=recording_id,
                    speaker_slot=speaker.speaker_slot,
                    contact_id=speaker.contact_id,
                    is_owner=speaker.speaker_slot == OWNER_SPEAKER_SLOT,
                )
            )

        await self.server.sql_client.execute_many(stmts)
        await self.services.logging_service.info(
            f"Inserted recording: {recording_id} with {len(speakers)} speaker slots"
        )
        return recording_id

    async def get_recording(self, recording_id: str) -> Recording | None:
        stmt = select(RecordingModel).where(RecordingModel.id == recording_id)
        rows = await self.server.sql_client.execute(stmt)
        return Recording.from_row(rows[0]) if rows else None

    async def list_recordings_by_status(self, statuses: list[RecordingStatus]) -> list[Recording]:
        """List recordings in any of the given statuses, oldest first."""
        stmt = (
            select(RecordingModel)
            .where(RecordingModel.status.in_(statuses))
            .order_by(RecordingModel.created_at.asc())
        )
        rows = await self.server.sql_client.execute(stmt)
        return [Recording.from_row(row) for row in rows]

    async def list_failed_recordings(self, include_dismissed: bool = False) -> list[Recording]:
        """List failed recordings, most recently updated first."""
        stmt = select(RecordingModel).where(RecordingModel.status == RecordingStatus.FAILED)
        if not include_dismissed:
            stmt = stmt.where(RecordingModel.dismissed_at.is_(None))
        stmt = stmt.order_by(RecordingModel.updated_at.desc())
        rows = await self.server.sql_client.execute(stmt)
        return [Recording.from_row(row) for row in rows]

    async def update_recording_status(
        self, recording_id: str, status: RecordingStatus, error_message: str | None = None
    ) -> None:
        """
        Write a recording's status.

        ``error_message`` is stored only for ``failed`` and cleared otherwise.

        Raises:
            ValueError: If status is failed without an error message
        """
        if status == RecordingStatus.FAILED:
            if not error_message:
                raise ValueError("A failed recording requires an error message")
        else:
            error_message = None

        stmt = (
            update(RecordingModel)
            .where(RecordingModel.id == recording_id)
            .values(
                status=status,
                error_message=error_message,
                updated_at=get_current_timestamp_utc(),
            )
        )
        await self.server.sql_client.execute(stmt)

    async def increment_retry_count(self, recording_id: str) -> None:
        """Record one stage failure."""
        stmt = (
            update(RecordingModel)
            .where(RecordingModel.id == recording_id)
            .values(retry_count=RecordingModel.retry_count + 1)
        )
        await self.server.sql_client.execute(stmt)

    async def reset_for_manual_retry(self, recording_id: str) -> None:
        """Move a failed recording back to processing with a zeroed retry count."""
        stmt = (
            update(RecordingModel)
            .where(RecordingModel.id == recording_id)
            .values(
                status=RecordingStatus.PROCESSING,
                error_message=None,
                retry_count=0,
                dismissed_at=None,
                updated_at=get_current_timestamp_utc(),
            )
        )
        await self.server.sql_client.execute(stmt)

    async def mark_dismissed(self, recording_id: str) -> None:
        """Acknowledge a failed recording without retrying it."""
        stmt = (
            update(RecordingModel)
            .where(RecordingModel.id == recording_id)
            .values(dismissed_at=get_current_timestamp_utc())
        )
        await self.server.sql_client.execute(stmt)

    # -------------------------------------------------------------- #
    # Speaker Assignments
    # -------------------------------------------------------------- #

    async def get_speaker_assignments(self, recording_id: str) -> list[SpeakerAssignment]:
        stmt = (
            select(SpeakerAssignmentModel)
            .where(SpeakerAssignmentModel.recording_id == recording_id)
            .order_by(SpeakerAssignmentModel.speaker_slot.asc())
        )
        rows = await self.server.sql_client.execute(stmt)
        return [
            SpeakerAssignment(
                recording_id=row["recording_id"],
                speaker_slot=row["speaker_slot"],
                contact_id=row["contact_id"],
                is_owner=bool(row["is_owner"]),
            )
            for row in rows
        ]

    # -------------------------------------------------------------- #
    # Transcripts
    # -------------------------------------------------------------- #

    async def get_transcript(self, recording_id: str) -> dict[str, Any] | None:
        stmt = select(TranscriptModel).where(TranscriptModel.recording_id == recording_id)
        rows = await self.server.sql_client.execute(stmt)
        return rows[0] if rows else None

    async def create_transcript(self, recording_id: str, result: TranscriptionResult) -> str:
        """
        Insert the transcript of a recording.

        Raises:
            ValueError: If the segments are malformed
            StorageError: If a transcript already exists for the recording
        """
        segments = [segment.to_dict() for segment in result.segments]
        TranscriptSegmentsList.model_validate(segments)

        transcript_id = generate_16_char_uuid()
        stmt = insert(TranscriptModel).values(
            id=transcript_id,
            recording_id=recording_id,
            full_text=result.full_text,
            segments=segments,
            created_at=get_current_timestamp_utc(),
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Inserted transcript {transcript_id} for recording {recording_id} "
            f"({len(segments)} segments)"
        )
        return transcript_id

    async def count_transcripts(self, recording_id: str) -> int:
        stmt = select(TranscriptModel.id).where(TranscriptModel.recording_id == recording_id)
        return len(await self.server.sql_client.execute(stmt))

    async def set_transcript_embedding(self, transcript_id: str, embedding_id: str) -> None:
        stmt = (
            update(TranscriptModel)
            .where(TranscriptModel.id == transcript_id)
            .values(embedding_id=embedding_id, embedded_at=get_current_timestamp_utc())
        )
        await self.server.sql_client.execute(stmt)

    # -------------------------------------------------------------- #
    # Summaries
    # -------------------------------------------------------------- #

    async def get_summary(self, recording_id: str) -> dict[str, Any] | None:
        stmt = select(SummaryModel).where(SummaryModel.recording_id == recording_id)
        rows = await self.server.sql_client.execute(stmt)
        return rows[0] if rows else None

    async def create_summary(
        self, recording_id: str, summary_text: str, prompt_template_snapshot: str
    ) -> str:
        """Insert the summary of a recording with the template text that produced it."""
        summary_id = generate_16_char_uuid()
        stmt = insert(SummaryModel).values(
            id=summary_id,
            recording_id=recording_id,
            summary_text=summary_text,
            prompt_template_snapshot=prompt_template_snapshot,
            created_at=get_current_timestamp_utc(),
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Inserted summary {summary_id} for recording {recording_id}"
        )
        return summary_id

    async def count_summaries(self, recording_id: str) -> int:
        stmt = select(SummaryModel.id).where(SummaryModel.recording_id == recording_id)
        return len(await self.server.sql_client.execute(stmt))

    async def set_summary_embedding(self, summary_id: str, embedding_id: str) -> None:
        stmt = (
            update(SummaryModel)
            .where(SummaryModel.id == summary_id)
            .values(embedding_id=embedding_id, embedded_at=get_current_timestamp_utc())
        )
        await self.server.sql_client.execute(stmt)

    # -------------------------------------------------------------- #
    # Tasks
    # -------------------------------------------------------------- #

    async def create_tasks(
        self,
        recording_id: str,
        tasks: list[ExtractedTask],
        contact_ids: dict[str, str | None] | None = None,
    ) -> list[str]:
        """
        Insert extracted tasks and flag the recording as extracted, atomically.

        Args:
            recording_id: Recording the tasks came from
            tasks: Tasks returned by the task extractor
            contact_ids: Owner label ("Me", "Speaker 2") to contact id

        Returns:
            IDs of the inserted tasks
        """
        contact_ids = contact_ids or {}
        timestamp = get_current_timestamp_utc()

        task_ids = []
        stmts = []
        for task in tasks:
            task_id = generate_16_char_uuid()
            task_ids.append(task_id)
            stmts.append(
                insert(TaskModel).values(
                    id=task_id,
                    recording_id=recording_id,
                    contact_id=contact_ids.get(task.owner),
                    description=task.description,
                    owner=task.owner,
                    due_date=task.due_date,
                    priority=task.priority,
                    source_quote=task.source_quote,
                    status=TaskStatus.OPEN,
                    created_at=timestamp,
                )
            )
        stmts.append(
            update(RecordingModel)
            .where(RecordingModel.id == recording_id)
            .values(tasks_extracted_at=timestamp)
        )

        await self.server.sql_client.execute_many(stmts)
        await self.services.logging_service.info(
            f"Inserted {len(task_ids)} tasks for recording {recording_id}"
        )
        return task_ids

    async def get_tasks(self, recording_id: str) -> list[Task]:
        stmt = (
            select(TaskModel)
            .where(TaskModel.recording_id == recording_id)
            .order_by(TaskModel.created_at.asc())
        )
        rows = await self.server.sql_client.execute(stmt)
        return [
            Task(
                id=row["id"],
                recording_id=row["recording_id"],
                description=row["description"],
                owner=row["owner"],
                priority=row["priority"],
                status=row["status"],
                source_quote=row["source_quote"],
                due_date=row["due_date"],
                contact_id=row["contact_id"],
            )
            for row in rows
        ]
