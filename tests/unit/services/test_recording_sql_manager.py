"""
Unit tests for SQL Recording Manager Service.

Tests cover recordings, speaker assignments, transcripts, summaries, tasks and
prompt templates against the in-memory SQLite database.
"""

from datetime import date, datetime, timezone

import pytest

from callbrain.server.sql_models import RecordingStatus, TaskPriority, TaskStatus
from callbrain.services.common.errors import StorageError
from callbrain.services.common.models import (
    ExtractedTask,
    SpeakerAssignment,
    TranscriptionResult,
    TranscriptSegment,
)


@pytest.fixture
def sql(test_services_manager):
    return test_services_manager.sql_recording_service_manager


def transcription(text: str = "Hello there.") -> TranscriptionResult:
    return TranscriptionResult(
        full_text=f"Speaker 1: {text}",
        segments=[TranscriptSegment(speaker=1, start=0.0, end=1.5, text=text)],
    )


@pytest.mark.unit
class TestRecordings:
    """Test recording rows and speaker assignments."""

    async def test_create_recording_defaults(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav", duration_seconds=61.5)

        assert len(recording_id) == 16
        recording = await sql.get_recording(recording_id)
        assert recording.file_path == "call.wav"
        assert recording.status == RecordingStatus.PROCESSING
        assert recording.retry_count == 0
        assert recording.error_message is None
        assert recording.duration_seconds == 61.5
        assert recording.tasks_extracted_at is None

    async def test_owner_slot_is_added(self, sql):
        recording_id = await sql.create_recording(
            file_path="call.wav",
            speakers=[SpeakerAssignment(recording_id="", speaker_slot=2, contact_id="c-2")],
        )

        speakers = await sql.get_speaker_assignments(recording_id)

        assert [(s.speaker_slot, s.contact_id, s.is_owner) for s in speakers] == [
            (1, None, True),
            (2, "c-2", False),
        ]
        assert all(s.recording_id == recording_id for s in speakers)

    @pytest.mark.parametrize(
        "slots",
        [[2, 2], [0]],
        ids=["duplicate", "zero"],
    )
    async def test_invalid_speaker_slots(self, sql, slots):
        speakers = [SpeakerAssignment(recording_id="", speaker_slot=slot) for slot in slots]
        with pytest.raises(ValueError):
            await sql.create_recording(file_path="call.wav", speakers=speakers)

    async def test_empty_file_path(self, sql):
        with pytest.raises(ValueError):
            await sql.create_recording(file_path="")

    async def test_unknown_recording(self, sql):
        assert await sql.get_recording("0000000000000000") is None

    async def test_list_by_status_oldest_first(self, sql):
        newer = await sql.create_recording(
            file_path="b.wav", created_at=datetime(2026, 10, 2, tzinfo=timezone.utc)
        )
        older = await sql.create_recording(
            file_path="a.wav", created_at=datetime(2026, 10, 1, tzinfo=timezone.utc)
        )
        done = await sql.create_recording(file_path="c.wav")
        await sql.update_recording_status(done, RecordingStatus.TRANSCRIBING)
        await sql.update_recording_status(done, RecordingStatus.SUMMARIZING)
        await sql.update_recording_status(done, RecordingStatus.COMPLETE)

        pending = await sql.list_recordings_by_status([RecordingStatus.PROCESSING])

        assert [r.id for r in pending] == [older, newer]


@pytest.mark.unit
class TestStatusWrites:
    """Test status, error message, retry count and dismissal writes."""

    async def test_failed_requires_message(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")
        with pytest.raises(ValueError):
            await sql.update_recording_status(recording_id, RecordingStatus.FAILED)

    async def test_error_message_only_kept_for_failed(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")

        await sql.update_recording_status(
            recording_id, RecordingStatus.FAILED, error_message="HTTP 503"
        )
        assert (await sql.get_recording(recording_id)).error_message == "HTTP 503"

        await sql.update_recording_status(
            recording_id, RecordingStatus.PROCESSING, error_message="ignored"
        )
        assert (await sql.get_recording(recording_id)).error_message is None

    async def test_retry_count_and_manual_reset(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")
        for _ in range(3):
            await sql.increment_retry_count(recording_id)
        await sql.update_recording_status(
            recording_id, RecordingStatus.FAILED, error_message="timeout"
        )
        await sql.mark_dismissed(recording_id)

        recording = await sql.get_recording(recording_id)
        assert recording.retry_count == 3
        assert recording.dismissed_at is not None

        await sql.reset_for_manual_retry(recording_id)

        recording = await sql.get_recording(recording_id)
        assert recording.status == RecordingStatus.PROCESSING
        assert recording.retry_count == 0
        assert recording.error_message is None
        assert recording.dismissed_at is None

    async def test_list_failed_excludes_dismissed(self, sql):
        first = await sql.create_recording(file_path="a.wav")
        second = await sql.create_recording(file_path="b.wav")
        for recording_id in (first, second):
            await sql.update_recording_status(
                recording_id, RecordingStatus.FAILED, error_message="bad audio"
            )
        await sql.mark_dismissed(first)

        assert [r.id for r in await sql.list_failed_recordings()] == [second]
        assert {r.id for r in await sql.list_failed_recordings(include_dismissed=True)} == {
            first,
            second,
        }


@pytest.mark.unit
class TestTranscriptsAndSummaries:
    async def test_transcript_round_trip(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")

        transcript_id = await sql.create_transcript(recording_id, transcription())

        row = await sql.get_transcript(recording_id)
        assert row["id"] == transcript_id
        assert row["full_text"] == "Speaker 1: Hello there."
        assert row["segments"] == [
            {"speaker": 1, "start": 0.0, "end": 1.5, "text": "Hello there."}
        ]
        assert row["embedding_id"] is None
        assert await sql.count_transcripts(recording_id) == 1

    async def test_one_transcript_per_recording(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")
        await sql.create_transcript(recording_id, transcription())

        with pytest.raises(StorageError):
            await sql.create_transcript(recording_id, transcription("Again."))
        assert await sql.count_transcripts(recording_id) == 1

    async def test_malformed_segments_rejected(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")
        bad = TranscriptionResult(
            full_text="x", segments=[TranscriptSegment(speaker=1, start=2.0, end=1.0, text="x")]
        )

        with pytest.raises(ValueError):
            await sql.create_transcript(recording_id, bad)

    async def test_summary_keeps_template_snapshot(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")

        summary_id = await sql.create_summary(recording_id, "They agreed.", "Summarize briefly.")
        await sql.set_summary_embedding(summary_id, f"summary:{summary_id}")

        row = await sql.get_summary(recording_id)
        assert row["summary_text"] == "They agreed."
        assert row["prompt_template_snapshot"] == "Summarize briefly."
        assert row["embedding_id"] == f"summary:{summary_id}"
        assert row["embedded_at"] is not None

    async def test_prompt_templates(self, sql):
        template_id = await sql.create_prompt_template("Sales", "Focus on pricing.")

        row = await sql.get_prompt_template(template_id)

        assert row["name"] == "Sales"
        assert row["template"] == "Focus on pricing."
        assert await sql.get_prompt_template("0000000000000000") is None
        with pytest.raises(ValueError):
            await sql.create_prompt_template("Empty", "   ")


@pytest.mark.unit
class TestTasks:
    async def test_create_tasks_links_contacts(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")
        tasks = [
            ExtractedTask(
                description="Send pricing deck",
                owner="Me",
                priority=TaskPriority.HIGH,
                due_date=date(2026, 10, 16),
                source_quote="I'll send the deck Friday.",
            ),
            ExtractedTask(description="Review contract", owner="Speaker 2"),
        ]

        task_ids = await sql.create_tasks(
            recording_id, tasks, contact_ids={"Me": "c-1", "Speaker 2": "c-2"}
        )

        stored = await sql.get_tasks(recording_id)
        assert {task.id for task in stored} == set(task_ids)
        by_owner = {task.owner: task for task in stored}
        assert by_owner["Me"].contact_id == "c-1"
        assert by_owner["Me"].due_date == date(2026, 10, 16)
        assert by_owner["Me"].priority == TaskPriority.HIGH
        assert by_owner["Me"].status == TaskStatus.OPEN
        assert by_owner["Speaker 2"].contact_id == "c-2"
        assert by_owner["Speaker 2"].priority == TaskPriority.MEDIUM

        recording = await sql.get_recording(recording_id)
        assert recording.tasks_extracted_at is not None

    async def test_no_tasks_still_marks_extracted(self, sql):
        recording_id = await sql.create_recording(file_path="call.wav")

        assert await sql.create_tasks(recording_id, []) == []
        assert (await sql.get_recording(recording_id)).tasks_extracted_at is not None

    async def test_tasks_for_unknown_recording_rejected(self, sql):
        with pytest.raises(StorageError):
            await sql.create_tasks(
                "0000000000000000", [ExtractedTask(description="x", owner="Me")]
            )
