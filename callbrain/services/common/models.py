"""
Domain dataclasses passed between the pipeline stages, the storage services and
the retrieval engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from callbrain.server.sql_models import RecordingStatus, TaskPriority, TaskStatus

# -------------------------------------------------------------- #
# Unit Types
# -------------------------------------------------------------- #

UNIT_TRANSCRIPT = "transcript"
UNIT_SUMMARY = "summary"
UNIT_DIGEST = "digest"
UNIT_MESSAGE_CHUNK = "message_chunk"

EMBEDDED_UNIT_TYPES = (UNIT_TRANSCRIPT, UNIT_SUMMARY, UNIT_DIGEST, UNIT_MESSAGE_CHUNK)


# -------------------------------------------------------------- #
# Recording Rows
# -------------------------------------------------------------- #


@dataclass
class Recording:
    id: str
    file_path: str
    status: RecordingStatus
    created_at: datetime
    updated_at: datetime
    system_audio_path: str | None = None
    duration_seconds: float = 0.0
    prompt_template_id: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    context: str | None = None
    tasks_extracted_at: datetime | None = None
    dismissed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Recording":
        status = row["status"]
        if not isinstance(status, RecordingStatus):
            status = RecordingStatus(status)
        return cls(
            id=row["id"],
            file_path=row["file_path"],
            status=status,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            system_audio_path=row.get("system_audio_path"),
            duration_seconds=row.get("duration_seconds") or 0.0,
            prompt_template_id=row.get("prompt_template_id"),
            error_message=row.get("error_message"),
            retry_count=row.get("retry_count") or 0,
            context=row.get("context"),
            tasks_extracted_at=row.get("tasks_extracted_at"),
            dismissed_at=row.get("dismissed_at"),
        )


@dataclass
class SpeakerAssignment:
    recording_id: str
    speaker_slot: int
    contact_id: str | None = None
    is_owner: bool = False


# -------------------------------------------------------------- #
# Stage Outputs
# -------------------------------------------------------------- #


@dataclass
class TranscriptSegment:
    speaker: int
    start: float
    end: float
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"speaker": self.speaker, "start": self.start, "end": self.end, "text": self.text}


@dataclass
class TranscriptionResult:
    full_text: str
    segments: list[TranscriptSegment] = field(default_factory=list)


@dataclass
class ExtractedTask:
    description: str
    owner: str
    priority: TaskPriority = TaskPriority.MEDIUM
    source_quote: str = ""
    due_date: date | None = None


@dataclass
class Task:
    id: str
    recording_id: str
    description: str
    owner: str
    priority: TaskPriority
    status: TaskStatus
    source_quote: str = ""
    due_date: date | None = None
    contact_id: str | None = None


# -------------------------------------------------------------- #
# Embedded Units
# -------------------------------------------------------------- #


@dataclass
class EmbeddedUnit:
    """
    Anything with text and a vector: transcripts, summaries, digests and
    message thread chunks.

    Attributes:
        unit_type: One of EMBEDDED_UNIT_TYPES
        unit_id: Id of the owning row
        text: Text that was embedded and is returned as context
        created_at: When the underlying conversation happened
        recording_id: Owning recording, if any
        contact_id: Contact the unit is shown under, if known
        participant_contact_ids: Every contact who took part in the conversation
    """

    unit_type: str
    unit_id: str
    text: str
    created_at: datetime
    recording_id: str | None = None
    contact_id: str | None = None
    participant_contact_ids: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.unit_type}:{self.unit_id}"

    def all_contact_ids(self) -> list[str]:
        """The display contact and the participants, without duplicates."""
        ids = [self.contact_id, *self.participant_contact_ids]
        return list(dict.fromkeys(contact_id for contact_id in ids if contact_id))


@dataclass
class SearchHit:
    type: str
    id: str
    text: str
    similarity: float
    owner_contact_id: str | None = None
    recording_id: str | None = None
    created_at: datetime | None = None


# -------------------------------------------------------------- #
# Retrieval
# -------------------------------------------------------------- #


@dataclass
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str


@dataclass
class SearchFilters:
    """Exact-match filters applied inside the similarity query."""

    start: datetime | None = None
    end: datetime | None = None
    contact_id: str | None = None
    unit_types: tuple[str, ...] | None = None

    def is_empty(self) -> bool:
        return (
            self.start is None
            and self.end is None
            and self.contact_id is None
            and not self.unit_types
        )


@dataclass
class StateTransition:
    recording_id: str
    status: RecordingStatus
    at: datetime | None = None
