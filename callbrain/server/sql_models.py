import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from callbrain.utils import RECORD_UUID_LENGTH, get_current_timestamp_utc

# -------------------------------------------------------------- #
# SQL Database Data Models
# -------------------------------------------------------------- #

Base = declarative_base()


class RecordingStatus(enum.Enum):
    PROCESSING = "processing"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"
    FAILED = "failed"


class TaskPriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(enum.Enum):
    OPEN = "open"
    COMPLETED = "completed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# -------------------------------------------------------------- #
# Models
# -------------------------------------------------------------- #


class PromptTemplateModel(Base):
    """
    ID = Prompt template ID
    Name = Display name of the template
    Template = System prompt used to summarize a recording
    Created At = Timestamp when the template was created
    """

    __tablename__ = "prompt_templates"

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    template = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)


class RecordingModel(Base):
    """
    ID = Recording ID
    Created At = Timestamp when the recording stopped
    Updated At = Timestamp of the last status change
    File Path = Microphone track (device owner)
    System Audio Path = System audio track (counterparts), optional
    Duration Seconds = Length of the recording
    Prompt Template ID = Template selected for summarization, optional
    Status = Lifecycle status
    Error Message = Raw error of the failing stage, set only when failed
    Retry Count = Number of stage failures since the last manual retry
    Context = Free text supplied by the user
    Tasks Extracted At = Set once extracted tasks have been persisted
    Dismissed At = Set when a failure has been acknowledged
    """

    __tablename__ = "recordings"

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)
    file_path = Column(String(1024), nullable=False)
    system_audio_path = Column(String(1024), nullable=True)
    duration_seconds = Column(Float, nullable=False, default=0.0)
    prompt_template_id = Column(
        String(RECORD_UUID_LENGTH),
        ForeignKey("prompt_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = Column(
        Enum(RecordingStatus, name="recording_status_enum", values_callable=_enum_values),
        nullable=False,
        default=RecordingStatus.PROCESSING,
        index=True,
    )
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    context = Column(Text, nullable=True)
    tasks_extracted_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)


class SpeakerAssignmentModel(Base):
    """
    ID = Assignment ID
    Recording ID = Owning recording
    Speaker Slot = Numeric speaker slot (1 is the device owner)
    Contact ID = Contact the slot maps to, optional
    Is Owner = Whether this slot is the device owner
    """

    __tablename__ = "speaker_assignments"
    __table_args__ = (
        UniqueConstraint("recording_id", "speaker_slot", name="uq_speaker_recording_slot"),
    )

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    recording_id = Column(
        String(RECORD_UUID_LENGTH),
        ForeignKey("recordings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    speaker_slot = Column(Integer, nullable=False)
    contact_id = Column(String(64), nullable=True)
    is_owner = Column(Boolean, nullable=False, default=False)


class TranscriptModel(Base):
    """
    ID = Transcript ID
    Recording ID = Owning recording (one transcript per recording)
    Full Text = Speaker labelled merged text
    Segments = JSON list of {speaker, start, end, text}
    Embedding ID = Vector index entry, set after the embed stage
    Embedded At = Timestamp of the embed stage
    Created At = Timestamp of the transcribe stage
    """

    __tablename__ = "transcripts"

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    recording_id = Column(
        String(RECORD_UUID_LENGTH),
        ForeignKey("recordings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    full_text = Column(Text, nullable=False)
    segments = Column(JSON, nullable=False)
    embedding_id = Column(String(64), nullable=True)
    embedded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)


class SummaryModel(Base):
    """
    ID = Summary ID
    Recording ID = Owning recording (one summary per recording)
    Summary Text = Generated summary
    Prompt Template Snapshot = Template text actually used
    Embedding ID = Vector index entry, set after the embed stage
    Embedded At = Timestamp of the embed stage
    Created At = Timestamp of the summarize stage
    """

    __tablename__ = "summaries"

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    recording_id = Column(
        String(RECORD_UUID_LENGTH),
        ForeignKey("recordings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    summary_text = Column(Text, nullable=False)
    prompt_template_snapshot = Column(Text, nullable=False)
    embedding_id = Column(String(64), nullable=True)
    embedded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)


class TaskModel(Base):
    """
    ID = Task ID
    Recording ID = Recording the task was extracted from
    Contact ID = Related contact, optional
    Description = What needs to be done
    Owner = "Me" or "Speaker N"
    Due Date = Optional due date
    Priority = low / medium / high
    Source Quote = Transcript excerpt the task came from
    Status = open / completed
    Created At = Timestamp when the task was extracted
    """

    __tablename__ = "tasks"

    id = Column(String(RECORD_UUID_LENGTH), primary_key=True, index=True)
    recording_id = Column(
        String(RECORD_UUID_LENGTH),
        ForeignKey("recordings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contact_id = Column(String(64), nullable=True)
    description = Column(Text, nullable=False)
    owner = Column(String(64), nullable=False)
    due_date = Column(Date, nullable=True)
    priority = Column(
        Enum(TaskPriority, name="task_priority_enum", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    source_quote = Column(Text, nullable=False, default="")
    status = Column(
        Enum(TaskStatus, name="task_status_enum", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.OPEN,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_timestamp_utc)
