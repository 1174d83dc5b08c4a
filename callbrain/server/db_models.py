from pydantic import RootModel, field_validator

from callbrain.server.sql_models import (
    PromptTemplateModel,
    RecordingModel,
    SpeakerAssignmentModel,
    SummaryModel,
    TaskModel,
    TranscriptModel,
)

# -------------------------------------------------------------- #
# SQL DB Models
# -------------------------------------------------------------- #

# creation order matters for foreign keys
SQL_DATABASE_MODELS = [
    PromptTemplateModel,
    RecordingModel,
    SpeakerAssignmentModel,
    TranscriptModel,
    SummaryModel,
    TaskModel,
]


# -------------------------------------------------------------- #
# Pydantic Validation Models for JSON Fields
# -------------------------------------------------------------- #


class TranscriptSegmentsList(RootModel[list[dict]]):
    """
    Represents the structure:
    [
        {"speaker": 1, "start": 0.0, "end": 2.5, "text": "..."}, ...
    ]
    where speaker is a speaker slot (>= 1) and start/end are offsets in seconds.
    Segments must be ordered by start offset.
    """

    root: list[dict]

    @field_validator("root")
    def validate_format(cls, v: list[dict]) -> list[dict]:
        if not isinstance(v, list):
            raise ValueError("Must be a list")

        previous_start = None
        for segment in v:
            if not isinstance(segment, dict):
                raise ValueError("Each segment must be a dictionary")

            missing = {"speaker", "start", "end", "text"} - set(segment.keys())
            if missing:
                raise ValueError(f"Segment missing fields: {sorted(missing)}")

            if not isinstance(segment["speaker"], int) or segment["speaker"] < 1:
                raise ValueError("speaker must be a positive integer slot")
            if not isinstance(segment["text"], str):
                raise ValueError("text must be a string")

            start = float(segment["start"])
            end = float(segment["end"])
            if end < start:
                raise ValueError("end must not be before start")
            if previous_start is not None and start < previous_start:
                raise ValueError("segments must be ordered by start offset")
            previous_start = start

        return v
