"""
Task extraction: a second LLM pass over a transcript that returns structured
follow-up tasks.

The model is asked for JSON and its answer is validated with pydantic. Any
output that does not parse into the expected shape is a transient error, so the
pipeline retries the stage.
"""

import json
import re
from datetime import date
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.server.sql_models import TaskPriority
from callbrain.services.common.errors import PermanentAdapterError, TransientAdapterError
from callbrain.services.common.models import ExtractedTask
from callbrain.services.manager import BaseTaskExtractor
from callbrain.services.task_extraction_manager.prompts import (
    TASK_EXTRACTION_SYSTEM_MESSAGE,
    TASK_EXTRACTION_USER_CONTENT_TEMPLATE,
)
from callbrain.utils import get_current_timestamp_utc, resolve_relative_date, speaker_label

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

# -------------------------------------------------------------- #
# Response Models
# -------------------------------------------------------------- #


class ExtractedTaskPayload(BaseModel):
    """One task as returned by the model."""

    description: str = Field(min_length=1)
    owner: str = "Me"
    due_date: str | None = None
    priority: Literal["low", "medium", "high"] = "medium"
    source_quote: str = ""

    @field_validator("description", "source_quote", mode="before")
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("owner", mode="before")
    def normalize_owner(cls, v: Any) -> str:
        # speaker numbers are accepted in place of labels
        if v is None:
            return "Me"
        if isinstance(v, int):
            return speaker_label(v)
        text = str(v).strip()
        if text.isdigit():
            return speaker_label(int(text))
        match = re.fullmatch(r"speaker\s*(\d+)", text, re.IGNORECASE)
        if match:
            return speaker_label(int(match.group(1)))
        if text.lower() in ("me", "i", "myself"):
            return "Me"
        return text or "Me"

    @field_validator("priority", mode="before")
    def normalize_priority(cls, v: Any) -> Any:
        if v is None:
            return "medium"
        return str(v).strip().lower()

    @field_validator("due_date", mode="before")
    def normalize_due_date(cls, v: Any) -> Any:
        if v is None:
            return None
        return str(v)


class ExtractedTasksPayload(BaseModel):
    tasks: list[ExtractedTaskPayload]


def parse_task_response(content: str, reference_date: date) -> list[ExtractedTask]:
    """
    Parse and validate the model's answer.

    Accepts ``{"tasks": [...]}`` or a bare JSON array, optionally wrapped in a
    markdown code fence.

    Raises:
        TransientAdapterError: If the answer is not valid JSON of the expected shape
    """
    cleaned = CODE_FENCE_PATTERN.sub("", content.strip()).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise TransientAdapterError(f"Task extraction returned invalid JSON: {e}") from e

    if isinstance(data, list):
        data = {"tasks": data}

    try:
        payload = ExtractedTasksPayload.model_validate(data)
    except ValidationError as e:
        raise TransientAdapterError(
            f"Task extraction returned an unexpected shape: {e.error_count()} validation errors"
        ) from e

    return [
        ExtractedTask(
            description=task.description,
            owner=task.owner,
            priority=TaskPriority(task.priority),
            source_quote=task.source_quote,
            due_date=resolve_relative_date(task.due_date, reference_date),
        )
        for task in payload.tasks
    ]


# -------------------------------------------------------------- #
# Ollama Task Extractor
# -------------------------------------------------------------- #


class OllamaTaskExtractor(BaseTaskExtractor):
    """Extract tasks with the shared Ollama request manager in JSON mode."""

    def __init__(self, context: "Context", model: str | None = None, timeout_ms: int = 180000):
        super().__init__(context)
        self.model = model
        self.timeout_ms = timeout_ms

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("OllamaTaskExtractor initialized")

    async def extract_tasks(
        self, transcript_text: str, reference_date: date | None = None
    ) -> list[ExtractedTask]:
        if not transcript_text.strip():
            raise PermanentAdapterError("Cannot extract tasks from an empty transcript")

        reference_date = reference_date or get_current_timestamp_utc().date()

        result = await self.services.ollama_request_manager.query(
            messages=[
                {
                    "role": "user",
                    "content": TASK_EXTRACTION_USER_CONTENT_TEMPLATE.format(
                        call_date=reference_date.isoformat(),
                        call_weekday=reference_date.strftime("%A"),
                        transcript=transcript_text,
                    ),
                }
            ],
            system_prompt=TASK_EXTRACTION_SYSTEM_MESSAGE,
            model=self.model,
            format="json",
            temperature=0.0,
            timeout_ms=self.timeout_ms,
        )

        tasks = parse_task_response(result.content, reference_date)
        await self.services.logging_service.debug(f"Extracted {len(tasks)} tasks")
        return tasks
