"""
Transcription stage backed by a whisper.cpp server.

Recordings are dual-track: the microphone track belongs to the device owner
and the system-audio track to the other participants. Each track is
transcribed separately, labelled with its speaker slot, and the segments are
merged in time order.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.server.common.whisper_server import WhisperServerError
from callbrain.services.common.errors import (
    AdapterError,
    PermanentAdapterError,
    TransientAdapterError,
)
from callbrain.services.common.models import (
    SpeakerAssignment,
    TranscriptionResult,
    TranscriptSegment,
)
from callbrain.services.manager import BaseTranscriptionAdapter
from callbrain.utils import OWNER_SPEAKER_SLOT

# fallback segment length when the server returns no timing, in characters per second
FALLBACK_CHARS_PER_SECOND = 10.0


def owner_and_counterpart_slots(speakers: list[SpeakerAssignment] | None) -> tuple[int, int]:
    """
    Pick the speaker slots for the microphone and system tracks.

    The owner slot is the assignment flagged as owner (slot 1 by default);
    the counterpart is the lowest other slot (slot 2 by default).
    """
    speakers = speakers or []
    owner = next((s.speaker_slot for s in speakers if s.is_owner), OWNER_SPEAKER_SLOT)
    others = sorted(s.speaker_slot for s in speakers if s.speaker_slot != owner)
    counterpart = others[0] if others else owner + 1
    return owner, counterpart


def segments_from_response(response: dict[str, Any], speaker: int) -> list[TranscriptSegment]:
    """Convert a whisper verbose_json response into labelled segments."""
    segments = []
    for raw in response.get("segments") or []:
        text = str(raw.get("text", "")).strip()
        if not text:
            continue
        start = float(raw.get("start", 0.0))
        end = max(float(raw.get("end", start)), start)
        segments.append(TranscriptSegment(speaker=speaker, start=start, end=end, text=text))

    if not segments:
        text = str(response.get("text", "")).strip()
        if text:
            segments.append(
                TranscriptSegment(
                    speaker=speaker,
                    start=0.0,
                    end=len(text) / FALLBACK_CHARS_PER_SECOND,
                    text=text,
                )
            )
    return segments


def merge_segments(tracks: list[list[TranscriptSegment]]) -> TranscriptionResult:
    """Merge per-track segments by start offset and build the speaker labelled text."""
    merged = sorted(
        (segment for track in tracks for segment in track),
        key=lambda segment: (segment.start, segment.speaker),
    )
    full_text = "\n\n".join(f"Speaker {s.speaker}: {s.text}" for s in merged)
    return TranscriptionResult(full_text=full_text, segments=merged)


def classify_transcription_error(error: Exception) -> AdapterError:
    """Map whisper client failures to adapter errors."""
    if isinstance(error, AdapterError):
        return error
    if isinstance(error, FileNotFoundError):
        return PermanentAdapterError(str(error))
    if isinstance(error, WhisperServerError):
        if error.status == 429 or error.status >= 500:
            return TransientAdapterError(str(error))
        return PermanentAdapterError(str(error))
    if isinstance(error, asyncio.TimeoutError):
        return TransientAdapterError("Transcription request timed out")
    if isinstance(error, (aiohttp.ClientError, json.JSONDecodeError, RuntimeError)):
        return TransientAdapterError(str(error))
    return TransientAdapterError(str(error) or type(error).__name__)


# -------------------------------------------------------------- #
# Whisper Transcription Adapter
# -------------------------------------------------------------- #


class WhisperTranscriptionAdapter(BaseTranscriptionAdapter):
    """Transcribe recordings through the whisper server client."""

    def __init__(self, context: "Context", language: str = "en"):
        super().__init__(context)
        self.language = language

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"WhisperTranscriptionAdapter initialized (endpoint: "
            f"{self.server.whisper_server_client.endpoint})"
        )

    async def transcribe(
        self,
        audio_path: str,
        speakers: list[SpeakerAssignment] | None = None,
        system_audio_path: str | None = None,
    ) -> TranscriptionResult:
        owner_slot, counterpart_slot = owner_and_counterpart_slots(speakers)

        tracks = [(audio_path, owner_slot)]
        if system_audio_path:
            tracks.append((system_audio_path, counterpart_slot))

        per_track = []
        for path, slot in tracks:
            try:
                response = await self.server.whisper_server_client.inference(
                    path, response_format="verbose_json", language=self.language
                )
            except Exception as e:
                error = classify_transcription_error(e)
                await self.services.logging_service.warning(
                    f"Transcription of {path} failed ({'transient' if error.transient else 'permanent'}): {error}"
                )
                raise error from e

            if not isinstance(response, dict):
                raise TransientAdapterError(f"Unexpected whisper response for {path}")

            segments = segments_from_response(response, slot)
            await self.services.logging_service.debug(
                f"Transcribed {path} as speaker {slot}: {len(segments)} segments"
            )
            per_track.append(segments)

        result = merge_segments(per_track)
        if not result.segments:
            raise PermanentAdapterError(f"No speech detected in {audio_path}")
        return result
