"""
Unit tests for the whisper transcription adapter against the mock whisper server.
"""

import aiohttp
import pytest

from callbrain.server.common.whisper_server import WhisperServerError
from callbrain.services.common.errors import PermanentAdapterError, TransientAdapterError
from callbrain.services.common.models import SpeakerAssignment
from callbrain.services.transcription_manager.manager import (
    WhisperTranscriptionAdapter,
    owner_and_counterpart_slots,
    segments_from_response,
)


@pytest.fixture
async def adapter(test_context, test_services_manager):
    adapter = WhisperTranscriptionAdapter(test_context)
    await adapter.on_start(test_services_manager)
    return adapter


@pytest.fixture
def whisper(test_server_manager):
    return test_server_manager.whisper_server_client


@pytest.mark.unit
class TestHelpers:
    def test_default_slots(self):
        assert owner_and_counterpart_slots(None) == (1, 2)

    def test_lowest_other_slot_is_counterpart(self):
        speakers = [
            SpeakerAssignment(recording_id="r", speaker_slot=1, is_owner=True),
            SpeakerAssignment(recording_id="r", speaker_slot=4),
            SpeakerAssignment(recording_id="r", speaker_slot=3),
        ]
        assert owner_and_counterpart_slots(speakers) == (1, 3)

    def test_segments_fall_back_to_text(self):
        segments = segments_from_response({"text": " Hello world ", "segments": []}, speaker=2)

        assert len(segments) == 1
        assert segments[0].speaker == 2
        assert segments[0].text == "Hello world"
        assert segments[0].start == 0.0
        assert segments[0].end > 0.0

    def test_blank_segments_dropped(self):
        response = {
            "segments": [
                {"start": 0, "end": 1, "text": "  "},
                {"start": 1, "end": 2, "text": "Hi"},
            ]
        }

        assert [s.text for s in segments_from_response(response, speaker=1)] == ["Hi"]


@pytest.mark.unit
class TestWhisperTranscriptionAdapter:
    async def test_dual_track_merge(self, adapter, whisper):
        whisper.set_response(
            "mic.wav",
            {
                "segments": [
                    {"start": 0.0, "end": 2.0, "text": "Hi, thanks for joining."},
                    {"start": 5.0, "end": 6.0, "text": "I'll send the deck Friday."},
                ]
            },
        )
        whisper.set_response(
            "system.wav",
            {"segments": [{"start": 2.5, "end": 4.5, "text": "Can you share pricing?"}]},
        )

        result = await adapter.transcribe("mic.wav", system_audio_path="system.wav")

        assert [(s.speaker, s.text) for s in result.segments] == [
            (1, "Hi, thanks for joining."),
            (2, "Can you share pricing?"),
            (1, "I'll send the deck Friday."),
        ]
        assert result.full_text == (
            "Speaker 1: Hi, thanks for joining.\n\n"
            "Speaker 2: Can you share pricing?\n\n"
            "Speaker 1: I'll send the deck Friday."
        )
        assert whisper.calls == ["mic.wav", "system.wav"]

    async def test_single_track(self, adapter, whisper):
        result = await adapter.transcribe("mic.wav")

        assert [s.speaker for s in result.segments] == [1]
        assert whisper.calls == ["mic.wav"]

    async def test_no_speech_is_permanent(self, adapter, whisper):
        whisper.set_response("silent.wav", {"text": "", "segments": []})

        with pytest.raises(PermanentAdapterError):
            await adapter.transcribe("silent.wav")

    @pytest.mark.parametrize(
        "error, expected",
        [
            (WhisperServerError(503, "busy"), TransientAdapterError),
            (WhisperServerError(429, "slow down"), TransientAdapterError),
            (WhisperServerError(400, "bad audio"), PermanentAdapterError),
            (FileNotFoundError("Audio file not found: gone.wav"), PermanentAdapterError),
            (aiohttp.ClientConnectionError("refused"), TransientAdapterError),
        ],
        ids=["503", "429", "400", "missing-file", "connection"],
    )
    async def test_error_classification(self, adapter, whisper, error, expected):
        whisper.set_error("gone.wav", error)

        with pytest.raises(expected) as exc_info:
            await adapter.transcribe("gone.wav")
        assert str(exc_info.value) == str(error)
