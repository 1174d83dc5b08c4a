"""
Unit tests for the command-line argument parsing.
"""

import argparse
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from callbrain.server.sql_models import RecordingStatus
from main import build_parser, load_contacts, parse_speaker, run_command


@pytest.mark.unit
class TestParseSpeaker:
    def test_slot_only(self):
        speaker = parse_speaker("2")
        assert (speaker.speaker_slot, speaker.contact_id) == (2, None)

    def test_slot_with_contact(self):
        speaker = parse_speaker("3:c-alex")
        assert (speaker.speaker_slot, speaker.contact_id) == (3, "c-alex")

    def test_invalid_slot(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_speaker("two:c-alex")


@pytest.mark.unit
class TestBuildParser:
    def test_process_arguments(self):
        args = build_parser().parse_args(
            [
                "process",
                "mic.wav",
                "--system-audio",
                "system.wav",
                "--speaker",
                "2:c-alex",
                "--speaker",
                "3",
                "--duration",
                "42.5",
            ]
        )

        assert args.command == "process"
        assert args.audio_path == "mic.wav"
        assert args.system_audio == "system.wav"
        assert [s.speaker_slot for s in args.speaker] == [2, 3]
        assert args.duration == 42.5
        assert args.template_id is None

    def test_ask_and_failed(self):
        parser = build_parser()

        assert parser.parse_args(["ask", "what did Alex say?"]).query == "what did Alex say?"
        assert parser.parse_args(["failed"]).all is False
        assert parser.parse_args(["failed", "--all"]).all is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


@pytest.mark.unit
class TestLoadContacts:
    def test_no_file(self):
        assert load_contacts(None) == {}

    def test_mapping(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps({"c-alex": "Alex Rivera", 7: "Sam"}), encoding="utf-8")

        assert load_contacts(path) == {"c-alex": "Alex Rivera", "7": "Sam"}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps(["Alex"]), encoding="utf-8")

        with pytest.raises(ValueError):
            load_contacts(path)


@pytest.mark.unit
class TestResumeCommand:
    @staticmethod
    def finished_job(recording_id, status):
        job = MagicMock()
        job.recording_id = recording_id
        job.wait = AsyncMock(return_value=status)
        return job

    async def test_reports_status_of_every_resumed_job(self, capsys):
        context = MagicMock()
        queue = context.services_manager.processing_queue
        queue.resume_pending = AsyncMock(
            return_value=[
                self.finished_job("rec-1", RecordingStatus.COMPLETE),
                self.finished_job("rec-2", RecordingStatus.FAILED),
            ]
        )
        # finished jobs are no longer in flight
        queue.in_flight = MagicMock(return_value={})

        code = await run_command(build_parser().parse_args(["resume"]), context)

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["rec-1: complete", "rec-2: failed"]

    async def test_nothing_to_resume(self, capsys):
        context = MagicMock()
        context.services_manager.processing_queue.resume_pending = AsyncMock(return_value=[])

        await run_command(build_parser().parse_args(["resume"]), context)

        assert capsys.readouterr().out.strip() == "Nothing to resume."
