"""Unit tests for the recording lifecycle and the retry policy."""

import warnings
from pathlib import Path

import pytest

import callbrain

from callbrain.server.sql_models import RecordingStatus
from callbrain.services.common.errors import IllegalTransitionError
from callbrain.services.processing_queue.retry import RetryPolicy
from callbrain.services.processing_queue.state_machine import (
    can_transition,
    is_terminal,
    validate_transition,
)


@pytest.mark.unit
class TestStateMachine:
    @pytest.mark.parametrize(
        "current,target",
        [
            (RecordingStatus.PROCESSING, RecordingStatus.TRANSCRIBING),
            (RecordingStatus.TRANSCRIBING, RecordingStatus.SUMMARIZING),
            (RecordingStatus.SUMMARIZING, RecordingStatus.COMPLETE),
            (RecordingStatus.PROCESSING, RecordingStatus.FAILED),
            (RecordingStatus.TRANSCRIBING, RecordingStatus.FAILED),
            (RecordingStatus.SUMMARIZING, RecordingStatus.FAILED),
        ],
    )
    def test_forward_transitions_are_legal(self, current, target):
        assert validate_transition(current, target) == target

    def test_processing_cannot_jump_to_complete(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            validate_transition(RecordingStatus.PROCESSING, RecordingStatus.COMPLETE)

        assert exc_info.value.current == RecordingStatus.PROCESSING
        assert exc_info.value.target == RecordingStatus.COMPLETE
        assert "processing -> complete" in str(exc_info.value)

    def test_skipping_summarizing_is_illegal(self):
        assert not can_transition(RecordingStatus.TRANSCRIBING, RecordingStatus.COMPLETE)

    def test_complete_is_terminal(self):
        for target in RecordingStatus:
            assert not can_transition(RecordingStatus.COMPLETE, target, manual=True)
        assert is_terminal(RecordingStatus.COMPLETE)

    def test_failed_to_processing_requires_manual(self):
        with pytest.raises(IllegalTransitionError):
            validate_transition(RecordingStatus.FAILED, RecordingStatus.PROCESSING)

        assert (
            validate_transition(RecordingStatus.FAILED, RecordingStatus.PROCESSING, manual=True)
            == RecordingStatus.PROCESSING
        )
        assert is_terminal(RecordingStatus.FAILED)

    def test_manual_flag_does_not_open_other_edges(self):
        assert not can_transition(
            RecordingStatus.FAILED, RecordingStatus.COMPLETE, manual=True
        )
        assert not can_transition(
            RecordingStatus.PROCESSING, RecordingStatus.COMPLETE, manual=True
        )


@pytest.mark.unit
class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delays == (1.0, 5.0, 15.0)
        assert policy.storage_max_attempts is None

    def test_delay_schedule_repeats_last_value(self):
        policy = RetryPolicy(delays=(1.0, 5.0, 15.0))
        assert policy.delay_for(0) == 0.0
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 5.0
        assert policy.delay_for(3) == 15.0
        assert policy.delay_for(7) == 15.0

    def test_empty_schedule_means_no_wait(self):
        assert RetryPolicy(delays=()).delay_for(2) == 0.0

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(delays=(-1.0,))
        with pytest.raises(ValueError):
            RetryPolicy(storage_max_attempts=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PIPELINE_RETRY_DELAYS", "0.5, 2")
        monkeypatch.setenv("PIPELINE_STORAGE_MAX_ATTEMPTS", "4")

        policy = RetryPolicy.from_env()

        assert policy.max_attempts == 5
        assert policy.delays == (0.5, 2.0)
        assert policy.storage_max_attempts == 4

    def test_from_env_defaults(self, monkeypatch):
        for name in (
            "PIPELINE_MAX_ATTEMPTS",
            "PIPELINE_RETRY_DELAYS",
            "PIPELINE_STORAGE_MAX_ATTEMPTS",
        ):
            monkeypatch.delenv(name, raising=False)

        assert RetryPolicy.from_env() == RetryPolicy()


PACKAGE_ROOT = Path(callbrain.__file__).parent
PACKAGE_SOURCES = sorted(PACKAGE_ROOT.rglob("*.py"))


@pytest.mark.unit
class TestModuleSources:
    @pytest.mark.parametrize(
        "path", PACKAGE_SOURCES, ids=lambda path: str(path.relative_to(PACKAGE_ROOT))
    )
    def test_compiles_without_warnings(self, path):
        """Docstrings such as the lifecycle diagram must not contain invalid escapes."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(encoding="utf-8"), str(path), "exec")
