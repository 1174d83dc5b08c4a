"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import hashlib
import math
import re
from datetime import date, datetime, timezone
from typing import Any

import pytest

from callbrain.services.common.models import (
    ExtractedTask,
    SpeakerAssignment,
    TranscriptionResult,
    TranscriptSegment,
)
from callbrain.services.manager import (
    BaseEmbeddingAdapter,
    BaseSummarizationAdapter,
    BaseTaskExtractor,
    BaseTranscriptionAdapter,
)

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    Returns:
        str: Path to the shared log file
    """
    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


# ============================================================================
# Scripted Stage Adapters
# ============================================================================


class ScriptedAdapterMixin:
    """
    Replays a script of outcomes, one per call.

    Each script entry is either a value to return or an exception to raise.
    Once the script is used up, ``default()`` answers.
    """

    def _setup_script(self) -> None:
        self.script: list[Any] = []
        self.calls: list[tuple] = []

    def queue(self, *outcomes: Any) -> None:
        self.script.extend(outcomes)

    def _next(self, *call_args: Any) -> Any:
        self.calls.append(call_args)
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.default(*call_args)

    def default(self, *call_args: Any) -> Any:
        raise NotImplementedError


class FakeTranscriptionAdapter(ScriptedAdapterMixin, BaseTranscriptionAdapter):
    """Transcribes every file to a fixed two-speaker exchange."""

    def __init__(self, context, text: str | None = None):
        super().__init__(context)
        self._setup_script()
        self.text = text or "Client asked for pricing. I'll send the deck Friday."

    def default(self, audio_path, speakers, system_audio_path):
        segments = [
            TranscriptSegment(speaker=2, start=0.0, end=2.0, text="Client asked for pricing."),
            TranscriptSegment(speaker=1, start=2.5, end=4.0, text="I'll send the deck Friday."),
        ]
        full_text = "\n\n".join(f"Speaker {s.speaker}: {s.text}" for s in segments)
        return TranscriptionResult(full_text=full_text, segments=segments)

    async def transcribe(
        self,
        audio_path: str,
        speakers: list[SpeakerAssignment] | None = None,
        system_audio_path: str | None = None,
    ) -> TranscriptionResult:
        return self._next(audio_path, speakers, system_audio_path)


class FakeSummarizationAdapter(ScriptedAdapterMixin, BaseSummarizationAdapter):
    def __init__(self, context):
        super().__init__(context)
        self._setup_script()

    def default(self, transcript_text, prompt_template, context):
        return f"Summary: {transcript_text.splitlines()[0]}"

    async def summarize(
        self, transcript_text: str, prompt_template: str, context: str | None = None
    ) -> str:
        return self._next(transcript_text, prompt_template, context)


class FakeTaskExtractor(ScriptedAdapterMixin, BaseTaskExtractor):
    def __init__(self, context):
        super().__init__(context)
        self._setup_script()

    def default(self, transcript_text, reference_date):
        return [ExtractedTask(description="Send pricing deck", owner="Me")]

    async def extract_tasks(
        self, transcript_text: str, reference_date: date | None = None
    ) -> list[ExtractedTask]:
        return self._next(transcript_text, reference_date)


def bag_of_words_vector(text: str, dimensions: int = 64) -> list[float]:
    """Deterministic normalized bag-of-words vector."""
    vector = [0.0] * dimensions
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        index = int(hashlib.md5(word.encode()).hexdigest(), 16) % dimensions
        vector[index] += 1.0
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return [value / norm for value in vector]


class FakeEmbeddingAdapter(ScriptedAdapterMixin, BaseEmbeddingAdapter):
    def __init__(self, context, dimensions: int = 64):
        super().__init__(context)
        self._setup_script()
        self.dimensions = dimensions
        self.unavailable_reason: str | None = None

    def default(self, text):
        return bag_of_words_vector(text, self.dimensions)

    def missing_prerequisite(self) -> str | None:
        return self.unavailable_reason

    async def embed(self, text: str) -> list[float]:
        return self._next(text)


# ============================================================================
# Testing Environment Fixtures (in-memory databases)
# ============================================================================


@pytest.fixture
async def test_context():
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from callbrain.context import Context

    context = Context()
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager with in-memory backends.

    - In-memory SQLite database
    - Ephemeral ChromaDB
    - Mock Whisper server client

    Yields:
        ServerManager: Connected server manager
    """
    from callbrain.constructor import ServerManagerType
    from callbrain.server.constructor import construct_server_manager

    server_manager = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server_manager)
    await server_manager.connect_all()

    yield server_manager

    if server_manager.is_initialized:
        await server_manager.disconnect_all()


@pytest.fixture
def fake_adapters(test_context, test_server_manager) -> dict[str, Any]:
    """Scripted stage adapters bound to the test context."""
    return {
        "transcription_adapter": FakeTranscriptionAdapter(test_context),
        "summarization_adapter": FakeSummarizationAdapter(test_context),
        "task_extractor": FakeTaskExtractor(test_context),
        "embedding_adapter": FakeEmbeddingAdapter(test_context),
    }


@pytest.fixture
async def test_services_manager(
    test_context, test_server_manager, fake_adapters, shared_test_log_file
):
    """
    Create a services manager over the in-memory servers and scripted adapters.

    The processing queue uses a zero-delay retry policy.

    Yields:
        ServicesManager: Initialized services manager
    """
    from callbrain.constructor import ServicesManagerType
    from callbrain.services.constructor import construct_services_manager

    services_manager = construct_services_manager(
        ServicesManagerType.TESTING,
        context=test_context,
        log_file=shared_test_log_file,
        use_timestamp_logs=False,
        concurrency=2,
        **fake_adapters,
    )
    test_context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    yield services_manager

    await services_manager.shutdown_all(timeout=10.0)


@pytest.fixture
def reference_now() -> datetime:
    """Wednesday 2026-10-14, 15:30 UTC."""
    return datetime(2026, 10, 14, 15, 30, tzinfo=timezone.utc)
