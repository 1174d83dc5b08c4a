"""
Unit tests for Ollama Request Manager.

Tests cover:
- Manager initialization and configuration
- Query interface and request parameters
- Error classification and retries
- Statistics tracking
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import ollama
import pytest

from callbrain.services.common.errors import PermanentAdapterError, TransientAdapterError
from callbrain.services.ollama_request_manager.manager import (
    Message,
    OllamaRequestManager,
    classify_ollama_error,
)

# -------------------------------------------------------------- #
# Fixtures
# -------------------------------------------------------------- #


@pytest.fixture
def mock_context():
    """Create a mock context."""
    return MagicMock()


@pytest.fixture
def mock_services():
    """Create a mock services manager with logging service."""
    services = MagicMock()
    services.logging_service = AsyncMock()
    services.logging_service.info = AsyncMock()
    services.logging_service.debug = AsyncMock()
    services.logging_service.warning = AsyncMock()
    services.logging_service.error = AsyncMock()
    return services


@pytest.fixture
def mock_ollama_client():
    """Create a mock Ollama async client."""
    with patch("callbrain.services.ollama_request_manager.manager.ollama.AsyncClient") as mock:
        client = AsyncMock()
        mock.return_value = client
        yield client


@pytest.fixture
async def ollama_manager(mock_context, mock_ollama_client):  # noqa: ARG001
    """Create an OllamaRequestManager instance for testing."""
    return OllamaRequestManager(
        context=mock_context,
        host="http://localhost:11434",
        default_model="llama3.1",
    )


@pytest.fixture
async def started_manager(ollama_manager, mock_services):
    """Create a started manager with services."""
    await ollama_manager.on_start(mock_services)
    yield ollama_manager
    await ollama_manager.on_close()


def chat_response(content: str = "Response", eval_count: int = 5) -> dict:
    return {
        "message": {"content": content},
        "model": "llama3.1",
        "done": True,
        "eval_count": eval_count,
    }


# -------------------------------------------------------------- #
# Initialization Tests
# -------------------------------------------------------------- #


class TestInitialization:
    """Test manager initialization and configuration."""

    def test_init_from_environment(self, mock_context, mock_ollama_client):  # noqa: ARG002
        """Host and port are combined when OLLAMA_HOST is a bare hostname."""
        with patch.dict(
            "os.environ",
            {"OLLAMA_HOST": "gpu-box", "OLLAMA_PORT": "11500", "OLLAMA_MODEL": "qwen2.5"},
        ):
            manager = OllamaRequestManager(context=mock_context)

        assert manager._host == "http://gpu-box:11500"
        assert manager.default_model == "qwen2.5"

    def test_full_url_host(self, mock_context, mock_ollama_client):  # noqa: ARG002
        with patch.dict("os.environ", {"OLLAMA_HOST": "https://ollama.example.com"}):
            manager = OllamaRequestManager(context=mock_context)

        assert manager._host == "https://ollama.example.com"

    def test_api_key_sets_bearer_header(self, mock_context):
        with patch("callbrain.services.ollama_request_manager.manager.ollama.AsyncClient") as mock:
            OllamaRequestManager(context=mock_context, host="http://h:1", api_key="secret")

        assert mock.call_args.kwargs["headers"] == {"Authorization": "Bearer secret"}

    def test_missing_prerequisite(self, ollama_manager):
        assert ollama_manager.missing_prerequisite() is None

        ollama_manager._default_model = ""
        assert "OLLAMA_MODEL" in ollama_manager.missing_prerequisite()

    async def test_on_start(self, ollama_manager, mock_services):
        await ollama_manager.on_start(mock_services)

        assert ollama_manager.services == mock_services
        mock_services.logging_service.info.assert_called()


# -------------------------------------------------------------- #
# Query Interface Tests
# -------------------------------------------------------------- #


class TestQueryInterface:
    """Test the query method and the request it builds."""

    async def test_query_with_system_prompt(self, started_manager):
        started_manager._client.chat = AsyncMock(return_value=chat_response("Hello!"))

        result = await started_manager.query(
            messages=[{"role": "user", "content": "Hi"}], system_prompt="Be terse."
        )

        assert result.content == "Hello!"
        assert result.done is True
        params = started_manager._client.chat.call_args.kwargs
        assert params["model"] == "llama3.1"
        assert params["stream"] is False
        assert params["messages"] == [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "Hi"},
        ]

    async def test_query_with_message_objects(self, started_manager):
        started_manager._client.chat = AsyncMock(return_value=chat_response())

        await started_manager.query(
            messages=[Message(role="user", content="Q"), Message(role="assistant", content="A")]
        )

        params = started_manager._client.chat.call_args.kwargs
        assert params["messages"] == [
            {"role": "user", "content": "Q"},
            {"role": "assistant", "content": "A"},
        ]

    async def test_query_with_custom_parameters(self, started_manager):
        started_manager._client.chat = AsyncMock(return_value=chat_response("{}"))

        await started_manager.query(
            messages=[{"role": "user", "content": "List tasks"}],
            model="qwen2.5",
            format="json",
            temperature=0.0,
        )

        params = started_manager._client.chat.call_args.kwargs
        assert params["model"] == "qwen2.5"
        assert params["format"] == "json"
        assert params["options"]["temperature"] == 0.0

    async def test_query_without_messages_raises(self, started_manager):
        with pytest.raises(PermanentAdapterError):
            await started_manager.query(messages=[])


# -------------------------------------------------------------- #
# Error Handling Tests
# -------------------------------------------------------------- #


class TestErrorClassification:
    """Test mapping of client errors to adapter errors."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (ollama.ResponseError("rate limited", 429), TransientAdapterError),
            (ollama.ResponseError("internal error", 500), TransientAdapterError),
            (ollama.ResponseError("model 'x' not found", 404), PermanentAdapterError),
            (ollama.ResponseError("unauthorized", 401), PermanentAdapterError),
            (ollama.RequestError("must provide a model"), PermanentAdapterError),
            (asyncio.TimeoutError(), TransientAdapterError),
            (ConnectionError("connection refused"), TransientAdapterError),
        ],
        ids=["429", "500", "404", "401", "request", "timeout", "connection"],
    )
    def test_classify(self, error, expected):
        assert isinstance(classify_ollama_error(error), expected)

    def test_adapter_errors_pass_through(self):
        error = PermanentAdapterError("bad")
        assert classify_ollama_error(error) is error


class TestErrorHandling:
    """Test error handling and retry logic."""

    async def test_single_attempt_by_default(self, started_manager):
        started_manager._client.chat = AsyncMock(side_effect=ConnectionError("connection refused"))

        with pytest.raises(TransientAdapterError, match="connection refused"):
            await started_manager.query(messages=[{"role": "user", "content": "Hi"}])

        assert started_manager._client.chat.call_count == 1
        assert started_manager._total_errors == 1

    async def test_retry_on_transient_error(self, started_manager):
        started_manager._client.chat = AsyncMock(
            side_effect=[ollama.ResponseError("busy", 503), chat_response("Success")]
        )

        result = await started_manager.query(
            messages=[{"role": "user", "content": "Hi"}], max_retries=2
        )

        assert result.content == "Success"
        assert started_manager._client.chat.call_count == 2

    async def test_permanent_error_not_retried(self, started_manager):
        started_manager._client.chat = AsyncMock(
            side_effect=ollama.ResponseError("model 'missing' not found", 404)
        )

        with pytest.raises(PermanentAdapterError):
            await started_manager.query(
                messages=[{"role": "user", "content": "Hi"}], max_retries=3
            )

        assert started_manager._client.chat.call_count == 1


# -------------------------------------------------------------- #
# Statistics Tests
# -------------------------------------------------------------- #


class TestStatistics:
    """Test statistics tracking."""

    async def test_statistics_initialization(self, ollama_manager):
        stats = ollama_manager.get_statistics()

        assert stats["total_requests"] == 0
        assert stats["total_tokens_generated"] == 0
        assert stats["total_errors"] == 0
        assert stats["model_usage"] == {}

    async def test_statistics_track_requests_and_tokens(self, started_manager):
        started_manager._client.chat = AsyncMock(return_value=chat_response(eval_count=10))

        for _ in range(3):
            await started_manager.query(messages=[{"role": "user", "content": "Test"}])
        await started_manager.query(messages=[{"role": "user", "content": "Test"}], model="other")

        stats = started_manager.get_statistics()
        assert stats["total_requests"] == 4
        assert stats["total_tokens_generated"] == 40
        assert stats["model_usage"] == {"llama3.1": 3, "other": 1}
