"""
Ollama Request Manager.

Shared LLM client for summarization, task extraction and retrieval answers:
- Configurable generation parameters
- JSON output mode
- Retry with exponential backoff for transient failures
- Error classification into transient and permanent adapter errors
- Request statistics

Usage:
    result = await ollama_manager.query(
        messages=[{"role": "user", "content": "Hello!"}],
        system_prompt="You are terse.",
    )
    print(result.content)
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import ollama

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.manager import ServicesManager

from callbrain.services.common.errors import (
    AdapterError,
    PermanentAdapterError,
    TransientAdapterError,
)
from callbrain.services.manager import Manager

# -------------------------------------------------------------- #
# Data Models
# -------------------------------------------------------------- #


@dataclass
class Message:
    """A single message in a conversation."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class GenerationConfig:
    """Configuration for text generation parameters."""

    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    num_predict: int | None = None  # max tokens to generate
    stop: list[str] = field(default_factory=list)
    seed: int | None = None


@dataclass
class OllamaQueryInput:
    """Input parameters for Ollama query."""

    model: str
    messages: list[Message] | list[dict[str, str]]
    system_prompt: str | None = None
    generation_config: GenerationConfig = field(default_factory=GenerationConfig)
    format: Literal["json"] | None = None
    keep_alive: str | int = "5m"
    timeout_ms: int = 120000
    max_retries: int = 1
    retry_backoff: float = 1.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OllamaQueryResult:
    """Result from Ollama query."""

    content: str
    model: str
    done: bool
    total_duration: int | None = None  # nanoseconds
    eval_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# -------------------------------------------------------------- #
# Error Classification
# -------------------------------------------------------------- #


def classify_ollama_error(error: Exception) -> AdapterError:
    """
    Map an exception raised by the Ollama client to an adapter error.

    Rate limits, server errors, timeouts and connection failures are
    transient. Other HTTP 4xx answers (unknown model, bad request,
    unauthorized) and client-side request errors are permanent.
    """
    if isinstance(error, AdapterError):
        return error

    if isinstance(error, ollama.ResponseError):
        status = error.status_code
        if status == 429 or status >= 500 or status < 0:
            return TransientAdapterError(str(error))
        return PermanentAdapterError(str(error))

    if isinstance(error, ollama.RequestError):
        return PermanentAdapterError(str(error))

    if isinstance(error, asyncio.TimeoutError):
        return TransientAdapterError("LLM request timed out")

    return TransientAdapterError(str(error) or type(error).__name__)


# -------------------------------------------------------------- #
# Ollama Request Manager
# -------------------------------------------------------------- #


class OllamaRequestManager(Manager):
    """
    Manager for Ollama API requests.

    Raises ``TransientAdapterError`` / ``PermanentAdapterError`` so callers in
    the pipeline can apply their own retry policy. By default each call makes
    a single attempt.
    """

    def __init__(
        self,
        context: Context,
        host: str | None = None,
        default_model: str | None = None,
        api_key: str | None = None,
        default_timeout_ms: int = 120000,
        default_max_retries: int = 1,
    ):
        """
        Initialize the Ollama request manager.

        Args:
            context: Application context
            host: Ollama server URL (defaults to env: OLLAMA_HOST, which may be
                a full URL or a hostname combined with OLLAMA_PORT)
            default_model: Default model to use for queries (defaults to env: OLLAMA_MODEL)
            api_key: Bearer token for hosted Ollama endpoints (defaults to env: OLLAMA_API_KEY)
            default_timeout_ms: Per-request timeout
            default_max_retries: Attempts per call before the error is raised
        """
        super().__init__(context)

        if host is None:
            ollama_host = os.environ.get("OLLAMA_HOST", "localhost")
            ollama_port = os.environ.get("OLLAMA_PORT", "11434")
            host = ollama_host if "://" in ollama_host else f"http://{ollama_host}:{ollama_port}"

        if default_model is None:
            default_model = os.environ.get("OLLAMA_MODEL", "llama3.1")

        if api_key is None:
            api_key = os.environ.get("OLLAMA_API_KEY") or None

        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = ollama.AsyncClient(host=host, headers=headers)
        self._host = host

        self._default_model = default_model
        self._default_timeout_ms = default_timeout_ms
        self._default_max_retries = default_max_retries

        # Statistics
        self._total_requests = 0
        self._total_tokens_generated = 0
        self._total_errors = 0
        self._model_usage: dict[str, int] = {}

    # -------------------------------------------------------------- #
    # Manager Lifecycle
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"Ollama Request Manager started (host: {self._host}, model: {self._default_model})"
        )

    async def on_close(self) -> None:
        if self.services:
            await self.services.logging_service.info(
                f"Ollama Request Manager stopped. Total requests: {self._total_requests}, "
                f"Total tokens: {self._total_tokens_generated}, "
                f"Total errors: {self._total_errors}"
            )

    # -------------------------------------------------------------- #
    # Availability
    # -------------------------------------------------------------- #

    @property
    def default_model(self) -> str:
        return self._default_model

    def missing_prerequisite(self) -> str | None:
        """Describe why queries cannot run, or None when they can."""
        if not self._host:
            return "LLM host is not configured (OLLAMA_HOST)"
        if not self._default_model:
            return "LLM model is not configured (OLLAMA_MODEL)"
        return None

    # -------------------------------------------------------------- #
    # Main Query Interface
    # -------------------------------------------------------------- #

    async def query(
        self,
        messages: list[Message] | list[dict[str, str]],
        system_prompt: str | None = None,
        model: str | None = None,
        format: Literal["json"] | None = None,
        temperature: float | None = None,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OllamaQueryResult:
        """
        Send a chat request.

        Args:
            messages: Conversation messages, the last one usually from the user
            system_prompt: Optional system prompt placed first
            model: Model name (defaults to the configured model)
            format: "json" to force a JSON answer
            temperature: Sampling temperature override
            timeout_ms: Request timeout override
            max_retries: Attempt count override
            metadata: Passed through to the result

        Returns:
            OllamaQueryResult

        Raises:
            TransientAdapterError: Retryable failure after all attempts
            PermanentAdapterError: Non-retryable failure
        """
        if not messages:
            raise PermanentAdapterError("LLM query requires at least one message")

        generation_config = GenerationConfig()
        if temperature is not None:
            generation_config.temperature = temperature

        query_input = OllamaQueryInput(
            model=model or self._default_model,
            messages=messages,
            system_prompt=system_prompt,
            generation_config=generation_config,
            format=format,
            timeout_ms=timeout_ms or self._default_timeout_ms,
            max_retries=max(1, max_retries or self._default_max_retries),
            metadata=metadata or {},
        )
        return await self._query_once(query_input)

    # -------------------------------------------------------------- #
    # Internal Query Methods
    # -------------------------------------------------------------- #

    async def _query_once(self, query_input: OllamaQueryInput) -> OllamaQueryResult:
        """Execute a non-streaming query, retrying transient failures."""
        start_time = time.time()
        last_error: AdapterError | None = None

        self._total_requests += 1
        self._model_usage[query_input.model] = self._model_usage.get(query_input.model, 0) + 1

        for attempt in range(query_input.max_retries):
            try:
                request_params = self._build_request_params(query_input)
                response = await asyncio.wait_for(
                    self._client.chat(**request_params), timeout=query_input.timeout_ms / 1000
                )

                content = response.get("message", {}).get("content", "") or ""
                eval_count = response.get("eval_count", 0) or 0
                self._total_tokens_generated += eval_count

                duration_ms = (time.time() - start_time) * 1000
                if self.services:
                    await self.services.logging_service.debug(
                        f"Ollama query completed: model={query_input.model}, "
                        f"tokens={eval_count}, duration={duration_ms:.0f}ms"
                    )

                return OllamaQueryResult(
                    content=content,
                    model=response.get("model", query_input.model),
                    done=response.get("done", True),
                    total_duration=response.get("total_duration"),
                    eval_count=eval_count,
                    metadata=query_input.metadata,
                )

            except Exception as e:
                last_error = classify_ollama_error(e)
                if self.services:
                    await self.services.logging_service.warning(
                        f"Ollama query error (attempt {attempt + 1}/{query_input.max_retries}): "
                        f"{last_error}"
                    )
                if not last_error.transient:
                    break

            if attempt < query_input.max_retries - 1:
                await asyncio.sleep(query_input.retry_backoff * (2**attempt))

        self._total_errors += 1
        raise last_error

    def _build_request_params(self, query_input: OllamaQueryInput) -> dict[str, Any]:
        """Build Ollama API request parameters."""
        messages = []

        if query_input.system_prompt:
            messages.append({"role": "system", "content": query_input.system_prompt})

        for msg in query_input.messages:
            if isinstance(msg, Message):
                messages.append({"role": msg.role, "content": msg.content})
            else:
                messages.append(msg)

        options: dict[str, Any] = {
            "temperature": query_input.generation_config.temperature,
            "top_p": query_input.generation_config.top_p,
            "top_k": query_input.generation_config.top_k,
        }
        if query_input.generation_config.num_predict:
            options["num_predict"] = query_input.generation_config.num_predict
        if query_input.generation_config.seed is not None:
            options["seed"] = query_input.generation_config.seed
        if query_input.generation_config.stop:
            options["stop"] = query_input.generation_config.stop

        params: dict[str, Any] = {
            "model": query_input.model,
            "messages": messages,
            "options": options,
            "stream": False,
            "keep_alive": query_input.keep_alive,
        }
        if query_input.format:
            params["format"] = query_input.format

        return params

    # -------------------------------------------------------------- #
    # Utility Methods
    # -------------------------------------------------------------- #

    def get_statistics(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_requests": self._total_requests,
            "total_tokens_generated": self._total_tokens_generated,
            "total_errors": self._total_errors,
            "model_usage": self._model_usage.copy(),
        }
