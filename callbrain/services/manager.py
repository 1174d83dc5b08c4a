from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.common.models import (
        ExtractedTask,
        SpeakerAssignment,
        TranscriptionResult,
    )


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        sql_recording_service_manager: Any,
        embedding_store_manager: Any,
        transcription_adapter: BaseTranscriptionAdapter,
        summarization_adapter: BaseSummarizationAdapter,
        task_extractor: BaseTaskExtractor,
        embedding_adapter: BaseEmbeddingAdapter,
        ollama_request_manager: Any | None = None,
        contact_directory: BaseContactDirectory | None = None,
        processing_queue: Any | None = None,
        retrieval_engine: Any | None = None,
        failure_surface: Any | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # DB interfaces
        self.sql_recording_service_manager = sql_recording_service_manager
        self.embedding_store_manager = embedding_store_manager

        # LLM client shared by summarization, task extraction and retrieval
        self.ollama_request_manager = ollama_request_manager

        # Stage adapters
        self.transcription_adapter = transcription_adapter
        self.summarization_adapter = summarization_adapter
        self.task_extractor = task_extractor
        self.embedding_adapter = embedding_adapter

        # Contact lookup
        self.contact_directory = contact_directory

        # Pipeline and read side
        self.processing_queue = processing_queue
        self.retrieval_engine = retrieval_engine
        self.failure_surface = failure_surface

    def _managers(self) -> list[Manager]:
        """Every non-logging manager in start order."""
        managers = [
            self.sql_recording_service_manager,
            self.embedding_store_manager,
            self.ollama_request_manager,
            self.transcription_adapter,
            self.summarization_adapter,
            self.task_extractor,
            self.embedding_adapter,
            self.contact_directory,
            self.processing_queue,
            self.retrieval_engine,
            self.failure_surface,
        ]
        return [manager for manager in managers if manager is not None]

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging first so every other manager can log during startup
        await self.logging_service.on_start(self)

        for manager in self._managers():
            await manager.on_start(self)

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all service managers, waiting for ongoing work to complete.

        Order:
        1. No new work is accepted
        2. Processing queue finishes its in-flight recordings
        3. Adapters release models and HTTP sessions
        4. Database services close
        5. All servers disconnect
        6. Logs are flushed

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 60s)
        """
        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("✓ Shutdown flag set - no new recordings will start")

        try:
            # Phase 1: Let in-flight recordings finish
            await self.logging_service.info("Phase 1: Waiting for in-flight recordings...")
            if self.processing_queue:
                await asyncio.wait_for(self.processing_queue.on_close(), timeout=timeout * 0.6)
                await self.logging_service.info("✓ Processing queue stopped")

            # Phase 2: Read side
            await self.logging_service.info("Phase 2: Closing retrieval and failure surface...")
            for manager in (self.retrieval_engine, self.failure_surface, self.contact_directory):
                if manager:
                    await manager.on_close()
            await self.logging_service.info("✓ Read side closed")

            # Phase 3: Adapters
            await self.logging_service.info("Phase 3: Closing stage adapters...")
            for manager in (
                self.transcription_adapter,
                self.summarization_adapter,
                self.task_extractor,
                self.embedding_adapter,
            ):
                await asyncio.wait_for(manager.on_close(), timeout=timeout * 0.05)
            if self.ollama_request_manager:
                await asyncio.wait_for(
                    self.ollama_request_manager.on_close(), timeout=timeout * 0.05
                )
            await self.logging_service.info("✓ Stage adapters closed")

            # Phase 4: Storage services
            await self.logging_service.info("Phase 4: Closing storage services...")
            await self.sql_recording_service_manager.on_close()
            await self.embedding_store_manager.on_close()
            await self.logging_service.info("✓ Storage services closed")

            # Phase 5: Disconnect from all servers (SQL, Vector DB, Whisper)
            await self.logging_service.info("Phase 5: Disconnecting from all servers...")
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()
                await self.logging_service.info("✓ All servers disconnected")

            await self.logging_service.info("✓ Graceful shutdown completed successfully")
            await self.logging_service.info("=" * 60)

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"⚠️  Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"⚠️  Error during shutdown: {e}")

        # Phase 6: Always flush and close logging
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services: ServicesManager | None = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for application logging."""

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Queue a log message."""
        pass

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")


class BaseTranscriptionAdapter(Manager):
    """Speech-to-text stage."""

    @abstractmethod
    async def transcribe(
        self,
        audio_path: str,
        speakers: list[SpeakerAssignment] | None = None,
        system_audio_path: str | None = None,
    ) -> TranscriptionResult:
        """
        Turn a recording into speaker labelled segments.

        Args:
            audio_path: Microphone track (device owner)
            speakers: Speaker assignments of the recording
            system_audio_path: Optional counterpart track

        Raises:
            TransientAdapterError: Retryable failure
            PermanentAdapterError: Invalid input or unusable service
        """
        pass


class BaseSummarizationAdapter(Manager):
    """Summary stage."""

    @abstractmethod
    async def summarize(
        self, transcript_text: str, prompt_template: str, context: str | None = None
    ) -> str:
        """
        Summarize a transcript following a prompt template.

        Raises:
            TransientAdapterError: Retryable failure
            PermanentAdapterError: Invalid input or unusable service
        """
        pass


class BaseTaskExtractor(Manager):
    """Second LLM pass producing structured action items."""

    @abstractmethod
    async def extract_tasks(
        self, transcript_text: str, reference_date: date | None = None
    ) -> list[ExtractedTask]:
        """
        Extract follow-up tasks from a transcript.

        Args:
            transcript_text: Speaker labelled transcript
            reference_date: Date of the conversation, used for relative due dates

        Raises:
            TransientAdapterError: Retryable failure, including unparseable output
            PermanentAdapterError: Unusable service
        """
        pass


class BaseEmbeddingAdapter(Manager):
    """Text to vector stage."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """
        Embed a text into a fixed length vector.

        Raises:
            TransientAdapterError: Retryable failure
            PermanentAdapterError: Invalid input or unusable model
        """
        pass

    def missing_prerequisite(self) -> str | None:
        """Describe why the adapter cannot be used, or None when it can."""
        return None


class BaseContactDirectory(Manager):
    """Lookup-only access to contacts owned by an external collaborator."""

    @abstractmethod
    async def get_display_name(self, contact_id: str) -> str | None:
        """Return the display name of a contact."""
        pass

    @abstractmethod
    async def find_contact_in_text(self, text: str) -> str | None:
        """Return the id of a contact whose name appears in the text."""
        pass
