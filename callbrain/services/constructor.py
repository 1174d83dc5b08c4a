from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.manager import (
        BaseEmbeddingAdapter,
        BaseSummarizationAdapter,
        BaseTaskExtractor,
        BaseTranscriptionAdapter,
    )

from callbrain.constructor import ServicesManagerType
from callbrain.services.logger import AsyncLoggingService
from callbrain.services.manager import ServicesManager

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServicesManagerType,
    context: "Context",
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    contacts: dict[str, str] | None = None,
    transcription_adapter: "BaseTranscriptionAdapter | None" = None,
    summarization_adapter: "BaseSummarizationAdapter | None" = None,
    task_extractor: "BaseTaskExtractor | None" = None,
    embedding_adapter: "BaseEmbeddingAdapter | None" = None,
    concurrency: int | None = None,
) -> ServicesManager:
    """Construct and return a services manager instance based on the service type.

    Stage adapters passed in replace the default Whisper / Ollama /
    sentence-transformers implementations.

    Args:
        service_type: PRODUCTION or TESTING
        context: Context instance whose server manager is already connected
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files (default: True)
        contacts: Contact id to display name for the contact directory
        transcription_adapter: Override for the transcription stage
        summarization_adapter: Override for the summarization stage
        task_extractor: Override for the task extraction stage
        embedding_adapter: Override for the embedding stage
        concurrency: Pipeline workers (defaults to env: PIPELINE_WORKERS)
    """
    if service_type not in (ServicesManagerType.PRODUCTION, ServicesManagerType.TESTING):
        raise ValueError(f"Unsupported service type: {service_type}")

    testing = service_type == ServicesManagerType.TESTING

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=not testing,
    )

    # -------------------------------------------------------------- #
    # DB Interfaces Setup
    # -------------------------------------------------------------- #

    from callbrain.services.embedding_store_manager.manager import EmbeddingStoreManager
    from callbrain.services.recording_sql_manager.manager import SQLRecordingManagerService

    sql_recording_service_manager = SQLRecordingManagerService(context=context)
    embedding_store_manager = EmbeddingStoreManager(context=context)

    # -------------------------------------------------------------- #
    # Stage Adapters Setup
    # -------------------------------------------------------------- #

    from callbrain.services.ollama_request_manager.manager import OllamaRequestManager

    ollama_request_manager = OllamaRequestManager(context=context)

    if transcription_adapter is None:
        from callbrain.services.transcription_manager.manager import (
            WhisperTranscriptionAdapter,
        )

        transcription_adapter = WhisperTranscriptionAdapter(context=context)

    if summarization_adapter is None:
        from callbrain.services.summarization_manager.manager import (
            OllamaSummarizationAdapter,
        )

        summarization_adapter = OllamaSummarizationAdapter(context=context)

    if task_extractor is None:
        from callbrain.services.task_extraction_manager.manager import OllamaTaskExtractor

        task_extractor = OllamaTaskExtractor(context=context)

    if embedding_adapter is None:
        from callbrain.services.text_embedding_manager.manager import (
            SentenceTransformerEmbeddingAdapter,
        )

        embedding_adapter = SentenceTransformerEmbeddingAdapter(context=context)

    # -------------------------------------------------------------- #
    # Pipeline and Read Side Setup
    # -------------------------------------------------------------- #

    from callbrain.services.contact_directory.manager import InMemoryContactDirectory
    from callbrain.services.failure_surface.manager import FailureSurfaceService
    from callbrain.services.processing_queue.manager import ProcessingQueueService
    from callbrain.services.processing_queue.retry import RetryPolicy
    from callbrain.services.retrieval_manager.manager import RetrievalEngineService

    contact_directory = InMemoryContactDirectory(context=context, contacts=contacts)

    # no backoff sleeps in tests
    policy = RetryPolicy(delays=(0.0,)) if testing else RetryPolicy.from_env()
    processing_queue = ProcessingQueueService(
        context=context, concurrency=concurrency, policy=policy
    )
    retrieval_engine = RetrievalEngineService(context=context)
    failure_surface = FailureSurfaceService(context=context)

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        sql_recording_service_manager=sql_recording_service_manager,
        embedding_store_manager=embedding_store_manager,
        transcription_adapter=transcription_adapter,
        summarization_adapter=summarization_adapter,
        task_extractor=task_extractor,
        embedding_adapter=embedding_adapter,
        ollama_request_manager=ollama_request_manager,
        contact_directory=contact_directory,
        processing_queue=processing_queue,
        retrieval_engine=retrieval_engine,
        failure_surface=failure_surface,
    )
