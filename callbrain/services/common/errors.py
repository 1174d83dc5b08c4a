"""
Error taxonomy shared by the pipeline, the storage layer and retrieval.

- AdapterError: raised by stage adapters; ``transient`` decides retryability
- StorageError: a read or write against the durable store failed
- RetrievalPrerequisiteError: retrieval cannot run, with a structured reason
- IllegalTransitionError: a recording status change that the lifecycle forbids
"""

import enum

# -------------------------------------------------------------- #
# Adapter Errors
# -------------------------------------------------------------- #


class AdapterError(Exception):
    """
    Base class for errors raised by a stage adapter.

    ``str(error)`` is the raw error message, which is what ends up in a failed
    recording's ``error_message``.
    """

    transient: bool = True

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return self.message


class TransientAdapterError(AdapterError):
    """Network failure, rate limit or malformed model response. Retried."""

    transient = True


class PermanentAdapterError(AdapterError):
    """Invalid input or missing credential. Never retried."""

    transient = False


# -------------------------------------------------------------- #
# Storage Errors
# -------------------------------------------------------------- #


class StorageError(Exception):
    """A read or write against the relational or vector store failed."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


# -------------------------------------------------------------- #
# Retrieval Errors
# -------------------------------------------------------------- #


class PrerequisiteReason(enum.Enum):
    """Why a retrieval request could not be served."""

    EMBEDDING_UNAVAILABLE = "embedding_unavailable"
    LLM_UNAVAILABLE = "llm_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    SIMILARITY_UNSUPPORTED = "similarity_unsupported"
    SERVICE_ERROR = "service_error"
    INVALID_QUERY = "invalid_query"


class RetrievalPrerequisiteError(Exception):
    """Retrieval prerequisite is unmet. Carries a structured ``reason``."""

    def __init__(self, reason: PrerequisiteReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


# -------------------------------------------------------------- #
# Lifecycle Errors
# -------------------------------------------------------------- #


class IllegalTransitionError(Exception):
    """Raised when a recording status change is not part of the lifecycle."""

    def __init__(self, current, target):
        super().__init__(f"Illegal transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


class RecordingNotFoundError(Exception):
    """Raised when a recording id does not exist."""
