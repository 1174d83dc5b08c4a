"""
Retrieval Engine Package.

Question answering over embedded transcripts, summaries, digests and message chunks.
"""

from callbrain.services.retrieval_manager.manager import (
    RetrievalAnswer,
    RetrievalEngineService,
    RetrievalFailure,
)

__all__ = ["RetrievalAnswer", "RetrievalEngineService", "RetrievalFailure"]
