"""
Text embedding stage.

Embeds transcripts, summaries and retrieval queries with a sentence-transformers
model (default BAAI/bge-large-en-v1.5, 1024 dimensions). Encoding runs in a
thread executor; vectors are normalized so cosine distance in the vector store
matches dot-product similarity.

Every vector is checked against a fixed length: ``EMBEDDING_DIMENSIONS`` when
set, otherwise the size the loaded model reports.
"""

from __future__ import annotations

import asyncio
import gc
import os
from typing import TYPE_CHECKING

import torch
from sentence_transformers import SentenceTransformer

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.manager import ServicesManager

from callbrain.services.common.errors import PermanentAdapterError, TransientAdapterError
from callbrain.services.manager import BaseEmbeddingAdapter

DEFAULT_EMBEDDING_MODEL = "BAAI/bge-large-en-v1.5"
MAX_EMBEDDING_INPUT_CHARS = 30000

# -------------------------------------------------------------- #
# Embedding Model Handler
# -------------------------------------------------------------- #


class EmbeddingModelHandler:
    """
    Handler for a sentence-transformers model with load/offload lifecycle.

    Usable as an async context manager that loads on entry and offloads on exit.
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, device: str | None = None):
        """
        Initialize the embedding model handler.

        Args:
            model_name: Name of the sentence-transformers model to use
            device: Torch device, or None to let sentence-transformers decide
        """
        self.model_name = model_name
        self.device = device
        self.model: SentenceTransformer | None = None

    def load_model(self) -> None:
        """Load the embedding model."""
        if self.is_loaded():
            return
        self.model = SentenceTransformer(self.model_name, device=self.device)

    def offload_model(self) -> None:
        """Drop the model and free accelerator memory."""
        self.model = None
        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    def is_loaded(self) -> bool:
        """Check if the model is currently loaded."""
        return self.model is not None

    def dimensions(self) -> int | None:
        if not self.is_loaded():
            return None
        return self.model.get_sentence_embedding_dimension()

    def encode(
        self,
        texts: list[str],
        batch_size: int = 32,
        normalize_embeddings: bool = True,
    ) -> list[list[float]]:
        """
        Encode texts into embeddings.

        Args:
            texts: List of text strings to embed
            batch_size: Batch size for encoding
            normalize_embeddings: Whether to normalize embeddings

        Returns:
            List of embedding vectors (list of floats)

        Raises:
            ValueError: If model is not loaded
        """
        if not self.is_loaded():
            raise ValueError("Model is not loaded. Call load_model() first.")

        embeddings = self.model.encode(
            texts,
            batch_size=batch_size,
            normalize_embeddings=normalize_embeddings,
            show_progress_bar=False,
        )
        return embeddings.tolist()

    async def __aenter__(self):
        self.load_model()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.offload_model()
        return False


# -------------------------------------------------------------- #
# Sentence Transformer Embedding Adapter
# -------------------------------------------------------------- #


class SentenceTransformerEmbeddingAdapter(BaseEmbeddingAdapter):
    """Embedding adapter keeping one model loaded for the lifetime of the service."""

    def __init__(
        self,
        context: Context,
        model_name: str | None = None,
        expected_dimensions: int | None = None,
        device: str | None = None,
    ):
        super().__init__(context)
        model_name = model_name if model_name is not None else os.getenv(
            "EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL
        )
        if expected_dimensions is None and os.getenv("EMBEDDING_DIMENSIONS"):
            expected_dimensions = int(os.environ["EMBEDDING_DIMENSIONS"])

        self.model_name = model_name
        self.expected_dimensions = expected_dimensions
        self.handler = EmbeddingModelHandler(model_name=model_name, device=device)
        self._load_lock = asyncio.Lock()
        self._load_error: str | None = None

    # -------------------------------------------------------------- #
    # Manager Lifecycle
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"SentenceTransformerEmbeddingAdapter initialized (model={self.model_name})"
        )

    async def on_close(self) -> None:
        self.handler.offload_model()
        if self.services:
            await self.services.logging_service.info("SentenceTransformerEmbeddingAdapter closed")

    # -------------------------------------------------------------- #
    # Availability
    # -------------------------------------------------------------- #

    def missing_prerequisite(self) -> str | None:
        if not self.model_name:
            return "Embedding model is not configured (EMBEDDING_MODEL)"
        if self._load_error:
            return f"Embedding model could not be loaded: {self._load_error}"
        return None

    async def _ensure_loaded(self) -> None:
        async with self._load_lock:
            if self.handler.is_loaded():
                return
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self.handler.load_model)
            except OSError as e:
                # unknown model name or missing local files
                self._load_error = str(e)
                raise PermanentAdapterError(f"Failed to load embedding model: {e}") from e
            model_dimensions = self.handler.dimensions()
            await self.services.logging_service.info(
                f"Loaded embedding model {self.model_name} ({model_dimensions} dimensions)"
            )

            # without EMBEDDING_DIMENSIONS every vector is checked against the model's own size
            if self.expected_dimensions is None:
                self.expected_dimensions = model_dimensions
            elif model_dimensions and model_dimensions != self.expected_dimensions:
                self._load_error = (
                    f"{self.model_name} produces {model_dimensions} dimensions, "
                    f"expected {self.expected_dimensions}"
                )
                raise PermanentAdapterError(f"Embedding model mismatch: {self._load_error}")

    # -------------------------------------------------------------- #
    # Stage
    # -------------------------------------------------------------- #

    async def embed(self, text: str) -> list[float]:
        if not self.model_name:
            raise PermanentAdapterError("Embedding model is not configured")
        if not text or not text.strip():
            raise PermanentAdapterError("Cannot embed empty text")

        await self._ensure_loaded()

        loop = asyncio.get_running_loop()
        truncated = text[:MAX_EMBEDDING_INPUT_CHARS]
        try:
            vectors = await loop.run_in_executor(None, self.handler.encode, [truncated])
        except RuntimeError as e:
            # out of memory and device errors
            raise TransientAdapterError(f"Embedding failed: {e}") from e

        vector = vectors[0]
        if self.expected_dimensions and len(vector) != self.expected_dimensions:
            raise PermanentAdapterError(
                f"Embedding has {len(vector)} dimensions, expected {self.expected_dimensions}"
            )
        return vector
