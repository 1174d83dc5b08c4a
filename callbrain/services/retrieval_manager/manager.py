"""
Retrieval Engine Service.

Answers free-text questions against every embedded unit:
1. check that embedding, LLM and vector store are usable
2. infer date and contact filters from the question
3. embed the question and run one filtered similarity query
4. assemble the best units and the recent chat history into a context payload
5. ask the LLM

Prerequisite and service failures come back as ``RetrievalFailure`` values so
a broken query never ends a conversation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.manager import ServicesManager

from callbrain.services.common.errors import (
    AdapterError,
    PrerequisiteReason,
    RetrievalPrerequisiteError,
    StorageError,
)
from callbrain.services.common.models import ChatMessage, SearchFilters, SearchHit
from callbrain.services.manager import Manager
from callbrain.services.retrieval_manager.filters import infer_filters
from callbrain.services.retrieval_manager.prompts import (
    ASSISTANT_SYSTEM_PROMPT,
    CONTEXT_UNIT_TEMPLATE,
    NO_CONTEXT_NOTE,
    NOTHING_FOUND_ANSWER,
    unit_type_label,
)
from callbrain.utils import get_current_timestamp_utc

DEFAULT_TOP_K = 15
DEFAULT_THRESHOLD = 0.7
DEFAULT_MAX_CONTEXT_UNITS = 8
MAX_UNIT_CONTEXT_CHARS = 1500
MAX_HISTORY_MESSAGES = 10

# -------------------------------------------------------------- #
# Results
# -------------------------------------------------------------- #


@dataclass
class RetrievalAnswer:
    """
    Answer to a question.

    Attributes:
        text: Answer text
        hits: Units the answer was grounded on
        empty: True when nothing relevant was found
        filters: Filters applied to the similarity query
    """

    text: str
    hits: list[SearchHit] = field(default_factory=list)
    empty: bool = False
    filters: SearchFilters | None = None

    @property
    def ok(self) -> bool:
        return True


@dataclass
class RetrievalFailure:
    """A question that could not be answered, with a structured reason."""

    reason: PrerequisiteReason
    message: str

    @property
    def ok(self) -> bool:
        return False


# -------------------------------------------------------------- #
# Retrieval Engine Service
# -------------------------------------------------------------- #


class RetrievalEngineService(Manager):
    """Read-only question answering over the embedding store."""

    def __init__(
        self,
        context: Context,
        top_k: int | None = None,
        threshold: float | None = None,
        max_context_units: int = DEFAULT_MAX_CONTEXT_UNITS,
        infer_query_filters: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the retrieval engine.

        Args:
            context: Application context
            top_k: Hits fetched per query (defaults to env: RETRIEVAL_TOP_K)
            threshold: Minimum similarity, exclusive (defaults to env: RETRIEVAL_THRESHOLD)
            max_context_units: Hits pasted into the LLM context
            infer_query_filters: Infer date and contact filters from the question
            clock: Source of the current time for relative dates
        """
        super().__init__(context)

        if top_k is None:
            top_k = int(os.getenv("RETRIEVAL_TOP_K", str(DEFAULT_TOP_K)))
        if threshold is None:
            threshold = float(os.getenv("RETRIEVAL_THRESHOLD", str(DEFAULT_THRESHOLD)))

        self.top_k = top_k
        self.threshold = threshold
        self.max_context_units = max_context_units
        self.infer_query_filters = infer_query_filters
        self._clock = clock or get_current_timestamp_utc

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"RetrievalEngineService initialized (top_k={self.top_k}, threshold={self.threshold})"
        )

    # -------------------------------------------------------------- #
    # Prerequisites
    # -------------------------------------------------------------- #

    def check_prerequisites(self) -> None:
        """
        Raises:
            RetrievalPrerequisiteError: The first unmet prerequisite
        """
        embedding_adapter = self.services.embedding_adapter
        problem = embedding_adapter.missing_prerequisite() if embedding_adapter else "not configured"
        if problem:
            raise RetrievalPrerequisiteError(PrerequisiteReason.EMBEDDING_UNAVAILABLE, problem)

        llm = self.services.ollama_request_manager
        problem = llm.missing_prerequisite() if llm else "LLM service is not configured"
        if problem:
            raise RetrievalPrerequisiteError(PrerequisiteReason.LLM_UNAVAILABLE, problem)

        store = self.services.embedding_store_manager
        if store is None or not store.is_available():
            raise RetrievalPrerequisiteError(
                PrerequisiteReason.STORE_UNAVAILABLE, "Vector store is not connected"
            )
        if not store.supports_similarity_search():
            raise RetrievalPrerequisiteError(
                PrerequisiteReason.SIMILARITY_UNSUPPORTED,
                "Vector store does not support similarity search",
            )

    # -------------------------------------------------------------- #
    # Search
    # -------------------------------------------------------------- #

    async def resolve_filters(
        self, query: str, filters: SearchFilters | None
    ) -> SearchFilters | None:
        """Use explicit filters as given, otherwise infer them from the query."""
        if filters is not None:
            return None if filters.is_empty() else filters
        if not self.infer_query_filters:
            return None

        inferred = await infer_filters(query, self._clock(), self.services.contact_directory)
        return None if inferred.is_empty() else inferred

    async def search(
        self,
        query: str,
        threshold: float | None = None,
        limit: int | None = None,
        filters: SearchFilters | None = None,
        type_filter: list[str] | None = None,
    ) -> list[SearchHit]:
        """
        Similarity search for a question.

        Returns:
            Hits above the threshold, best first

        Raises:
            RetrievalPrerequisiteError: A prerequisite is unmet
            AdapterError: Embedding the query failed
            StorageError: The vector store failed
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")

        self.check_prerequisites()
        hits, _ = await self._search(query, threshold, limit, filters, type_filter)
        return hits

    async def _search(
        self,
        query: str,
        threshold: float | None,
        limit: int | None,
        filters: SearchFilters | None,
        type_filter: list[str] | None = None,
    ) -> tuple[list[SearchHit], SearchFilters | None]:
        store = self.services.embedding_store_manager
        applied = await self.resolve_filters(query, filters)

        vector = await self.services.embedding_adapter.embed(query)
        hits = await store.search_by_vector(
            vector,
            threshold=self.threshold if threshold is None else threshold,
            limit=self.top_k if limit is None else limit,
            type_filter=type_filter,
            filters=applied,
        )

        await self.services.logging_service.debug(
            f"Retrieval found {len(hits)} hits for {query[:100]!r} (filters={applied})"
        )
        return hits, applied

    # -------------------------------------------------------------- #
    # Answer
    # -------------------------------------------------------------- #

    async def answer(
        self,
        query: str,
        history: list[ChatMessage] | list[dict[str, str]] | None = None,
        filters: SearchFilters | None = None,
    ) -> RetrievalAnswer | RetrievalFailure:
        """
        Answer a question from the user's conversations.

        Args:
            query: The question
            history: Earlier chat messages, oldest first; the last 10 are used
            filters: Explicit filters; inferred from the question when None

        Returns:
            RetrievalAnswer, or RetrievalFailure when a prerequisite is unmet
            or a service call failed
        """
        if not query or not query.strip():
            return RetrievalFailure(
                reason=PrerequisiteReason.INVALID_QUERY, message="Question is empty"
            )

        try:
            self.check_prerequisites()

            store = self.services.embedding_store_manager
            if await store.count() == 0:
                await self.services.logging_service.info(
                    "Retrieval against an empty index, nothing to search"
                )
                return RetrievalAnswer(text=NOTHING_FOUND_ANSWER, empty=True)

            hits, applied = await self._search(query, None, None, filters)
            context_text = await self.build_context(hits)

            messages = self._history_messages(history)
            messages.append({"role": "user", "content": query})

            result = await self.services.ollama_request_manager.query(
                messages=messages,
                system_prompt=ASSISTANT_SYSTEM_PROMPT.format(context=context_text),
            )
            return RetrievalAnswer(
                text=result.content.strip(), hits=hits, empty=not hits, filters=applied
            )

        except RetrievalPrerequisiteError as e:
            await self.services.logging_service.warning(
                f"Retrieval prerequisite unmet ({e.reason.value}): {e.message}"
            )
            return RetrievalFailure(reason=e.reason, message=e.message)
        except StorageError as e:
            await self.services.logging_service.error(f"Retrieval storage error: {e}")
            return RetrievalFailure(reason=PrerequisiteReason.STORE_UNAVAILABLE, message=str(e))
        except AdapterError as e:
            await self.services.logging_service.error(f"Retrieval service error: {e}")
            return RetrievalFailure(reason=PrerequisiteReason.SERVICE_ERROR, message=str(e))

    async def build_context(self, hits: list[SearchHit]) -> str:
        """Render hits as labelled context blocks, truncated per unit."""
        if not hits:
            return NO_CONTEXT_NOTE

        parts = []
        for index, hit in enumerate(hits[: self.max_context_units], start=1):
            contact = ""
            if hit.owner_contact_id and self.services.contact_directory:
                name = await self.services.contact_directory.get_display_name(
                    hit.owner_contact_id
                )
                if name:
                    contact = f" (Contact: {name})"

            parts.append(
                CONTEXT_UNIT_TEMPLATE.format(
                    label=unit_type_label(hit.type),
                    index=index,
                    contact=contact,
                    similarity=hit.similarity,
                    text=hit.text[:MAX_UNIT_CONTEXT_CHARS],
                )
            )
        return "\n\n".join(parts)

    @staticmethod
    def _history_messages(
        history: list[ChatMessage] | list[dict[str, str]] | None,
    ) -> list[dict[str, str]]:
        messages = []
        for message in (history or [])[-MAX_HISTORY_MESSAGES:]:
            if isinstance(message, ChatMessage):
                messages.append({"role": message.role, "content": message.content})
            else:
                messages.append({"role": message["role"], "content": message["content"]})
        return messages
