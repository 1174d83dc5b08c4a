import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.server.vector_db_collections import EMBEDDED_UNITS_COLLECTION
from callbrain.services.common.errors import StorageError
from callbrain.services.common.models import (
    EMBEDDED_UNIT_TYPES,
    EmbeddedUnit,
    SearchFilters,
    SearchHit,
)
from callbrain.services.manager import Manager
from callbrain.utils import to_epoch_seconds


def contact_metadata_key(contact_id: str) -> str:
    """Metadata flag marking a unit as involving ``contact_id``."""
    return f"contact:{contact_id}"


# -------------------------------------------------------------- #
# Embedding Store Manager
# -------------------------------------------------------------- #


class EmbeddingStoreManager(Manager):
    """
    Vector index over every embedded unit.

    All unit types share one cosine-space ChromaDB collection. Each entry keeps
    ``unit_type``, ``unit_id``, ``recording_id``, ``contact_id`` (display
    contact) and ``created_at`` (epoch seconds) as metadata, plus one
    ``contact:<id>`` flag per participating contact, so type, contact and date
    filters run inside the same nearest-neighbour query.
    """

    def __init__(self, context: "Context", collection_name: str = EMBEDDED_UNITS_COLLECTION):
        super().__init__(context)
        self.collection_name = collection_name

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"EmbeddingStoreManager initialized (collection={self.collection_name})"
        )
        return True

    async def on_close(self):
        await self.services.logging_service.info("EmbeddingStoreManager closed")
        return True

    # -------------------------------------------------------------- #
    # Availability
    # -------------------------------------------------------------- #

    def is_available(self) -> bool:
        """Whether the vector store is connected."""
        client = self.server.vector_db_client
        return client is not None and client.is_connected and client.client is not None

    def supports_similarity_search(self) -> bool:
        return self.server.vector_db_client.supports_similarity_search

    async def _collection(self) -> Any:
        if not self.is_available():
            raise StorageError("Vector store is not connected", operation="collection")
        try:
            return await self.server.vector_db_client.get_or_create_collection(
                self.collection_name
            )
        except Exception as e:
            raise StorageError(str(e), operation="collection") from e

    # -------------------------------------------------------------- #
    # Writes
    # -------------------------------------------------------------- #

    async def index_unit(self, unit: EmbeddedUnit, embedding: list[float]) -> str:
        """
        Insert or replace the vector for one embedded unit.

        Args:
            unit: The unit being indexed
            embedding: Its vector

        Returns:
            The index entry id (``"{unit_type}:{unit_id}"``)

        Raises:
            ValueError: If the unit type is unknown or the vector is empty
            StorageError: If the vector store rejects the write
        """
        if unit.unit_type not in EMBEDDED_UNIT_TYPES:
            raise ValueError(f"Unknown unit type: {unit.unit_type}")
        if not embedding:
            raise ValueError("embedding cannot be empty")

        metadata: dict[str, Any] = {
            "unit_type": unit.unit_type,
            "unit_id": unit.unit_id,
            "created_at": to_epoch_seconds(unit.created_at),
        }
        # ChromaDB metadata values cannot be None
        if unit.recording_id:
            metadata["recording_id"] = unit.recording_id
        if unit.contact_id:
            metadata["contact_id"] = unit.contact_id
        for contact_id in unit.all_contact_ids():
            metadata[contact_metadata_key(contact_id)] = True

        collection = await self._collection()
        try:
            await asyncio.to_thread(
                collection.upsert,
                ids=[unit.key],
                embeddings=[embedding],
                documents=[unit.text],
                metadatas=[metadata],
            )
        except Exception as e:
            raise StorageError(str(e), operation="index_unit") from e

        await self.services.logging_service.debug(f"Indexed embedded unit {unit.key}")
        return unit.key

    async def index_units(self, units: list[tuple[EmbeddedUnit, list[float]]]) -> list[str]:
        """Index several units, e.g. digests or message chunks from other collaborators."""
        return [await self.index_unit(unit, embedding) for unit, embedding in units]

    # -------------------------------------------------------------- #
    # Reads
    # -------------------------------------------------------------- #

    async def count(self) -> int:
        """Number of indexed units."""
        collection = await self._collection()
        try:
            return await asyncio.to_thread(collection.count)
        except Exception as e:
            raise StorageError(str(e), operation="count") from e

    async def search_by_vector(
        self,
        embedding: list[float],
        threshold: float,
        limit: int,
        type_filter: list[str] | tuple[str, ...] | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchHit]:
        """
        Nearest-neighbour search with exact-match filters in one query.

        Similarity is ``1 - cosine distance``. Only hits strictly above the
        threshold are returned, best first, at most ``limit`` of them.

        Args:
            embedding: Query vector
            threshold: Minimum similarity (exclusive)
            limit: Maximum number of hits
            type_filter: Restrict to these unit types
            filters: Date range and contact filters

        Returns:
            Hits ordered by similarity descending
        """
        if limit <= 0:
            return []

        collection = await self._collection()
        where = build_where_clause(type_filter, filters)

        try:
            total = await asyncio.to_thread(collection.count)
            if total == 0:
                return []

            query_kwargs: dict[str, Any] = {
                "query_embeddings": [embedding],
                "n_results": min(limit, total),
                "include": ["documents", "metadatas", "distances"],
            }
            if where:
                query_kwargs["where"] = where

            result = await asyncio.to_thread(collection.query, **query_kwargs)
        except Exception as e:
            raise StorageError(str(e), operation="search_by_vector") from e

        hits = []
        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        for entry_id, document, metadata, distance in zip(ids, documents, metadatas, distances):
            similarity = 1.0 - float(distance)
            if similarity <= threshold:
                continue

            metadata = metadata or {}
            created_at = metadata.get("created_at")
            hits.append(
                SearchHit(
                    type=metadata.get("unit_type", entry_id.split(":", 1)[0]),
                    id=metadata.get("unit_id", entry_id.split(":", 1)[-1]),
                    text=document or "",
                    similarity=similarity,
                    owner_contact_id=metadata.get("contact_id"),
                    recording_id=metadata.get("recording_id"),
                    created_at=(
                        datetime.fromtimestamp(created_at, tz=timezone.utc)
                        if created_at is not None
                        else None
                    ),
                )
            )

        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]


def build_where_clause(
    type_filter: list[str] | tuple[str, ...] | None, filters: SearchFilters | None
) -> dict[str, Any] | None:
    """
    Build a ChromaDB ``where`` clause from type, date and contact filters.

    Returns:
        None when nothing is filtered, a single condition, or an ``$and`` of them
    """
    conditions: list[dict[str, Any]] = []

    # an explicit type filter takes precedence over the one in filters
    unit_types = list(type_filter or (filters.unit_types if filters else None) or [])
    if unit_types:
        if len(unit_types) == 1:
            conditions.append({"unit_type": unit_types[0]})
        else:
            conditions.append({"unit_type": {"$in": unit_types}})

    if filters:
        if filters.contact_id:
            conditions.append({contact_metadata_key(filters.contact_id): True})
        if filters.start is not None:
            conditions.append({"created_at": {"$gte": to_epoch_seconds(filters.start)}})
        if filters.end is not None:
            conditions.append({"created_at": {"$lt": to_epoch_seconds(filters.end)}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}
