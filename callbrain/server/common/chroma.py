# ChromaDB vector database handler

import logging
from typing import Any

import chromadb
from chromadb.config import Settings

from callbrain.server.services import VectorDBDatabase
from callbrain.server.vector_db_collections import (
    COLLECTION_METADATA,
    DEFAULT_VECTORDB_COLLECTIONS,
)

logger = logging.getLogger(__name__)


class ChromaDBClient(VectorDBDatabase):
    """ChromaDB vector database client."""

    def __init__(self, name: str = "chromadb", host: str = "localhost", port: int = 8000):
        """
        Initialize ChromaDB client.

        Args:
            name: Name of the client
            host: ChromaDB server host
            port: ChromaDB server port
        """
        super().__init__(name)
        self.host = host
        self.port = port

    async def connect(self) -> None:
        """Establish connection to ChromaDB server."""
        try:
            self.client = chromadb.HttpClient(
                host=self.host,
                port=self.port,
                settings=Settings(anonymized_telemetry=False),
            )
            self.client.heartbeat()
            self._connected = True
            logger.info(f"[{self.name}] Connected to ChromaDB at {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"[{self.name}] Failed to connect to ChromaDB: {e}")
            self.client = None
            raise

    async def disconnect(self) -> None:
        """Close connection to ChromaDB server."""
        self.client = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from ChromaDB")

    async def health_check(self) -> bool:
        """Check if ChromaDB server is healthy."""
        try:
            if self.client:
                self.client.heartbeat()
                return True
            return False
        except Exception as e:
            logger.error(f"[{self.name}] Health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Collections
    # -------------------------------------------------------------- #

    async def create_default_collections(self) -> None:
        """Create default collections that must exist on startup."""
        if not self.client:
            raise RuntimeError("ChromaDB client not connected")

        logger.info(f"[{self.name}] Creating default collections: {DEFAULT_VECTORDB_COLLECTIONS}")
        for collection_name in DEFAULT_VECTORDB_COLLECTIONS:
            await self.get_or_create_collection(collection_name)

    async def collection_exists(self, collection_name: str) -> bool:
        """Check if a collection exists."""
        if not self.client:
            return False
        try:
            self.client.get_collection(name=collection_name)
            return True
        except Exception:
            return False

    async def get_or_create_collection(self, collection_name: str) -> Any:
        """
        Get a collection, creating it with cosine distance if it does not exist.

        Args:
            collection_name: Name of the collection

        Returns:
            ChromaDB collection handle
        """
        if not self.client:
            raise RuntimeError("ChromaDB client not connected")
        return self.client.get_or_create_collection(
            name=collection_name, metadata=dict(COLLECTION_METADATA)
        )


def construct_vector_db_client(host: str = "localhost", port: int = 8000) -> ChromaDBClient:
    """
    Construct and return a ChromaDB client.

    Args:
        host: ChromaDB server host
        port: ChromaDB server port

    Returns:
        Configured ChromaDBClient instance
    """
    return ChromaDBClient(name="chromadb", host=host, port=port)
