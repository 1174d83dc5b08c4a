from callbrain.services.embedding_store_manager.manager import (
    EmbeddingStoreManager,
    build_where_clause,
)

__all__ = ["EmbeddingStoreManager", "build_where_clause"]
