# Single collection holding every embedded unit (transcripts, summaries,
# digests, message chunks). Units are told apart by the "unit_type" metadata key.
EMBEDDED_UNITS_COLLECTION = "embedded_units"

# Static collections that are pre-initialized
DEFAULT_VECTORDB_COLLECTIONS = [EMBEDDED_UNITS_COLLECTION]

# Distance space for every collection; similarity = 1 - distance
COLLECTION_METADATA = {"hnsw:space": "cosine"}
