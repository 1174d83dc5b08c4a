"""Service managers for the recording pipeline, storage and retrieval."""
