"""Call recording pipeline: transcription, summaries, tasks and retrieval."""

__version__ = "0.1.0"
