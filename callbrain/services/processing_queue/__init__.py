"""
Processing Queue Package.

Drives recordings through transcribe, summarize, extract tasks and embed.
"""

from callbrain.services.processing_queue.manager import ProcessingQueueService, RecordingJob
from callbrain.services.processing_queue.retry import RetryPolicy

__all__ = ["ProcessingQueueService", "RecordingJob", "RetryPolicy"]
