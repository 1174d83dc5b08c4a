"""Common service utilities and base classes."""

from callbrain.services.common.job import Job, JobQueue, JobStatus

__all__ = ["Job", "JobQueue", "JobStatus"]
