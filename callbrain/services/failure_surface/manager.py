from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.services.processing_queue.manager import RecordingJob

from callbrain.server.sql_models import RecordingStatus
from callbrain.services.common.errors import RecordingNotFoundError
from callbrain.services.common.models import Recording
from callbrain.services.manager import Manager
from callbrain.services.processing_queue.state_machine import validate_transition

# -------------------------------------------------------------- #
# Failure Surface Service
# -------------------------------------------------------------- #


class FailureSurfaceService(Manager):
    """
    Read model over failed recordings with manual retry and dismiss.

    A manual retry zeroes ``retry_count`` before re-attempting; failures
    during the re-attempt count up again under the normal stage budget.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("FailureSurfaceService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("FailureSurfaceService closed")
        return True

    # -------------------------------------------------------------- #
    # Read Model
    # -------------------------------------------------------------- #

    async def list_failed(self, include_dismissed: bool = False) -> list[Recording]:
        """Failed recordings, most recently updated first."""
        return await self.services.sql_recording_service_manager.list_failed_recordings(
            include_dismissed=include_dismissed
        )

    async def _get_failed(self, recording_id: str) -> Recording:
        recording = await self.services.sql_recording_service_manager.get_recording(recording_id)
        if recording is None:
            raise RecordingNotFoundError(f"Recording {recording_id} not found")
        return recording

    # -------------------------------------------------------------- #
    # Actions
    # -------------------------------------------------------------- #

    async def retry(self, recording_id: str) -> "RecordingJob | None":
        """
        Move a failed recording back to processing and re-enqueue it.

        Returns:
            The job handle from the processing queue

        Raises:
            RecordingNotFoundError: Unknown recording
            IllegalTransitionError: The recording is not failed
        """
        recording = await self._get_failed(recording_id)
        validate_transition(recording.status, RecordingStatus.PROCESSING, manual=True)

        await self.services.sql_recording_service_manager.reset_for_manual_retry(recording_id)
        await self.services.logging_service.info(
            f"Manual retry of recording {recording_id} "
            f"(previous error: {recording.error_message}, retries: {recording.retry_count})"
        )

        queue = self.services.processing_queue
        queue.publish_transition(recording_id, RecordingStatus.PROCESSING)
        return await queue.enqueue(recording_id)

    async def dismiss(self, recording_id: str) -> bool:
        """
        Acknowledge a failed recording without retrying it. The status stays failed.

        Returns:
            False if the recording is not failed or already dismissed
        """
        recording = await self._get_failed(recording_id)
        if recording.status != RecordingStatus.FAILED or recording.dismissed_at is not None:
            return False

        await self.services.sql_recording_service_manager.mark_dismissed(recording_id)
        await self.services.logging_service.info(f"Dismissed failed recording {recording_id}")
        return True
