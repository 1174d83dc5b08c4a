from callbrain.services.recording_sql_manager.manager import SQLRecordingManagerService

__all__ = ["SQLRecordingManagerService"]
