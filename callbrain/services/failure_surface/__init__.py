from callbrain.services.failure_surface.manager import FailureSurfaceService

__all__ = ["FailureSurfaceService"]
