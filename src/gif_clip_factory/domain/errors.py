from __future__ import annotations


class ClipFactoryError(RuntimeError):
    pass


class ValidationError(ClipFactoryError):
    pass


class QueueFullError(ClipFactoryError):
    pass


class ProbeError(ClipFactoryError):
    pass


class InvalidMedia(ProbeError):
    pass


class DurationExceeded(ProbeError):
    pass


class ResolutionExceeded(ProbeError):
    pass


class ProbeTimeout(ProbeError):
    pass


class RenderFailed(ClipFactoryError):
    def __init__(self, cause: str) -> None:
        super().__init__(cause or "render failed")
        self.cause = cause or "render failed"


class RenderCancelled(RenderFailed):
    pass


class RenderTimeout(RenderFailed):
    pass


class UpstreamAnalysisError(ClipFactoryError):
    pass


class ResourceError(ClipFactoryError):
    pass


class NotFound(ClipFactoryError):
    pass


class JobNotFound(NotFound):
    pass


class VideoNotFound(NotFound):
    pass


class InvalidTransition(ClipFactoryError):
    pass
