"""HLS cache error types."""

from typing import Optional


class HlsCacheError(Exception):
    """Base class for all cache and pipeline errors."""


class DuplicateOriginError(HlsCacheError):
    """A conversion was requested for a source that is already cached or in flight."""

    def __init__(self, title: Optional[str] = None, job_id: Optional[str] = None):
        self.title = title
        self.job_id = job_id
        if title:
            message = f'This song is already downloaded: "{title}"'
        else:
            message = "This song is already being downloaded"
        super().__init__(message)


class CollaboratorError(HlsCacheError):
    """An external tool (yt-dlp or ffmpeg) failed."""

    def __init__(self, tool: str, message: str, returncode: Optional[int] = None):
        self.tool = tool
        self.returncode = returncode
        self.output = message
        super().__init__(f"{tool} error: {message}")


class SessionNotFoundError(HlsCacheError):
    """No live session or artifact matches the request."""


class JobNotFoundError(HlsCacheError):
    """No job with the requested id exists."""


class ForbiddenPathError(HlsCacheError):
    """A requested artifact path resolves outside its session directory."""


class ServiceUnavailableError(HlsCacheError):
    """The worker pool no longer accepts jobs (the service is shutting down)."""

    def __init__(self, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__("Service is shutting down")


__all__ = [
    "HlsCacheError",
    "DuplicateOriginError",
    "CollaboratorError",
    "SessionNotFoundError",
    "JobNotFoundError",
    "ForbiddenPathError",
    "ServiceUnavailableError",
]
