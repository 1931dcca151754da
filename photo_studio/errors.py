"""Error taxonomy shared by the session core and the remote service."""
from typing import Optional


class StudioError(Exception):
    """Base class for every error raised by photo_studio."""

    kind = "studio_error"


class InvalidRequest(StudioError):
    """A local precondition was violated before any remote call was made."""

    kind = "invalid_request"


class RemoteError(StudioError):
    """The remote service failed, timed out, or returned an unusable payload."""

    kind = "remote_error"

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.operation = operation
        self.cause = cause
