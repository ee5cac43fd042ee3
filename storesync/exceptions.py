"""
Error taxonomy for the sync engine

Connectors translate HTTP/transport failures into these types so that the
queue processor and the orchestrator can branch on them without looking at
status codes.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for every error the sync engine raises"""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


class AuthenticationError(SyncError):
    """Remote rejected both header and query-parameter credentials (401/403)"""


class NotFoundError(SyncError):
    """Remote record does not exist (404)"""


class RateLimitedError(SyncError):
    """Remote throttled the request (429)"""

    retryable = True


class RemoteServerError(SyncError):
    """Remote failed with a 5xx response"""

    retryable = True


class NetworkError(SyncError):
    """Connection failure or timeout"""

    retryable = True


class ValidationError(SyncError):
    """Malformed configuration or request"""


class StorageError(SyncError):
    """Local persistence failure"""

    retryable = True


class UnknownError(SyncError):
    """Anything the taxonomy does not cover"""


def error_for_status(status_code: int, message: str) -> SyncError:
    """Map an HTTP status code onto the taxonomy"""
    if status_code in (401, 403):
        return AuthenticationError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code == 429:
        return RateLimitedError(message, status_code)
    if 500 <= status_code < 600:
        return RemoteServerError(message, status_code)
    return UnknownError(message, status_code)
