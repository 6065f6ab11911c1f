"""Error types raised by the remote store client."""

from typing import Optional


class RemoteStoreError(RuntimeError):
    """Base class for remote store failures."""
    pass


class TransientRemoteError(RemoteStoreError):
    """Raised for failures worth retrying (transport errors, timeouts, 429, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRequestError(RemoteStoreError):
    """Raised when the store rejects a request (4xx other than 429)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(RemoteStoreError):
    """Raised when a response lacks the expected envelope fields. Never retried."""
    pass


class RemoteIOError(RemoteStoreError):
    """Raised when a call still fails after exhausting its retry attempts."""

    def __init__(self, operation: str, collection: str, attempts: int, last_error: str):
        super().__init__(
            f"{operation} {collection} failed after {attempts} attempts: {last_error}"
        )
        self.operation = operation
        self.collection = collection
        self.attempts = attempts
        self.last_error = last_error
