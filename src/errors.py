"""
Error kinds raised by the CTFd manager.

Validation errors are never retried automatically. Remote call errors abandon
the current event and are retried naturally by the next watch event.
"""

from typing import Optional


class ValidationError(Exception):
    """A ConfigMap or request payload is missing fields or malformed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingFieldError(ValidationError):
    """A required payload key is absent."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"ConfigMap does not contain the required element: {field}")


class DecodeError(ValidationError):
    """A nested JSON blob could not be decoded into a record."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Unable to decode '{field}': {message}")


class RemoteCallError(Exception):
    """A call against a remote API failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ClusterAPIError(RemoteCallError):
    """Kubernetes API failure."""


class CTFdAPIError(RemoteCallError):
    """CTFd API failure."""


class GitHubAPIError(RemoteCallError):
    """GitHub API failure."""


class WatchConnectionError(Exception):
    """The ConfigMap watch could not be opened."""


class SetupConflictError(Exception):
    """CTFd has already been set up and no longer serves the setup page."""


class AuthError(Exception):
    """A request to the HTTP API presented a bad shared secret."""
