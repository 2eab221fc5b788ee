"""
AppStore Errors
Exception types raised by the remote client and the persistent stores
"""


class AppStoreError(Exception):
    """Base class for all AppStore failures."""


class NotFoundError(AppStoreError):
    """Remote entity does not exist (HTTP 404)."""

    def __init__(self, message, url=None):
        super().__init__(message)
        self.url = url


class NetworkError(AppStoreError):
    """Timeout, connection failure or unexpected HTTP status."""

    def __init__(self, message, status_code=None, url=None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RateLimitError(NetworkError):
    """GitHub API rate limit exceeded."""


class DecodeError(AppStoreError):
    """Remote payload could not be decoded."""


class StorageError(AppStoreError):
    """A cache transaction failed and was rolled back."""
