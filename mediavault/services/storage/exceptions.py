"""
Exceptions raised by the storage backends and gateway.

Backends translate OS and botocore failures into these kinds once, at the
failing call. Callers branch on the exception class, never on messages.
"""

from typing import Optional


class StorageError(Exception):
    """Base exception for storage errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class ConfigurationError(StorageError):
    """Unsupported endpoint or missing credentials. Not retryable."""
    pass


class MalformedPathError(StorageError, ValueError):
    """Remote path does not have the host/bucket/key shape."""
    pass


class UnsupportedOperationError(StorageError):
    """Operation is not possible between the given backends or buckets."""
    pass


class StorageNotFoundError(StorageError):
    """File or object does not exist."""
    pass


class StorageAlreadyExistsError(StorageError):
    """Exclusive create found an existing file."""
    pass


class CrossDeviceError(StorageError):
    """Local rename crossed a filesystem boundary."""
    pass


class TransientIOError(StorageError):
    """Network or filesystem fault. Retry policy belongs to the caller."""
    pass


class VerificationFailure(StorageError):
    """Size or checksum mismatch between source and destination."""

    def __init__(self, message: str, path: Optional[str] = None, expected=None, actual=None):
        super().__init__(message, path)
        self.expected = expected
        self.actual = actual
