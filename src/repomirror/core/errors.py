"""
Exception hierarchy for repository mirroring.

A sync touches the network, compressed XML metadata and the local store.
Every failure mode has its own class so the sync engine can tell the
expected conditions (a package not stored yet, an unreadable local file)
apart from the fatal ones that abort a run.
"""

from __future__ import annotations

__all__ = [
    "MirrorError",
    "ConfigError",
    "HttpError",
    "MalformedMetadataError",
    "DecompressionError",
    "StoredFileNotFoundError",
    "ChecksumError",
    "StorageError",
    "RecycleError",
    "CommitError",
]


class MirrorError(RuntimeError):
    """Base exception for all repository mirroring failures."""


class ConfigError(MirrorError):
    """Raised when a repository is not configured or its config is unusable."""


class HttpError(MirrorError):
    """Raised when an HTTP request fails.

    Attributes:
        url: Requested URL
        status_code: HTTP status of the response, or None when the request
            failed before a response was received (DNS, TLS, connection reset)
    """

    def __init__(self, url: str, status_code: int | None = None, reason: str | None = None):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            message = f"GET {url} returned HTTP {status_code}"
        else:
            message = f"GET {url} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        """True if the server answered 404."""
        return self.status_code == 404


class MalformedMetadataError(MirrorError):
    """Raised when a metadata document is not well-formed XML."""


class DecompressionError(MirrorError):
    """Raised when a compressed metadata document cannot be decompressed."""


class StoredFileNotFoundError(MirrorError, FileNotFoundError):
    """Raised when a checksum is requested for a path that is not stored."""


class ChecksumError(MirrorError):
    """Raised when the checksum of a stored file cannot be computed."""


class StorageError(MirrorError):
    """Raised when the local store cannot be written."""


class RecycleError(StorageError):
    """Raised when a stored file cannot be carried over to the new generation."""


class CommitError(StorageError):
    """Raised when a new generation cannot be promoted."""
