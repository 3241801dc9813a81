"""Error taxonomy for Hourglass Sync."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageUnavailable(SyncError):
    """Local persistence failed (quota exceeded, unreadable or unwritable file)."""


class Unauthenticated(SyncError):
    """No valid identity is available for an operation that needs one."""


class TransientNetworkFailure(SyncError):
    """Upload, download or subscribe failed because of connectivity or a server error."""


class DocumentNotFound(SyncError):
    """The remote store holds no document for the identity."""
