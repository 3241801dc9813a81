"""Sync protocol data structures shared by the client components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

from hourglass_sync.core.document import Document
from hourglass_sync.core.identity import Credential


class MergeStrategy(StrEnum):
    """How a pull reconciles the remote document with local state."""

    SERVER = "server"  # remote fields overwrite local ones; upload if remote is absent
    UPLOAD_IF_ABSENT = "upload_if_absent"  # only seed the remote when it has no document
    MERGE = "merge"  # overlay remote on local, apply, then upload
    LOCAL = "local"  # upload local, overwriting remote


class PullAction(StrEnum):
    """What a pull ended up doing."""

    DOWNLOADED = "downloaded"
    UPLOADED = "uploaded"
    MERGED = "merged"
    NONE = "none"


class SyncSignal(StrEnum):
    """Local notifications fired after a merge is applied."""

    CALENDAR_EVENTS_UPDATED = "calendarEventsUpdated"
    FOCUS_AREAS_UPDATED = "focusAreasUpdated"
    SYNC_DATA_APPLIED = "syncDataApplied"


class UploaderState(StrEnum):
    """Debounced uploader state."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    UPLOADING = "uploading"


@dataclass(frozen=True)
class RemoteSnapshot:
    """A document as returned by the remote API."""

    document: Document
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PullResult:
    """Outcome of a pull."""

    action: PullAction
    document: Document | None = None


@dataclass(frozen=True)
class ManualSyncOutcome:
    """Result of a user-initiated sync, carrying a message fit for display."""

    ok: bool
    message: str
    result: PullResult | None = None


class DocumentApi(Protocol):
    """Remote document API as seen from a client."""

    async def fetch(self, credential: Credential) -> RemoteSnapshot | None:
        """Return the remote document, or None if the user has none.

        Raises:
            Unauthenticated: The credential was rejected.
            TransientNetworkFailure: The request failed.
        """
        ...

    async def push(self, credential: Credential, document: Document) -> None:
        """Replace the remote document.

        Raises:
            Unauthenticated: The credential was rejected.
            TransientNetworkFailure: The request failed.
        """
        ...


def describe(value: Any) -> str:
    """Short human-readable form of a document for log lines."""
    if not isinstance(value, dict):
        return type(value).__name__
    fields = sum(1 for v in value.values() if v and not isinstance(v, dict))
    entries = sum(len(v) for v in value.values() if isinstance(v, dict))
    return f"{fields} fields, {entries} namespaced entries"
