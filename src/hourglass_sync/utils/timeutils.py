"""Time helpers."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    All timestamps stored by the sync service are naive UTC so that they
    compare and serialize consistently across SQLite and JSON.
    """
    return datetime.now(UTC).replace(tzinfo=None)
