"""Synced document layout.

The document mirrors the local key-value store: a fixed set of string fields
(each the already-serialized value of one local key) plus three open-ended
namespaces keyed by the full local key.  Values are never re-parsed here.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hourglass_sync.storage.local_store import KeyValueStore

Document = dict[str, Any]

# Document field -> local key
FIELD_KEYS: dict[str, str] = {
    "focusCategories": "focusCategories",
    "hourglassEvents": "hourglassEvents:v1",
    "calendarEvents": "calendarEvents",
    "sleepHours": "sleepHours",
    "miscHours": "miscHours",
    "timeFormat": "timeFormat",
    "weekStart": "weekStart",
    "lastProcessedWeekKey": "lastProcessedWeekKey",
}

SETTINGS_FIELDS: tuple[str, ...] = ("sleepHours", "miscHours", "timeFormat", "weekStart")
EVENT_FIELDS: tuple[str, ...] = ("hourglassEvents", "calendarEvents")

# Fields where an empty remote value clears the local key instead of being ignored
CLEARABLE_FIELDS: frozenset[str] = frozenset({"sleepHours", "miscHours"})

WEEKLY_SNAPSHOT_PREFIX = "focusAreas:week:"

# Namespace field -> local key prefixes collected into it
NAMESPACE_PREFIXES: dict[str, tuple[str, ...]] = {
    "weekData": (WEEKLY_SNAPSHOT_PREFIX, "week:"),
    "notes": ("notes:",),
    "eventNotes": ("eventNotes:",),
}

# Keys whose mutation schedules an upload
SYNC_TRIGGER_KEYS: frozenset[str] = frozenset(
    {
        "focusCategories",
        "sleepHours",
        "miscHours",
        "timeFormat",
        "weekStart",
        "userName",
        "profilePicture",
    }
)
SYNC_TRIGGER_PREFIXES: tuple[str, ...] = (
    "hourglassEvents",
    "calendarEvents",
    "googleEventCustomizations",
    WEEKLY_SNAPSHOT_PREFIX,
    "week:",
    "notes:",
    "eventNotes:",
)


def is_sync_relevant(key: str) -> bool:
    """Return True if mutating ``key`` should schedule an upload."""
    if not key:
        return False
    return key in SYNC_TRIGGER_KEYS or key.startswith(SYNC_TRIGGER_PREFIXES)


def weekly_snapshot_key(week_start: str) -> str:
    """Return the local key of the focus-area snapshot for a week (``YYYY-MM-DD``)."""
    return f"{WEEKLY_SNAPSHOT_PREFIX}{week_start}"


def namespace_for_key(key: str) -> str | None:
    """Return the document namespace a local key is collected into, if any."""
    for namespace, prefixes in NAMESPACE_PREFIXES.items():
        if key.startswith(prefixes):
            return namespace
    return None


def empty_document() -> Document:
    """Return a document with every field present and nothing set."""
    doc: Document = dict.fromkeys(FIELD_KEYS)
    for namespace in NAMESPACE_PREFIXES:
        doc[namespace] = {}
    return doc


def collect_document(store: KeyValueStore) -> Document:
    """Snapshot the entire synced state of a local store into a document."""
    doc = empty_document()
    for field_name, local_key in FIELD_KEYS.items():
        doc[field_name] = store.read(local_key)

    for key in sorted(store.keys()):
        namespace = namespace_for_key(key)
        if namespace is None:
            continue
        value = store.read(key)
        if value is not None:
            doc[namespace][key] = value
    return doc


def plan_apply(document: Mapping[str, Any]) -> list[tuple[str, str | None]]:
    """Translate a remote document into local store operations.

    Returns ``(key, value)`` pairs in application order; ``value is None``
    means remove the key.  Fields absent from the document produce no
    operation, so unrelated local keys are left untouched.
    """
    ops: list[tuple[str, str | None]] = []

    for field_name, local_key in FIELD_KEYS.items():
        if field_name not in document:
            continue
        value = document[field_name]
        if field_name in CLEARABLE_FIELDS:
            ops.append((local_key, _as_str(value) if value else None))
        elif value:
            ops.append((local_key, _as_str(value)))

    for namespace in NAMESPACE_PREFIXES:
        entries = document.get(namespace)
        if not isinstance(entries, Mapping):
            continue
        for key, value in entries.items():
            # Only keys that belong to the namespace are written
            if value and namespace_for_key(str(key)) == namespace:
                ops.append((str(key), _as_str(value)))

    return ops


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Non-string values only arrive from hand-edited documents
    return json.dumps(value)
