"""Storage backends for Hourglass Sync."""

from hourglass_sync.storage.local_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)
from hourglass_sync.storage.observable import MutationEvent, MutationOp, ObservableStore, TabBus
from hourglass_sync.storage.remote_store import (
    InMemoryRemoteStore,
    RemoteDocumentStore,
    RemoteRecord,
    SQLiteRemoteStore,
)

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "MutationEvent",
    "MutationOp",
    "ObservableStore",
    "TabBus",
    "RemoteDocumentStore",
    "RemoteRecord",
    "InMemoryRemoteStore",
    "SQLiteRemoteStore",
]
