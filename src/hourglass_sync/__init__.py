"""Hourglass Sync - device data sync engine for the Hourglass time tracker."""

from hourglass_sync.core.identity import Credential, ProviderKind, StaticAuth
from hourglass_sync.errors import (
    DocumentNotFound,
    StorageUnavailable,
    SyncError,
    TransientNetworkFailure,
    Unauthenticated,
)
from hourglass_sync.storage.local_store import InMemoryKeyValueStore, JsonFileKeyValueStore
from hourglass_sync.storage.observable import ObservableStore, TabBus
from hourglass_sync.sync.protocol import ManualSyncOutcome, MergeStrategy, SyncSignal
from hourglass_sync.sync.sync_engine import SyncEngine

__version__ = "0.1.0"

__all__ = [
    # Engine
    "SyncEngine",
    "MergeStrategy",
    "ManualSyncOutcome",
    "SyncSignal",
    # Local store
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "ObservableStore",
    "TabBus",
    # Identity
    "Credential",
    "ProviderKind",
    "StaticAuth",
    # Errors
    "SyncError",
    "StorageUnavailable",
    "Unauthenticated",
    "TransientNetworkFailure",
    "DocumentNotFound",
    # Version
    "__version__",
]
