"""Client-side synchronization of the local document."""

from hourglass_sync.sync.change_detector import ChangeDetector
from hourglass_sync.sync.client import StoreDocumentApi, SyncApiClient
from hourglass_sync.sync.device import get_client_id, get_device_name, is_valid_client_id
from hourglass_sync.sync.merger import APPLIED_SIGNALS, PullMerger
from hourglass_sync.sync.protocol import (
    DocumentApi,
    ManualSyncOutcome,
    MergeStrategy,
    PullAction,
    PullResult,
    RemoteSnapshot,
    SyncSignal,
    UploaderState,
)
from hourglass_sync.sync.realtime import (
    LocalChannel,
    RealtimeChannel,
    RealtimeEvent,
    RealtimeNotifier,
    WebSocketChannel,
)
from hourglass_sync.sync.signals import SignalBus
from hourglass_sync.sync.sync_engine import SyncEngine
from hourglass_sync.sync.uploader import DebouncedUploader

__all__ = [
    "ChangeDetector",
    "DebouncedUploader",
    "PullMerger",
    "APPLIED_SIGNALS",
    "SignalBus",
    "SyncEngine",
    # Transport
    "DocumentApi",
    "StoreDocumentApi",
    "SyncApiClient",
    "LocalChannel",
    "RealtimeChannel",
    "RealtimeEvent",
    "RealtimeNotifier",
    "WebSocketChannel",
    # Protocol
    "ManualSyncOutcome",
    "MergeStrategy",
    "PullAction",
    "PullResult",
    "RemoteSnapshot",
    "SyncSignal",
    "UploaderState",
    # Device
    "get_client_id",
    "is_valid_client_id",
    "get_device_name",
]
