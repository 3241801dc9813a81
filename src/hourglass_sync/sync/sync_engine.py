"""Sync engine orchestrator for one client's local document."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from hourglass_sync.core.document import Document, collect_document
from hourglass_sync.core.identity import AuthCapability
from hourglass_sync.errors import (
    StorageUnavailable,
    SyncError,
    TransientNetworkFailure,
    Unauthenticated,
)
from hourglass_sync.storage.observable import ObservableStore, TabBus
from hourglass_sync.sync.change_detector import ChangeDetector
from hourglass_sync.sync.merger import PullMerger
from hourglass_sync.sync.protocol import (
    DocumentApi,
    ManualSyncOutcome,
    MergeStrategy,
    PullAction,
)
from hourglass_sync.sync.realtime import RealtimeChannel, RealtimeNotifier
from hourglass_sync.sync.signals import SignalBus
from hourglass_sync.sync.uploader import DEFAULT_DEBOUNCE_SECONDS, DebouncedUploader

logger = logging.getLogger(__name__)

_PULL_MESSAGES: dict[PullAction, str] = {
    PullAction.DOWNLOADED: "Data downloaded from cloud successfully",
    PullAction.UPLOADED: "No cloud data yet, local data uploaded",
    PullAction.MERGED: "Local and cloud data merged successfully",
    PullAction.NONE: "Cloud data already present, nothing to do",
}


class SyncEngine:
    """Top-level orchestrator for device data sync.

    Owns one change detector, debounced uploader, puller/merger and
    (optionally) realtime notifier for a single client.  Nothing here is
    process-global, so several engines can share one event loop.

    Lifecycle:
    1. ``start()`` attaches the detector, pulls once (server wins) and
       subscribes to realtime pushes when a user is signed in
    2. Local writes to sync-relevant keys schedule a debounced upload
    3. ``stop()`` drops the pending timer and unsubscribes
    """

    def __init__(
        self,
        store: ObservableStore,
        api: DocumentApi,
        auth: AuthCapability,
        *,
        client_id: str | None = None,
        channel: RealtimeChannel | None = None,
        signals: SignalBus | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._store = store
        self._api = api
        self._auth = auth
        self._client_id = client_id or store.origin_id
        self._signals = signals or SignalBus()

        self._uploader = DebouncedUploader(store, api, auth, debounce_seconds=debounce_seconds)
        self._detector = ChangeDetector(store, self._uploader.request_schedule)
        self._merger = PullMerger(
            store, api, auth, signals=self._signals, detector=self._detector
        )
        self._notifier = (
            RealtimeNotifier(channel, self._merger, auth, client_id=self._client_id)
            if channel is not None
            else None
        )
        self._started = False
        self._bootstrap_task: asyncio.Task[None] | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def store(self) -> ObservableStore:
        return self._store

    @property
    def bus(self) -> TabBus | None:
        return self._store.bus

    @property
    def signals(self) -> SignalBus:
        return self._signals

    @property
    def uploader(self) -> DebouncedUploader:
        return self._uploader

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def merger(self) -> PullMerger:
        return self._merger

    @property
    def notifier(self) -> RealtimeNotifier | None:
        return self._notifier

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, *, bootstrap: bool = True, wait: bool = True) -> None:
        """Begin observing the store.

        Args:
            bootstrap: Pull once (server wins) if a user is signed in.
            wait: Await the bootstrap pull instead of running it in the background.
        """
        if self._started:
            return
        self._detector.attach()
        self._started = True
        logger.info("Sync engine %s started", self._client_id)

        if not bootstrap:
            await self._start_realtime()
            return

        if wait:
            await self._bootstrap()
        else:
            self._bootstrap_task = asyncio.create_task(self._bootstrap())

    async def stop(self, *, flush: bool = False) -> None:
        """Stop observing; optionally upload a pending change first."""
        if not self._started:
            return
        if self._bootstrap_task is not None and not self._bootstrap_task.done():
            self._bootstrap_task.cancel()
            try:
                await self._bootstrap_task
            except asyncio.CancelledError:
                pass
        self._bootstrap_task = None

        if flush:
            await self._uploader.flush()
        else:
            self._uploader.cancel()

        if self._notifier is not None:
            await self._notifier.stop()
        self._detector.detach()
        self._started = False
        logger.info("Sync engine %s stopped", self._client_id)

    async def session_changed(self) -> None:
        """Re-evaluate the signed-in identity after a login or logout."""
        credential = await self._auth.get_current_identity()
        if credential is None:
            self._uploader.cancel()
            if self._notifier is not None:
                await self._notifier.stop()
            return
        if self._started:
            await self._bootstrap()

    async def upload_now(self) -> ManualSyncOutcome:
        """Upload the local document immediately, replacing the remote one."""
        try:
            result = await self._merger.pull(MergeStrategy.LOCAL)
        except SyncError as e:
            return self._failure("Upload", e)
        self._uploader.cancel()
        return ManualSyncOutcome(ok=True, message="Data uploaded to cloud successfully", result=result)

    async def download_now(
        self, strategy: MergeStrategy = MergeStrategy.SERVER
    ) -> ManualSyncOutcome:
        """Pull the remote document with the given strategy."""
        try:
            result = await self._merger.pull(strategy)
        except SyncError as e:
            return self._failure("Download", e)
        return ManualSyncOutcome(ok=True, message=_PULL_MESSAGES[result.action], result=result)

    def export_document(self) -> Document:
        """Snapshot of the local document, for backups."""
        return collect_document(self._store)

    async def import_document(self, document: Mapping[str, Any]) -> ManualSyncOutcome:
        """Apply a backup document locally, then schedule an upload of the result."""
        try:
            written = self._merger.apply(document)
        except SyncError as e:
            logger.warning("Import failed: %s", e)
            return ManualSyncOutcome(ok=False, message=f"Import failed: {e}")
        scheduled = await self._uploader.schedule()
        message = f"Data imported successfully ({written} keys)"
        if not scheduled:
            message += ", not signed in so nothing will be uploaded"
        return ManualSyncOutcome(ok=True, message=message)

    async def status(self) -> dict[str, Any]:
        credential = await self._auth.get_current_identity()
        return {
            "client_id": self._client_id,
            "started": self._started,
            "identity_kind": credential.provider_kind.value if credential else None,
            "uploader_state": self._uploader.state.value,
            "debounce_seconds": self._uploader.debounce_seconds,
            "uploads": self._uploader.upload_count,
            "upload_failures": self._uploader.failure_count,
            "dropped_timers": self._uploader.dropped_count,
            "last_error": self._uploader.last_error,
            "last_uploaded_at": (
                self._uploader.last_uploaded_at.isoformat()
                if self._uploader.last_uploaded_at
                else None
            ),
            "relevant_changes": self._detector.relevant_count,
            "foreign_changes": self._detector.foreign_count,
            "realtime": self._notifier.active if self._notifier is not None else False,
        }

    async def _bootstrap(self) -> None:
        try:
            credential = await self._auth.get_current_identity()
            if credential is None:
                logger.debug("Not signed in, skipping bootstrap pull")
                return
            result = await self._merger.pull(MergeStrategy.SERVER)
            logger.info("Bootstrap pull: %s", result.action)
        except SyncError as e:
            logger.warning("Bootstrap pull failed: %s", e)
        except Exception:
            logger.error("Bootstrap pull failed unexpectedly", exc_info=True)
        await self._start_realtime()

    async def _start_realtime(self) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.start()
        except SyncError as e:
            logger.warning("Realtime subscribe failed: %s", e)

    @staticmethod
    def _failure(action: str, error: SyncError) -> ManualSyncOutcome:
        if isinstance(error, Unauthenticated):
            message = "Please sign in to sync your data"
        elif isinstance(error, TransientNetworkFailure):
            message = f"{action} failed: could not reach the sync server ({error})"
        elif isinstance(error, StorageUnavailable):
            message = f"{action} failed: local storage is unavailable ({error})"
        else:
            message = f"{action} failed: {error}"
        logger.warning("%s failed: %s", action, error)
        return ManualSyncOutcome(ok=False, message=message)
