"""Pull the remote document and reconcile it into the local store."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import AbstractContextManager, nullcontext
from typing import Any

from hourglass_sync.core.document import Document, collect_document, plan_apply
from hourglass_sync.core.identity import AuthCapability, Credential
from hourglass_sync.errors import StorageUnavailable, SyncError, Unauthenticated
from hourglass_sync.storage.observable import ObservableStore
from hourglass_sync.sync.change_detector import ChangeDetector
from hourglass_sync.sync.protocol import (
    DocumentApi,
    MergeStrategy,
    PullAction,
    PullResult,
    SyncSignal,
    describe,
)
from hourglass_sync.sync.signals import SignalBus

logger = logging.getLogger(__name__)

# Emitted once each, in this order, after every applied merge
APPLIED_SIGNALS: tuple[SyncSignal, ...] = (
    SyncSignal.CALENDAR_EVENTS_UPDATED,
    SyncSignal.FOCUS_AREAS_UPDATED,
    SyncSignal.SYNC_DATA_APPLIED,
)


class PullMerger:
    """Fetch, merge and apply remote documents.

    Applying is all-or-nothing: if any local write fails, every key touched
    so far is restored and :class:`StorageUnavailable` is raised.  Writes made
    while applying are hidden from the change detector so a pull never
    schedules an upload of what it just received.
    """

    def __init__(
        self,
        store: ObservableStore,
        api: DocumentApi,
        auth: AuthCapability,
        *,
        signals: SignalBus | None = None,
        detector: ChangeDetector | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._auth = auth
        self._signals = signals or SignalBus()
        self._detector = detector

    @property
    def signals(self) -> SignalBus:
        return self._signals

    def bind_detector(self, detector: ChangeDetector) -> None:
        self._detector = detector

    async def pull(self, strategy: MergeStrategy = MergeStrategy.SERVER) -> PullResult:
        """Reconcile local state with the remote document.

        Raises:
            Unauthenticated: Nobody is signed in, or the credential was rejected.
            TransientNetworkFailure: The remote API could not be reached.
            StorageUnavailable: The merged document could not be written locally.
        """
        credential = await self._require_credential()

        if strategy == MergeStrategy.LOCAL:
            await self._upload_local(credential)
            return PullResult(action=PullAction.UPLOADED)

        snapshot = await self._api.fetch(credential)

        if snapshot is None:
            # First device to connect seeds the remote
            logger.info("No remote document, uploading local state")
            await self._upload_local(credential)
            return PullResult(action=PullAction.UPLOADED)

        remote = snapshot.document

        if strategy == MergeStrategy.UPLOAD_IF_ABSENT:
            return PullResult(action=PullAction.NONE, document=remote)

        if strategy == MergeStrategy.MERGE:
            merged: Document = {**collect_document(self._store), **remote}
            # Local state only changes once the remote has accepted the merge
            await self._api.push(credential, merged)
            self.apply(merged)
            return PullResult(action=PullAction.MERGED, document=merged)

        self.apply(remote)
        return PullResult(action=PullAction.DOWNLOADED, document=remote)

    def apply(self, document: Mapping[str, Any]) -> int:
        """Write a remote document over the local store and fire the applied signals.

        Returns:
            Number of local keys written or removed.
        """
        if not isinstance(document, Mapping):
            raise SyncError(f"Malformed document: expected an object, got {type(document).__name__}")

        ops = plan_apply(document)
        before: dict[str, str | None] = {}

        with self._suspend():
            for key, value in ops:
                if key not in before:
                    before[key] = self._store.read(key)
                ok = self._store.write(key, value) if value is not None else self._store.remove(key)
                if not ok:
                    self._restore(before)
                    raise StorageUnavailable(f"Could not apply synced value for {key!r}")

        logger.info("Applied remote document (%s)", describe(dict(document)))
        for signal in APPLIED_SIGNALS:
            self._signals.emit(signal)
        return len(ops)

    def _restore(self, before: dict[str, str | None]) -> None:
        for key, value in before.items():
            ok = self._store.write(key, value) if value is not None else self._store.remove(key)
            if not ok:
                logger.error("Could not restore %s after a failed merge", key)

    def _suspend(self) -> AbstractContextManager[None]:
        if self._detector is None:
            return nullcontext()
        return self._detector.suspended()

    async def _require_credential(self) -> Credential:
        credential = await self._auth.get_current_identity()
        if credential is None:
            raise Unauthenticated("Not authenticated", status_code=401)
        return credential

    async def _upload_local(self, credential: Credential) -> None:
        await self._api.push(credential, collect_document(self._store))
