"""Tests for sync/sync_engine.py - end-to-end behaviour of one or more clients."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from hourglass_sync.core.document import Document
from hourglass_sync.core.identity import (
    Credential,
    PrimaryIdentity,
    ProviderKind,
    StaticAuth,
    TrustingResolver,
)
from hourglass_sync.errors import TransientNetworkFailure
from hourglass_sync.storage.local_store import InMemoryKeyValueStore
from hourglass_sync.storage.observable import ObservableStore, TabBus
from hourglass_sync.storage.remote_store import InMemoryRemoteStore, RemoteRecord
from hourglass_sync.sync.client import StoreDocumentApi
from hourglass_sync.sync.protocol import MergeStrategy, PullAction, RemoteSnapshot, SyncSignal
from hourglass_sync.sync.realtime import LocalChannel
from hourglass_sync.sync.sync_engine import SyncEngine

USER = PrimaryIdentity("user-1")
STUDY = '[{"label":"Study"}]'
TEST_DEBOUNCE = 0.05


class UnreachableApi:
    """Document API whose every call fails like a dropped connection."""

    def __init__(self) -> None:
        self.calls = 0

    async def fetch(self, credential: Credential) -> RemoteSnapshot | None:
        self.calls += 1
        raise TransientNetworkFailure("Connection error: unreachable")

    async def push(self, credential: Credential, document: Document) -> None:
        self.calls += 1
        raise TransientNetworkFailure("Connection error: unreachable")


class ReadOnlyApi:
    """Document API that serves a document but drops every upload."""

    def __init__(self, document: Document) -> None:
        self.document = document

    async def fetch(self, credential: Credential) -> RemoteSnapshot | None:
        return RemoteSnapshot(dict(self.document))

    async def push(self, credential: Credential, document: Document) -> None:
        raise TransientNetworkFailure("Connection error: reset by peer")


async def _settle(engine: SyncEngine) -> None:
    await engine.uploader.wait_idle()


# ── Upload path ──


class TestAutoUpload:
    async def test_scenario_a_write_reaches_remote(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        """A setting written on one device is in the cloud after the quiet period."""
        engine.store.write("sleepHours", "8")
        await asyncio.sleep(TEST_DEBOUNCE * 3)
        await _settle(engine)

        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["sleepHours"] == "8"

    async def test_burst_uploads_once_with_final_state(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        puts: list[Document] = []

        async def _count(record: RemoteRecord, source: str | None) -> None:
            puts.append(record.document)

        remote_store.add_listener(_count)
        for i in range(5):
            engine.store.write(f"notes:{i}", str(i))
        await _settle(engine)

        assert len(puts) == 1
        assert puts[0]["notes"] == {f"notes:{i}": str(i) for i in range(5)}

    async def test_display_settings_upload(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        engine.store.write("timeFormat", "24h")
        engine.store.write("weekStart", "monday")
        await asyncio.sleep(TEST_DEBOUNCE * 3)
        await _settle(engine)

        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["timeFormat"] == "24h"
        assert record.document["weekStart"] == "monday"
        assert engine.uploader.upload_count == 1

    async def test_irrelevant_keys_never_upload(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        engine.store.write("theme", "dark")
        engine.store.write("lastProcessedWeekKey", "2024-01-01")
        await asyncio.sleep(TEST_DEBOUNCE * 3)
        await _settle(engine)

        assert len(remote_store) == 0
        assert engine.uploader.upload_count == 0

    async def test_signed_out_makes_no_calls(self, local_store: ObservableStore) -> None:
        api = UnreachableApi()
        engine = SyncEngine(local_store, api, StaticAuth(None), debounce_seconds=TEST_DEBOUNCE)
        await engine.start()
        local_store.write("sleepHours", "8")
        await _settle(engine)
        await engine.stop()

        assert api.calls == 0

    async def test_failed_upload_leaves_local_unchanged(self, local_store: ObservableStore) -> None:
        local_store.write("focusCategories", STUDY)
        engine = SyncEngine(
            local_store,
            UnreachableApi(),
            StaticAuth(Credential(ProviderKind.PRIMARY, "user-1")),
            debounce_seconds=TEST_DEBOUNCE,
        )
        await engine.start(bootstrap=False)
        local_store.write("sleepHours", "8")
        before = local_store.snapshot()

        await _settle(engine)
        await engine.stop()

        assert local_store.snapshot() == before
        assert engine.uploader.failure_count == 1

    async def test_pulled_data_is_not_reuploaded(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        await remote_store.put(USER, {"sleepHours": "8"})
        engine = make_engine("device-2")
        await engine.start()
        await _settle(engine)
        await engine.stop()

        assert engine.store.read("sleepHours") == "8"
        assert engine.uploader.upload_count == 0


# ── Pull path ──


class TestPull:
    async def test_scenario_b_manual_pull_fires_signal_once(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        """A device without focus areas receives them verbatim on manual pull."""
        await remote_store.put(USER, {"focusCategories": STUDY})
        device2 = make_engine("device-2")
        fired: list[SyncSignal] = []
        device2.signals.on(SyncSignal.FOCUS_AREAS_UPDATED, fired.append)

        outcome = await device2.download_now()

        assert outcome.ok
        assert outcome.message == "Data downloaded from cloud successfully"
        assert device2.store.read("focusCategories") == STUDY
        assert fired == [SyncSignal.FOCUS_AREAS_UPDATED]

    async def test_partial_document_is_additive(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        device = make_engine(
            "device-2", initial={"notes:1": "keep", "focusCategories": "[]", "sleepHours": "6"}
        )
        await remote_store.put(USER, {"focusCategories": STUDY, "sleepHours": "8"})

        await device.download_now()

        assert device.store.read("notes:1") == "keep"
        assert device.store.read("focusCategories") == STUDY
        assert device.store.read("sleepHours") == "8"

    async def test_bootstrap_seeds_empty_remote(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        device = make_engine("device-1", initial={"sleepHours": "7", "notes:1": "n"})
        await device.start()
        await device.stop()

        record = await remote_store.get(USER)
        assert record is not None
        assert record.document == device.export_document()

    async def test_download_message_when_remote_empty(self, engine: SyncEngine) -> None:
        outcome = await engine.download_now()
        assert outcome.ok
        assert outcome.result is not None
        assert outcome.result.action == PullAction.UPLOADED
        assert outcome.message == "No cloud data yet, local data uploaded"

    async def test_download_merge_strategy(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        device = make_engine("device-1", initial={"miscHours": "2"})
        await remote_store.put(USER, {"sleepHours": "8"})

        outcome = await device.download_now(MergeStrategy.MERGE)

        assert outcome.message == "Local and cloud data merged successfully"
        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["miscHours"] == "2"
        assert record.document["sleepHours"] == "8"


# ── Manual actions and messages ──


class TestManualActions:
    async def test_upload_now(self, engine: SyncEngine, remote_store: InMemoryRemoteStore) -> None:
        engine.store.write("sleepHours", "9")
        outcome = await engine.upload_now()

        assert outcome.ok
        assert outcome.message == "Data uploaded to cloud successfully"
        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["sleepHours"] == "9"

    async def test_not_signed_in_message(self, make_engine: Callable[..., SyncEngine]) -> None:
        device = make_engine("device-1", auth=StaticAuth(None))
        outcome = await device.download_now()
        assert not outcome.ok
        assert outcome.message == "Please sign in to sync your data"

    async def test_network_failure_message(self, local_store: ObservableStore, auth: StaticAuth) -> None:
        engine = SyncEngine(local_store, UnreachableApi(), auth)
        outcome = await engine.upload_now()
        assert not outcome.ok
        assert outcome.message.startswith("Upload failed: could not reach the sync server")

    async def test_failed_merge_download_leaves_local_unchanged(
        self, local_store: ObservableStore, auth: StaticAuth
    ) -> None:
        local_store.write("sleepHours", "6")
        engine = SyncEngine(local_store, ReadOnlyApi({"sleepHours": "9"}), auth)

        outcome = await engine.download_now(MergeStrategy.MERGE)

        assert not outcome.ok
        assert outcome.message.startswith("Download failed")
        assert local_store.snapshot() == {"sleepHours": "6"}

    async def test_export_import(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        source = make_engine("device-1", initial={"sleepHours": "7", "notes:1": "n"})
        backup = source.export_document()

        target = make_engine("device-2")
        outcome = await target.import_document(backup)
        await target.uploader.flush()

        assert outcome.ok
        assert outcome.message == "Data imported successfully (3 keys)"
        assert target.store.snapshot() == {"sleepHours": "7", "notes:1": "n"}
        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["notes"] == {"notes:1": "n"}

    async def test_import_signed_out(self, make_engine: Callable[..., SyncEngine]) -> None:
        target = make_engine("device-2", auth=StaticAuth(None))
        outcome = await target.import_document({"sleepHours": "5"})
        assert outcome.ok
        assert outcome.message.endswith("not signed in so nothing will be uploaded")
        assert target.store.read("sleepHours") == "5"

    async def test_import_malformed(self, engine: SyncEngine) -> None:
        outcome = await engine.import_document("garbage")  # type: ignore[arg-type]
        assert not outcome.ok
        assert outcome.message.startswith("Import failed")

    async def test_status(self, engine: SyncEngine) -> None:
        engine.store.write("sleepHours", "8")
        await _settle(engine)

        status = await engine.status()

        assert status["client_id"] == "device-1"
        assert status["started"] is True
        assert status["identity_kind"] == "primary"
        assert status["uploader_state"] == "idle"
        assert status["uploads"] == 1
        assert status["relevant_changes"] == 1
        assert status["realtime"] is False
        assert status["last_uploaded_at"] is not None


# ── Multiple clients ──


class TestMultipleClients:
    async def test_scenario_c_last_write_wins(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        """Two devices upload in sequence; the later full snapshot replaces the earlier."""
        device_a = make_engine("device-a")
        device_b = make_engine("device-b")
        await device_a.start(bootstrap=False)
        await device_b.start(bootstrap=False)

        device_a.store.write("sleepHours", "8")
        device_b.store.write("miscHours", "2")
        await device_a.uploader.flush()
        await device_b.uploader.flush()

        record = await remote_store.get(USER)
        assert record is not None
        assert record.document["miscHours"] == "2"
        assert record.document["sleepHours"] is None

        await device_a.stop()
        await device_b.stop()

    async def test_tabs_sharing_a_store_upload_once(
        self, remote_store: InMemoryRemoteStore, resolver: TrustingResolver, auth: StaticAuth
    ) -> None:
        shared = InMemoryKeyValueStore()
        bus = TabBus()
        engines = [
            SyncEngine(
                ObservableStore(shared, f"tab-{i}", bus=bus),
                StoreDocumentApi(remote_store, resolver, client_id=f"tab-{i}"),
                auth,
                debounce_seconds=TEST_DEBOUNCE,
            )
            for i in range(3)
        ]
        for eng in engines:
            await eng.start(bootstrap=False)

        engines[0].store.write("sleepHours", "8")
        for eng in engines:
            await _settle(eng)

        assert [eng.uploader.upload_count for eng in engines] == [1, 0, 0]
        assert engines[1].detector.foreign_count == 1
        for eng in engines:
            await eng.stop()

    async def test_realtime_push_between_devices(
        self, remote_store: InMemoryRemoteStore, resolver: TrustingResolver, auth: StaticAuth
    ) -> None:
        def _device(client_id: str) -> SyncEngine:
            return SyncEngine(
                ObservableStore(InMemoryKeyValueStore(), client_id),
                StoreDocumentApi(remote_store, resolver, client_id=client_id),
                auth,
                channel=LocalChannel(remote_store, resolver),
                debounce_seconds=TEST_DEBOUNCE,
            )

        device1 = _device("device-1")
        device2 = _device("device-2")
        await device1.start()
        await device2.start()
        applied: list[SyncSignal] = []
        device2.signals.on(SyncSignal.SYNC_DATA_APPLIED, applied.append)

        device1.store.write("sleepHours", "8")
        await _settle(device1)

        assert device2.store.read("sleepHours") == "8"
        assert applied == [SyncSignal.SYNC_DATA_APPLIED]
        assert device1.notifier is not None
        assert device1.notifier.skipped_count >= 1
        # Applying a push must not echo back as another upload
        await _settle(device2)
        assert device2.uploader.upload_count == 0

        await device1.stop()
        await device2.stop()


# ── Lifecycle ──


class TestLifecycle:
    async def test_stop_cancels_pending_upload(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        engine.store.write("sleepHours", "8")
        await asyncio.sleep(0)
        await engine.stop()
        await asyncio.sleep(TEST_DEBOUNCE * 2)

        assert len(remote_store) == 0
        assert not engine.started

    async def test_stop_with_flush_uploads(
        self, engine: SyncEngine, remote_store: InMemoryRemoteStore
    ) -> None:
        engine.store.write("sleepHours", "8")
        await engine.stop(flush=True)
        assert len(remote_store) == 1

    async def test_logout_cancels_pending_upload(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        auth = StaticAuth(Credential(ProviderKind.PRIMARY, "user-1"))
        device = make_engine("device-1", auth=auth)
        await device.start(bootstrap=False)
        device.store.write("sleepHours", "8")
        await asyncio.sleep(0)

        auth.set_credential(None)
        await device.session_changed()
        await asyncio.sleep(TEST_DEBOUNCE * 2)

        assert len(remote_store) == 0
        await device.stop()

    async def test_login_triggers_pull(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        await remote_store.put(USER, {"sleepHours": "8"})
        auth = StaticAuth(None)
        device = make_engine("device-1", auth=auth)
        await device.start()
        assert device.store.read("sleepHours") is None

        auth.set_credential(Credential(ProviderKind.PRIMARY, "user-1"))
        await device.session_changed()

        assert device.store.read("sleepHours") == "8"
        await device.stop()

    async def test_background_bootstrap(
        self, make_engine: Callable[..., SyncEngine], remote_store: InMemoryRemoteStore
    ) -> None:
        await remote_store.put(USER, {"sleepHours": "8"})
        device = make_engine("device-1")
        await device.start(wait=False)
        assert device.started
        await asyncio.sleep(0.05)
        assert device.store.read("sleepHours") == "8"
        await device.stop()

    async def test_bootstrap_failure_is_logged(
        self, local_store: ObservableStore, auth: StaticAuth, caplog: pytest.LogCaptureFixture
    ) -> None:
        engine = SyncEngine(local_store, UnreachableApi(), auth)
        await engine.start()
        assert engine.started
        assert "Bootstrap pull failed" in caplog.text
        await engine.stop()

    def test_client_id_defaults_to_store_origin(self, local_store: ObservableStore, auth: StaticAuth) -> None:
        engine = SyncEngine(local_store, UnreachableApi(), auth)
        assert engine.client_id == "tab-1"
        assert engine.bus is local_store.bus
