"""Tests for storage/remote_store.py - in-memory and SQLite backends."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from hourglass_sync.core.identity import PrimaryIdentity, SecondaryIdentity, identity_from_key
from hourglass_sync.storage.remote_store import (
    InMemoryRemoteStore,
    RemoteDocumentStore,
    RemoteRecord,
    SQLiteRemoteStore,
)

ALICE = PrimaryIdentity("alice")
BOB = SecondaryIdentity("bob")


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteRemoteStore, None]:
    store = SQLiteRemoteStore(tmp_path / "server" / "sync.db")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def any_store(
    request: pytest.FixtureRequest, tmp_path: Path
) -> AsyncGenerator[RemoteDocumentStore, None]:
    if request.param == "memory":
        yield InMemoryRemoteStore()
        return
    store = SQLiteRemoteStore(tmp_path / "contract.db")
    await store.initialize()
    yield store
    await store.close()


# ── Shared contract ──


class TestRemoteStoreContract:
    """Behaviour every backend must share."""

    async def test_get_missing(self, any_store: RemoteDocumentStore) -> None:
        assert await any_store.get(ALICE) is None

    async def test_put_then_get(self, any_store: RemoteDocumentStore) -> None:
        stored = await any_store.put(ALICE, {"sleepHours": "8", "notes": {"notes:1": "hi"}})
        fetched = await any_store.get(ALICE)

        assert fetched is not None
        assert fetched.identity == ALICE
        assert fetched.document == {"sleepHours": "8", "notes": {"notes:1": "hi"}}
        assert fetched.updated_at == stored.updated_at

    async def test_put_replaces_whole_document(self, any_store: RemoteDocumentStore) -> None:
        await any_store.put(ALICE, {"sleepHours": "8", "miscHours": "1"})
        await any_store.put(ALICE, {"sleepHours": "9"})

        fetched = await any_store.get(ALICE)
        assert fetched is not None
        assert fetched.document == {"sleepHours": "9"}

    async def test_put_is_idempotent(self, any_store: RemoteDocumentStore) -> None:
        doc = {"focusCategories": "[]"}
        first = await any_store.put(ALICE, doc)
        second = await any_store.put(ALICE, doc)

        fetched = await any_store.get(ALICE)
        assert fetched is not None
        assert fetched.document == doc
        assert second.updated_at >= first.updated_at

    async def test_identities_are_isolated(self, any_store: RemoteDocumentStore) -> None:
        await any_store.put(ALICE, {"sleepHours": "8"})
        await any_store.put(BOB, {"sleepHours": "5"})
        # Same user ID under a different provider is a different user
        assert await any_store.get(PrimaryIdentity("bob")) is None

        bob = await any_store.get(BOB)
        assert bob is not None
        assert bob.document == {"sleepHours": "5"}

    async def test_delete(self, any_store: RemoteDocumentStore) -> None:
        await any_store.put(ALICE, {"a": "1"})
        assert await any_store.delete(ALICE) is True
        assert await any_store.delete(ALICE) is False
        assert await any_store.get(ALICE) is None

    async def test_listener_receives_record_and_source(self, any_store: RemoteDocumentStore) -> None:
        listener = AsyncMock()
        any_store.add_listener(listener)

        await any_store.put(ALICE, {"sleepHours": "8"}, source_client_id="device-1")

        listener.assert_awaited_once()
        record, source = listener.await_args.args
        assert isinstance(record, RemoteRecord)
        assert record.document == {"sleepHours": "8"}
        assert source == "device-1"

    async def test_failing_listener_does_not_fail_put(self, any_store: RemoteDocumentStore) -> None:
        any_store.add_listener(AsyncMock(side_effect=RuntimeError("boom")))
        second = AsyncMock()
        any_store.add_listener(second)

        await any_store.put(ALICE, {"a": "1"})

        second.assert_awaited_once()
        assert await any_store.get(ALICE) is not None

    async def test_removed_listener_not_called(self, any_store: RemoteDocumentStore) -> None:
        listener = AsyncMock()
        remove = any_store.add_listener(listener)
        remove()
        await any_store.put(ALICE, {"a": "1"})
        listener.assert_not_awaited()


# ── Backend specifics ──


class TestInMemoryRemoteStore:
    async def test_returned_documents_are_copies(self, remote_store: InMemoryRemoteStore) -> None:
        doc = {"notes": {"notes:1": "a"}}
        await remote_store.put(ALICE, doc)
        doc["notes"]["notes:1"] = "mutated"

        fetched = await remote_store.get(ALICE)
        assert fetched is not None
        fetched.document["notes"]["notes:1"] = "also mutated"

        again = await remote_store.get(ALICE)
        assert again is not None
        assert again.document == {"notes": {"notes:1": "a"}}
        assert len(remote_store) == 1


class TestSQLiteRemoteStore:
    async def test_persists_across_connections(self, tmp_path: Path) -> None:
        path = tmp_path / "sync.db"
        store = SQLiteRemoteStore(path)
        await store.initialize()
        await store.put(ALICE, {"sleepHours": "8"})
        await store.close()

        reopened = SQLiteRemoteStore(path)
        await reopened.initialize()
        try:
            record = await reopened.get(ALICE)
            assert record is not None
            assert record.document == {"sleepHours": "8"}
            assert await reopened.count() == 1
        finally:
            await reopened.close()

    async def test_not_initialized(self, tmp_path: Path) -> None:
        store = SQLiteRemoteStore(tmp_path / "sync.db")
        with pytest.raises(RuntimeError, match="not initialized"):
            await store.get(ALICE)

    async def test_unicode_document(self, sqlite_store: SQLiteRemoteStore) -> None:
        await sqlite_store.put(ALICE, {"notes": {"notes:1": "café ☕"}})
        record = await sqlite_store.get(ALICE)
        assert record is not None
        assert record.document["notes"]["notes:1"] == "café ☕"


class TestIdentityKeys:
    def test_round_trip(self) -> None:
        assert identity_from_key(ALICE.key) == ALICE
        assert identity_from_key("secondary:bob") == BOB

    @pytest.mark.parametrize("key", ["alice", "primary:", "tertiary:x"])
    def test_invalid(self, key: str) -> None:
        with pytest.raises(ValueError):
            identity_from_key(key)
