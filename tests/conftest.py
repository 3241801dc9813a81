"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path

import pytest
import pytest_asyncio

from hourglass_sync.core.identity import Credential, ProviderKind, StaticAuth, TrustingResolver
from hourglass_sync.server.routes.realtime import SyncManager
from hourglass_sync.storage.local_store import InMemoryKeyValueStore
from hourglass_sync.storage.observable import ObservableStore, TabBus
from hourglass_sync.storage.remote_store import InMemoryRemoteStore
from hourglass_sync.sync.client import StoreDocumentApi
from hourglass_sync.sync.sync_engine import SyncEngine
from hourglass_sync.utils.config import reset_config

# Short enough to keep the suite fast, long enough to coalesce a burst of writes
TEST_DEBOUNCE = 0.05


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Keep tests away from the real environment and home directory."""
    monkeypatch.setenv("HOURGLASS_DIR", str(tmp_path / "client"))
    monkeypatch.setenv("HOURGLASS_STORAGE", "memory")
    reset_config()
    SyncManager.reset()
    yield
    reset_config()
    SyncManager.reset()


@pytest.fixture
def credential() -> Credential:
    return Credential(ProviderKind.PRIMARY, "user-1")


@pytest.fixture
def auth(credential: Credential) -> StaticAuth:
    return StaticAuth(credential)


@pytest.fixture
def bus() -> TabBus:
    return TabBus()


@pytest.fixture
def local_store(bus: TabBus) -> ObservableStore:
    """Observable in-memory local store of client 'tab-1'."""
    return ObservableStore(InMemoryKeyValueStore(), "tab-1", bus=bus)


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def resolver() -> TrustingResolver:
    return TrustingResolver()


@pytest.fixture
def make_engine(
    remote_store: InMemoryRemoteStore,
    resolver: TrustingResolver,
) -> Callable[..., SyncEngine]:
    """Factory for engines sharing one in-process remote store."""

    def _make(
        client_id: str,
        *,
        auth: StaticAuth | None = None,
        bus: TabBus | None = None,
        initial: dict[str, str] | None = None,
    ) -> SyncEngine:
        store = ObservableStore(InMemoryKeyValueStore(initial), client_id, bus=bus)
        api = StoreDocumentApi(remote_store, resolver, client_id=client_id)
        return SyncEngine(
            store,
            api,
            auth or StaticAuth(Credential(ProviderKind.PRIMARY, "user-1")),
            client_id=client_id,
            debounce_seconds=TEST_DEBOUNCE,
        )

    return _make


@pytest_asyncio.fixture
async def engine(make_engine: Callable[..., SyncEngine]) -> AsyncGenerator[SyncEngine, None]:
    """A started engine for user-1 with no bootstrap pull."""
    eng = make_engine("device-1")
    await eng.start(bootstrap=False)
    yield eng
    await eng.stop()
