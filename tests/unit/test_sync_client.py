"""Tests for sync/client.py - HTTP document API client and in-process API."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from hourglass_sync.core.identity import (
    Credential,
    PrimaryIdentity,
    ProviderKind,
    SecondaryIdentity,
    StaticAuth,
    TrustingResolver,
)
from hourglass_sync.errors import TransientNetworkFailure, Unauthenticated
from hourglass_sync.storage.observable import ObservableStore
from hourglass_sync.storage.remote_store import InMemoryRemoteStore
from hourglass_sync.sync.client import (
    CLIENT_ID_HEADER,
    SECONDARY_TOKEN_HEADER,
    StoreDocumentApi,
    SyncApiClient,
    auth_headers,
)
from hourglass_sync.sync.merger import PullMerger

PRIMARY = Credential(ProviderKind.PRIMARY, "tok-1")
SECONDARY = Credential(ProviderKind.SECONDARY, "g-tok")


class FakeServer:
    """Minimal stand-in for the sync server's document endpoint."""

    def __init__(self) -> None:
        self.document: dict[str, Any] | None = None
        self.requests: list[tuple[str, dict[str, str], Any]] = []
        self.fail_status: int | None = None
        self.rejected_tokens: set[str] = set()
        self.get_body: Any = None

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json() if request.method == "POST" else None
        self.requests.append((request.method, dict(request.headers), body))

        if "Authorization" not in request.headers and SECONDARY_TOKEN_HEADER not in request.headers:
            return web.json_response({"error": "Not authenticated"}, status=401)
        if request.headers.get("Authorization", "").removeprefix("Bearer ") in self.rejected_tokens:
            return web.json_response({"error": "Not authenticated"}, status=401)
        if self.fail_status is not None:
            return web.json_response({"error": "Failed to save data"}, status=self.fail_status)

        if request.method == "GET":
            if self.get_body is not None:
                return web.json_response(self.get_body)
            if self.document is None:
                return web.json_response({"error": "No data found"}, status=404)
            return web.json_response(
                {"document": self.document, "updatedAt": "2024-05-01T12:00:00"}
            )

        self.document = body["data"]
        return web.json_response({})


@pytest.fixture
def fake() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def server(fake: FakeServer) -> AsyncGenerator[test_utils.TestServer, None]:
    app = web.Application()
    app.router.add_route("*", "/sync/document", fake.handle)
    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def api(server: test_utils.TestServer) -> AsyncGenerator[SyncApiClient, None]:
    base = str(server.make_url("/"))
    async with SyncApiClient(base, timeout=5, client_id="device-1") as client:
        yield client


# ── Headers ──


class TestAuthHeaders:
    def test_primary_uses_bearer(self) -> None:
        assert auth_headers(PRIMARY) == {"Authorization": "Bearer tok-1"}

    def test_secondary_uses_dedicated_header(self) -> None:
        assert auth_headers(SECONDARY) == {SECONDARY_TOKEN_HEADER: "g-tok"}


# ── SyncApiClient ──


class TestSyncApiClientInit:
    def test_invalid_scheme_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid server URL"):
            SyncApiClient("ftp://localhost")

    def test_trailing_slash_stripped(self) -> None:
        assert SyncApiClient("http://localhost:8000/").server_url == "http://localhost:8000"


class TestSyncApiClient:
    async def test_fetch_missing_returns_none(self, api: SyncApiClient) -> None:
        assert await api.fetch(PRIMARY) is None

    async def test_push_then_fetch(self, api: SyncApiClient, fake: FakeServer) -> None:
        await api.push(PRIMARY, {"sleepHours": "8"})

        snapshot = await api.fetch(PRIMARY)

        assert snapshot is not None
        assert snapshot.document == {"sleepHours": "8"}
        assert snapshot.updated_at is not None
        assert snapshot.updated_at.year == 2024

    async def test_push_sends_envelope_and_client_id(
        self, api: SyncApiClient, fake: FakeServer
    ) -> None:
        await api.push(SECONDARY, {"notes": {"notes:1": "a"}})

        method, headers, body = fake.requests[-1]
        assert method == "POST"
        assert body == {"data": {"notes": {"notes:1": "a"}}}
        assert headers[SECONDARY_TOKEN_HEADER] == "g-tok"
        assert headers[CLIENT_ID_HEADER] == "device-1"

    async def test_server_error_is_transient(self, api: SyncApiClient, fake: FakeServer) -> None:
        fake.fail_status = 500
        with pytest.raises(TransientNetworkFailure, match="Failed to save data") as exc_info:
            await api.push(PRIMARY, {})
        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize("body", [{"document": ["sleepHours"]}, {"updatedAt": "2024-05-01"}, [1, 2]])
    async def test_malformed_document_is_transient(
        self, api: SyncApiClient, fake: FakeServer, body: Any
    ) -> None:
        fake.get_body = body
        with pytest.raises(TransientNetworkFailure, match="Malformed response"):
            await api.fetch(PRIMARY)

    async def test_malformed_document_does_not_bootstrap(
        self, api: SyncApiClient, fake: FakeServer, local_store: ObservableStore
    ) -> None:
        fake.get_body = {"document": "oops"}
        local_store.write("sleepHours", "6")
        merger = PullMerger(local_store, api, StaticAuth(PRIMARY))

        with pytest.raises(TransientNetworkFailure):
            await merger.pull()

        assert [method for method, _, _ in fake.requests] == ["GET"]
        assert local_store.snapshot() == {"sleepHours": "6"}

    async def test_unreachable_server(self) -> None:
        async with SyncApiClient("http://127.0.0.1:9", timeout=2) as client:
            with pytest.raises(TransientNetworkFailure, match="Connection error"):
                await client.fetch(PRIMARY)

    async def test_connects_lazily(self, server: test_utils.TestServer) -> None:
        client = SyncApiClient(str(server.make_url("/")))
        try:
            assert await client.fetch(PRIMARY) is None
        finally:
            await client.close()


class TestUnauthenticatedResponse:
    async def test_401_raises_unauthenticated(self, api: SyncApiClient, fake: FakeServer) -> None:
        fake.rejected_tokens.add("tok-1")
        with pytest.raises(Unauthenticated):
            await api.fetch(PRIMARY)
        with pytest.raises(Unauthenticated):
            await api.push(PRIMARY, {})
        assert fake.document is None


# ── StoreDocumentApi ──


class TestStoreDocumentApi:
    async def test_round_trip(self, remote_store: InMemoryRemoteStore) -> None:
        api = StoreDocumentApi(remote_store, TrustingResolver(), client_id="tab-1")
        await api.push(PRIMARY, {"sleepHours": "8"})

        snapshot = await api.fetch(PRIMARY)
        assert snapshot is not None
        assert snapshot.document == {"sleepHours": "8"}
        assert (await remote_store.get(PrimaryIdentity("tok-1"))) is not None
        assert (await remote_store.get(SecondaryIdentity("tok-1"))) is None

    async def test_passes_client_id_to_listeners(self, remote_store: InMemoryRemoteStore) -> None:
        sources: list[str | None] = []

        async def _listener(record: Any, source: str | None) -> None:
            sources.append(source)

        remote_store.add_listener(_listener)
        await StoreDocumentApi(remote_store, TrustingResolver(), client_id="tab-7").push(
            PRIMARY, {}
        )
        assert sources == ["tab-7"]

    async def test_unresolvable_credential(self, remote_store: InMemoryRemoteStore) -> None:
        api = StoreDocumentApi(remote_store, TrustingResolver())
        empty = Credential(ProviderKind.PRIMARY, "")
        with pytest.raises(Unauthenticated):
            await api.fetch(empty)
        with pytest.raises(Unauthenticated):
            await api.push(empty, {})
