"""Clients for the remote document API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

import aiohttp

from hourglass_sync.core.document import Document
from hourglass_sync.core.identity import Credential, IdentityResolver, ProviderKind
from hourglass_sync.errors import TransientNetworkFailure, Unauthenticated
from hourglass_sync.storage.remote_store import RemoteDocumentStore
from hourglass_sync.sync.protocol import RemoteSnapshot

logger = logging.getLogger(__name__)

DOCUMENT_PATH = "/sync/document"
SECONDARY_TOKEN_HEADER = "X-Secondary-Token"
CLIENT_ID_HEADER = "X-Client-ID"


def auth_headers(credential: Credential) -> dict[str, str]:
    """Headers carrying a credential in the scheme the server expects."""
    if credential.provider_kind == ProviderKind.PRIMARY:
        return {"Authorization": f"Bearer {credential.token}"}
    return {SECONDARY_TOKEN_HEADER: credential.token}


class SyncApiClient:
    """
    HTTP client for the remote document API.

    Usage:
        async with SyncApiClient("http://localhost:8000") as api:
            snapshot = await api.fetch(credential)
            await api.push(credential, document)
    """

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = 30.0,
        client_id: str | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            server_url: Base URL of the sync server (e.g., "http://localhost:8000")
            timeout: Request timeout in seconds
            client_id: Sent with uploads so realtime echoes can be recognized
        """
        if not server_url.startswith(("http://", "https://")):
            raise ValueError("Invalid server URL scheme: must start with http:// or https://")

        self._server_url = server_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._client_id = client_id
        self._session: aiohttp.ClientSession | None = None

    @property
    def server_url(self) -> str:
        return self._server_url

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> SyncApiClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def fetch(self, credential: Credential) -> RemoteSnapshot | None:
        """GET the user's document. Returns None on 404.

        Raises:
            TransientNetworkFailure: The server answered 200 without a document object.
        """
        status, body = await self._request("GET", credential)
        if status == 404:
            return None

        document = body.get("document")
        if not isinstance(document, dict):
            raise TransientNetworkFailure(
                f"Malformed response from sync server: no document in HTTP {status} body",
                status_code=status,
            )

        updated_raw = body.get("updatedAt")
        updated_at = None
        if updated_raw:
            try:
                updated_at = datetime.fromisoformat(str(updated_raw))
            except ValueError:
                logger.debug("Unparseable updatedAt from server: %r", updated_raw)
        return RemoteSnapshot(document=document, updated_at=updated_at)

    async def push(self, credential: Credential, document: Document) -> None:
        """POST the full document, replacing the remote one."""
        await self._request("POST", credential, json_data={"data": document})

    async def _request(
        self,
        method: str,
        credential: Credential,
        *,
        json_data: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        if self._session is None:
            await self.connect()
        assert self._session is not None

        headers = {"Content-Type": "application/json", **auth_headers(credential)}
        if self._client_id:
            headers[CLIENT_ID_HEADER] = self._client_id

        url = f"{self._server_url}{DOCUMENT_PATH}"
        try:
            async with self._session.request(
                method, url, json=json_data, headers=headers
            ) as response:
                body = await _read_json(response)
                if response.status == 401:
                    raise Unauthenticated("Not authenticated", status_code=401)
                if response.status == 404 and method == "GET":
                    return 404, body
                if response.status >= 400:
                    message = body.get("error") or body.get("detail") or f"HTTP {response.status}"
                    raise TransientNetworkFailure(str(message), status_code=response.status)
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkFailure(f"Connection error: {e}") from e


async def _read_json(response: aiohttp.ClientResponse) -> dict[str, Any]:
    try:
        data = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class StoreDocumentApi:
    """Document API served directly by an in-process remote store.

    Resolves credentials with an :class:`IdentityResolver` exactly like the
    HTTP server does, without the network hop.
    """

    def __init__(
        self,
        store: RemoteDocumentStore,
        resolver: IdentityResolver,
        *,
        client_id: str | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._client_id = client_id

    async def fetch(self, credential: Credential) -> RemoteSnapshot | None:
        identity = await self._resolver.resolve(credential)
        if identity is None:
            raise Unauthenticated("Not authenticated", status_code=401)
        record = await self._store.get(identity)
        if record is None:
            return None
        return RemoteSnapshot(document=record.document, updated_at=record.updated_at)

    async def push(self, credential: Credential, document: Document) -> None:
        identity = await self._resolver.resolve(credential)
        if identity is None:
            raise Unauthenticated("Not authenticated", status_code=401)
        await self._store.put(identity, document, source_client_id=self._client_id)
