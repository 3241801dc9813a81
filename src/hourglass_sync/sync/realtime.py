"""Realtime notification of remote document changes."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

import aiohttp

from hourglass_sync.core.identity import AuthCapability, Credential, IdentityResolver
from hourglass_sync.errors import SyncError, TransientNetworkFailure, Unauthenticated
from hourglass_sync.storage.remote_store import RemoteDocumentStore, RemoteRecord
from hourglass_sync.sync.merger import PullMerger
from hourglass_sync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DOCUMENT_UPDATED = "document_updated"


class ChannelState(StrEnum):
    """Realtime channel connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class RealtimeEvent:
    """A change notification pushed by the server."""

    type: str
    identity: str
    timestamp: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)
    source_client_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RealtimeEvent | None:
        """Create from dictionary. Returns None if required fields missing."""
        event_type = data.get("type")
        identity = data.get("identity")
        if not event_type or not identity:
            return None
        timestamp = utcnow()
        if data.get("timestamp"):
            try:
                timestamp = datetime.fromisoformat(data["timestamp"])
            except (TypeError, ValueError):
                pass
        return cls(
            type=event_type,
            identity=identity,
            timestamp=timestamp,
            data=data.get("data") or {},
            source_client_id=data.get("source_client_id"),
        )

    @property
    def new_document(self) -> dict[str, Any] | None:
        doc = self.data.get("new")
        return doc if isinstance(doc, dict) else None


EventHandler = Callable[[RealtimeEvent], Awaitable[None]]


class RealtimeChannel(Protocol):
    """Push channel scoped to one user's document."""

    async def subscribe(self, credential: Credential, handler: EventHandler) -> None: ...

    async def unsubscribe(self) -> None: ...


class LocalChannel:
    """In-process channel fed by a remote store's put listeners."""

    def __init__(self, store: RemoteDocumentStore, resolver: IdentityResolver) -> None:
        self._store = store
        self._resolver = resolver
        self._remove_listener: Callable[[], None] | None = None

    @property
    def subscribed(self) -> bool:
        return self._remove_listener is not None

    async def subscribe(self, credential: Credential, handler: EventHandler) -> None:
        identity = await self._resolver.resolve(credential)
        if identity is None:
            raise Unauthenticated("Not authenticated", status_code=401)
        await self.unsubscribe()

        async def _on_put(record: RemoteRecord, source_client_id: str | None) -> None:
            if record.identity != identity:
                return
            await handler(
                RealtimeEvent(
                    type=DOCUMENT_UPDATED,
                    identity=identity.key,
                    timestamp=record.updated_at,
                    data={"new": record.document},
                    source_client_id=source_client_id,
                )
            )

        self._remove_listener = self._store.add_listener(_on_put)

    async def unsubscribe(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None


class WebSocketChannel:
    """
    WebSocket channel to the sync server's ``/sync/ws`` endpoint.

    Connects with the user's credential, subscribes to that user's document
    and dispatches ``document_updated`` pushes to the handler.  Reconnects
    with exponential backoff when the connection drops.
    """

    def __init__(
        self,
        server_url: str,
        *,
        client_id: str | None = None,
        auto_reconnect: bool = True,
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 10,
    ) -> None:
        """
        Initialize the channel.

        Args:
            server_url: Server URL; http(s) is rewritten to ws(s) and ``/sync/ws`` appended
            client_id: Client identifier (auto-generated if not provided)
            auto_reconnect: Whether to reconnect after a dropped connection
            reconnect_delay: Base delay between reconnect attempts (exponential backoff)
            max_reconnect_attempts: Maximum reconnect attempts (0 = unlimited)
        """
        if server_url.startswith("http://"):
            server_url = server_url.replace("http://", "ws://", 1)
        elif server_url.startswith("https://"):
            server_url = server_url.replace("https://", "wss://", 1)

        if not server_url.startswith(("ws://", "wss://")):
            raise ValueError("Invalid WebSocket URL scheme: must start with ws:// or wss://")

        if not server_url.endswith("/sync/ws"):
            server_url = server_url.rstrip("/") + "/sync/ws"

        self._server_url = server_url
        self._client_id = client_id or f"client-{uuid.uuid4().hex[:8]}"
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts

        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = ChannelState.DISCONNECTED
        self._credential: Credential | None = None
        self._handler: EventHandler | None = None
        self._reconnect_attempts = 0
        self._running = False
        self._receive_task: asyncio.Task[None] | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    async def subscribe(self, credential: Credential, handler: EventHandler) -> None:
        """Connect, subscribe, and start dispatching events in the background."""
        await self.unsubscribe()
        self._credential = credential
        self._handler = handler
        await self._connect()
        self._running = True
        self._receive_task = asyncio.create_task(self._run())

    async def unsubscribe(self) -> None:
        """Stop dispatching and close the connection."""
        self._running = False

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._ws is not None and not self._ws.closed:
            try:
                await self._send({"action": "unsubscribe"})
            except (aiohttp.ClientError, ConnectionError):
                logger.debug("Unsubscribe message not delivered", exc_info=True)

        await self._close()
        self._credential = None
        self._handler = None

    async def _connect(self) -> None:
        if self._credential is None:
            raise Unauthenticated("Not authenticated")

        self._state = ChannelState.CONNECTING
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            self._ws = await self._session.ws_connect(self._server_url)

            await self._send(
                {
                    "action": "connect",
                    "client_id": self._client_id,
                    "provider": self._credential.provider_kind.value,
                    "token": self._credential.token,
                }
            )
            reply = await self._receive_json()
            if reply.get("type") != "connected":
                raise Unauthenticated(str(reply.get("data", {}).get("error", "Rejected")))

            await self._send({"action": "subscribe"})
            reply = await self._receive_json()
            if reply.get("type") != "subscribed":
                raise TransientNetworkFailure("Subscription was not confirmed")

            self._state = ChannelState.CONNECTED
            self._reconnect_attempts = 0
        except SyncError:
            await self._close()
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            await self._close()
            raise TransientNetworkFailure(f"Failed to connect to realtime channel: {e}") from e

    async def _close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._state = ChannelState.DISCONNECTED

    async def _run(self) -> None:
        while self._running:
            if not self.is_connected:
                if not self._auto_reconnect or not await self._try_reconnect():
                    break
                continue

            assert self._ws is not None
            try:
                message = await self._ws.receive()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.warning("Realtime receive error, state -> DISCONNECTED", exc_info=True)
                self._state = ChannelState.DISCONNECTED
                continue

            if message.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(message.data)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON realtime message")
                    continue
                await self._dispatch(data)
            elif message.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                self._state = ChannelState.DISCONNECTED

    async def _dispatch(self, data: dict[str, Any]) -> None:
        event = RealtimeEvent.from_dict(data)
        if event is None or event.type != DOCUMENT_UPDATED or self._handler is None:
            return
        try:
            await self._handler(event)
        except Exception:
            logger.warning("Realtime handler error", exc_info=True)

    async def _try_reconnect(self) -> bool:
        if 0 < self._max_reconnect_attempts <= self._reconnect_attempts:
            logger.warning("Giving up on realtime channel after %d attempts", self._reconnect_attempts)
            return False

        self._state = ChannelState.RECONNECTING
        self._reconnect_attempts += 1

        delay = self._reconnect_delay * (2 ** (self._reconnect_attempts - 1))
        await asyncio.sleep(min(delay, 60.0))

        try:
            await self._connect()
        except Unauthenticated:
            logger.warning("Realtime credential rejected, not reconnecting")
            return False
        except TransientNetworkFailure as e:
            logger.debug("Reconnect attempt %d failed: %s", self._reconnect_attempts, e)
        return True

    async def _send(self, data: dict[str, Any]) -> None:
        if self._ws is not None:
            await self._ws.send_str(json.dumps(data))

    async def _receive_json(self) -> dict[str, Any]:
        assert self._ws is not None
        message = await self._ws.receive()
        if message.type != aiohttp.WSMsgType.TEXT:
            raise TransientNetworkFailure(f"Unexpected WebSocket message: {message.type}")
        data = json.loads(message.data)
        return data if isinstance(data, dict) else {}


class RealtimeNotifier:
    """Apply pushed documents through the merger without re-fetching.

    Subscribes only while a user is signed in; ``stop()`` must be called when
    the session ends so a stale identity is never acted on.
    """

    def __init__(
        self,
        channel: RealtimeChannel,
        merger: PullMerger,
        auth: AuthCapability,
        *,
        client_id: str | None = None,
    ) -> None:
        self._channel = channel
        self._merger = merger
        self._auth = auth
        self._client_id = client_id
        self._credential: Credential | None = None
        self.applied_count = 0
        self.skipped_count = 0
        self.failure_count = 0

    @property
    def active(self) -> bool:
        return self._credential is not None

    @property
    def credential(self) -> Credential | None:
        return self._credential

    async def start(self) -> bool:
        """Subscribe for the current identity. Returns False if nobody is signed in."""
        credential = await self._auth.get_current_identity()
        if credential is None:
            logger.debug("No identity, realtime not started")
            return False
        if self._credential == credential:
            return True
        await self.stop()
        await self._channel.subscribe(credential, self._on_event)
        self._credential = credential
        logger.info("Realtime subscribed (%s)", credential.provider_kind)
        return True

    async def stop(self) -> None:
        if self._credential is None:
            return
        self._credential = None
        try:
            await self._channel.unsubscribe()
        except Exception:
            logger.warning("Realtime unsubscribe failed", exc_info=True)

    async def _on_event(self, event: RealtimeEvent) -> None:
        if self._credential is None:
            return
        if self._client_id is not None and event.source_client_id == self._client_id:
            self.skipped_count += 1
            return

        document = event.new_document
        if document is None:
            logger.debug("Realtime event without a document, ignoring")
            self.skipped_count += 1
            return

        try:
            self._merger.apply(document)
            self.applied_count += 1
        except SyncError as e:
            self.failure_count += 1
            logger.warning("Could not apply realtime document: %s", e)
