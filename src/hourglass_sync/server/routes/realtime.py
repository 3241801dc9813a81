"""WebSocket routes for realtime document change notification."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from hourglass_sync.core.identity import Credential, IdentityResolver, ProviderKind, UserIdentity
from hourglass_sync.server.dependencies import get_identity_resolver
from hourglass_sync.storage.remote_store import RemoteRecord
from hourglass_sync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Close code sent when the connect credential is rejected
CLOSE_UNAUTHENTICATED = 4401


class SyncEventType(StrEnum):
    """Types of realtime events."""

    # Connection events
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"

    # Data events
    DOCUMENT_UPDATED = "document_updated"

    # Error events
    ERROR = "error"


@dataclass
class SyncEvent:
    """A realtime event addressed to one identity's subscribers."""

    type: SyncEventType
    identity: str
    timestamp: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)
    source_client_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "identity": self.identity,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "source_client_id": self.source_client_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class ConnectedClient:
    """A connected, authenticated WebSocket client."""

    client_id: str
    identity: UserIdentity
    websocket: WebSocket
    subscribed: bool = False
    connected_at: datetime = field(default_factory=utcnow)

    async def send_event(self, event: SyncEvent) -> bool:
        """Send event to client. Returns False if connection closed."""
        try:
            await self.websocket.send_text(event.to_json())
            return True
        except Exception:
            logger.debug("Send to %s failed", self.client_id, exc_info=True)
            return False


class SyncManager:
    """
    Manages WebSocket connections and document change broadcasting.

    A client may only ever subscribe to the identity it authenticated as,
    so no subscriber receives another user's document.

    Singleton pattern - use SyncManager.instance() to get the shared instance.
    """

    _instance: SyncManager | None = None

    def __init__(self) -> None:
        self._clients: dict[str, ConnectedClient] = {}
        self._subscriptions: dict[str, set[str]] = {}  # identity key -> client_ids
        self._lock = asyncio.Lock()

    @classmethod
    def instance(cls) -> SyncManager:
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def connect(
        self, client_id: str, identity: UserIdentity, websocket: WebSocket
    ) -> ConnectedClient:
        """Register a new authenticated client, replacing a stale one with the same ID."""
        stale = self._clients.get(client_id)
        if stale is not None:
            await self.disconnect(client_id)
        async with self._lock:
            client = ConnectedClient(client_id=client_id, identity=identity, websocket=websocket)
            self._clients[client_id] = client
            return client

    async def disconnect(self, client_id: str, websocket: WebSocket | None = None) -> None:
        """Unregister a WebSocket client, optionally only if it still owns ``websocket``."""
        async with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return
            if websocket is not None and client.websocket is not websocket:
                return
            del self._clients[client_id]
            subscribers = self._subscriptions.get(client.identity.key)
            if subscribers is not None:
                subscribers.discard(client_id)
                if not subscribers:
                    del self._subscriptions[client.identity.key]

    async def subscribe(self, client_id: str) -> bool:
        """Subscribe a client to its own identity's document changes."""
        async with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return False
            client.subscribed = True
            self._subscriptions.setdefault(client.identity.key, set()).add(client_id)
            return True

    async def unsubscribe(self, client_id: str) -> bool:
        async with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return False
            client.subscribed = False
            subscribers = self._subscriptions.get(client.identity.key)
            if subscribers is not None:
                subscribers.discard(client_id)
            return True

    async def broadcast(
        self,
        event: SyncEvent,
        exclude_client: str | None = None,
    ) -> int:
        """
        Broadcast event to all clients subscribed to the identity.

        Args:
            event: The event to broadcast
            exclude_client: Don't send to this client (usually the writer)

        Returns:
            Number of clients that received the event
        """
        async with self._lock:
            client_ids = self._subscriptions.get(event.identity, set()).copy()
            targets = [
                self._clients[cid]
                for cid in client_ids
                if cid != exclude_client and cid in self._clients
            ]

        sent_count = 0
        disconnected: list[ConnectedClient] = []

        for client in targets:
            if await client.send_event(event):
                sent_count += 1
            else:
                disconnected.append(client)

        for client in disconnected:
            await self.disconnect(client.client_id, client.websocket)

        return sent_count

    async def on_document_stored(self, record: RemoteRecord, source_client_id: str | None) -> None:
        """Remote store listener: push the new document to the owner's other clients."""
        event = SyncEvent(
            type=SyncEventType.DOCUMENT_UPDATED,
            identity=record.identity.key,
            timestamp=record.updated_at,
            data={"new": record.document},
            source_client_id=source_client_id,
        )
        sent = await self.broadcast(event, exclude_client=source_client_id)
        logger.debug("Document update for %s pushed to %d clients", record.identity.key, sent)

    def get_stats(self) -> dict[str, Any]:
        """Get sync manager statistics."""
        return {
            "connected_clients": len(self._clients),
            "subscribed_identities": len(self._subscriptions),
            "subscriptions": sum(len(ids) for ids in self._subscriptions.values()),
        }


def get_sync_manager() -> SyncManager:
    """Get the global sync manager instance."""
    return SyncManager.instance()


def _parse_credential(message: dict[str, Any]) -> Credential | None:
    token = message.get("token")
    if not isinstance(token, str) or not token:
        return None
    try:
        kind = ProviderKind(message.get("provider", ProviderKind.PRIMARY))
    except ValueError:
        return None
    return Credential(kind, token)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> None:
    """
    WebSocket endpoint for realtime document change notification.

    Protocol:
        1. Client connects and sends:
           {"action": "connect", "client_id": "...", "token": "...", "provider": "primary"}
        2. Server responds with {"type": "connected", ...} or an error and closes
        3. Client subscribes to its own document: {"action": "subscribe"}
        4. Server pushes {"type": "document_updated", "data": {"new": {...}}, ...}
        5. {"action": "ping"} is answered with {"type": "pong"}
    """
    await websocket.accept()
    sync_manager = get_sync_manager()

    client: ConnectedClient | None = None

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue
            action = message.get("action")

            if action == "connect":
                credential = _parse_credential(message)
                identity = await resolver.resolve(credential) if credential else None
                if identity is None:
                    await websocket.send_text(
                        SyncEvent(
                            type=SyncEventType.ERROR,
                            identity="*",
                            data={"error": "Not authenticated"},
                        ).to_json()
                    )
                    await websocket.close(code=CLOSE_UNAUTHENTICATED)
                    return

                client_id = str(message.get("client_id") or f"client-{id(websocket)}")
                client = await sync_manager.connect(client_id, identity, websocket)
                await websocket.send_text(
                    SyncEvent(
                        type=SyncEventType.CONNECTED,
                        identity=identity.key,
                        data={"client_id": client_id},
                    ).to_json()
                )

            elif action == "subscribe" and client:
                success = await sync_manager.subscribe(client.client_id)
                await websocket.send_text(
                    SyncEvent(
                        type=SyncEventType.SUBSCRIBED if success else SyncEventType.ERROR,
                        identity=client.identity.key,
                        data={"success": success, "client_id": client.client_id},
                    ).to_json()
                )

            elif action == "unsubscribe" and client:
                success = await sync_manager.unsubscribe(client.client_id)
                await websocket.send_text(
                    SyncEvent(
                        type=SyncEventType.UNSUBSCRIBED,
                        identity=client.identity.key,
                        data={"success": success},
                    ).to_json()
                )

            elif action == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("Realtime connection error", exc_info=True)
        try:
            await websocket.send_text(
                SyncEvent(
                    type=SyncEventType.ERROR,
                    identity="*",
                    data={"error": str(e)},
                ).to_json()
            )
        except Exception:
            logger.debug("Could not report error to client", exc_info=True)
    finally:
        if client is not None:
            await sync_manager.disconnect(client.client_id, websocket)


@router.get("/stats")
async def get_sync_stats() -> dict[str, Any]:
    """Get realtime connection statistics."""
    return get_sync_manager().get_stats()
