"""Remote document stores: one JSON document per user identity.

There is no optimistic locking.  The last ``put`` replaces the whole
document, so concurrent writers silently lose whatever content the later
payload does not carry.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from hourglass_sync.core.document import Document
from hourglass_sync.core.identity import ProviderKind, UserIdentity
from hourglass_sync.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations
from hourglass_sync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteRecord:
    """The stored document of one user."""

    identity: UserIdentity
    document: Document = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)


PutListener = Callable[[RemoteRecord, str | None], Awaitable[None]]


class RemoteDocumentStore(ABC):
    """Abstract remote store.

    Listeners registered with :meth:`add_listener` are awaited after every
    successful ``put`` with the new record and the writing client's ID.
    """

    def __init__(self) -> None:
        self._listeners: list[PutListener] = []

    def add_listener(self, listener: PutListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def _notify(self, record: RemoteRecord, source_client_id: str | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(record, source_client_id)
            except Exception:
                logger.warning(
                    "Remote store listener failed for %s", record.identity.key, exc_info=True
                )

    @abstractmethod
    async def get(self, identity: UserIdentity) -> RemoteRecord | None:
        """Return the user's record, or None if there is none."""

    async def put(
        self,
        identity: UserIdentity,
        document: Document,
        *,
        source_client_id: str | None = None,
    ) -> RemoteRecord:
        """Replace the user's document and bump ``updated_at``."""
        record = await self._upsert(identity, document)
        logger.debug("Stored document for %s at %s", identity.key, record.updated_at)
        await self._notify(record, source_client_id)
        return record

    @abstractmethod
    async def _upsert(self, identity: UserIdentity, document: Document) -> RemoteRecord: ...

    @abstractmethod
    async def delete(self, identity: UserIdentity) -> bool:
        """Remove the user's record. Returns True if one existed."""

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryRemoteStore(RemoteDocumentStore):
    """Dict-backed remote store for tests and single-process use."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, RemoteRecord] = {}

    async def get(self, identity: UserIdentity) -> RemoteRecord | None:
        record = self._records.get(identity.key)
        if record is None:
            return None
        # Hand out copies so callers cannot mutate stored state
        return RemoteRecord(
            identity=record.identity,
            document=json.loads(json.dumps(record.document)),
            updated_at=record.updated_at,
        )

    async def _upsert(self, identity: UserIdentity, document: Document) -> RemoteRecord:
        record = RemoteRecord(
            identity=identity,
            document=json.loads(json.dumps(document)),
            updated_at=utcnow(),
        )
        self._records[identity.key] = record
        return record

    async def delete(self, identity: UserIdentity) -> bool:
        return self._records.pop(identity.key, None) is not None

    def __len__(self) -> int:
        return len(self._records)


# Identity kind -> column holding that kind of user ID
_ID_COLUMNS: dict[ProviderKind, str] = {
    ProviderKind.PRIMARY: "primary_user_id",
    ProviderKind.SECONDARY: "secondary_user_id",
}


class SQLiteRemoteStore(RemoteDocumentStore):
    """SQLite-backed remote store.

    Data persists to disk and survives restarts.
    """

    def __init__(self, db_path: str | Path) -> None:
        super().__init__()
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection and create or migrate the schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA synchronous=NORMAL")

        await self._conn.executescript(SCHEMA)
        await self._conn.commit()

        async with self._conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()

        if row is None:
            await self._conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            await self._conn.commit()
        elif row["version"] < SCHEMA_VERSION:
            await run_migrations(self._conn, row["version"])

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Remote store not initialized. Call initialize() first.")
        return self._conn

    async def get(self, identity: UserIdentity) -> RemoteRecord | None:
        conn = self._ensure_conn()
        column = _ID_COLUMNS[identity.kind]

        async with conn.execute(
            f"SELECT data, updated_at FROM user_data WHERE {column} = ?",  # noqa: S608
            (identity.user_id,),
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None

        return RemoteRecord(
            identity=identity,
            document=_load_document(row["data"], identity),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _upsert(self, identity: UserIdentity, document: Document) -> RemoteRecord:
        conn = self._ensure_conn()
        column = _ID_COLUMNS[identity.kind]
        now = utcnow()
        payload = json.dumps(document, ensure_ascii=False)

        await conn.execute(
            f"""INSERT INTO user_data ({column}, data, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT({column}) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at""",  # noqa: S608
            (identity.user_id, payload, now.isoformat()),
        )
        await conn.commit()

        return RemoteRecord(identity=identity, document=json.loads(payload), updated_at=now)

    async def delete(self, identity: UserIdentity) -> bool:
        conn = self._ensure_conn()
        column = _ID_COLUMNS[identity.kind]

        cursor = await conn.execute(
            f"DELETE FROM user_data WHERE {column} = ?",  # noqa: S608
            (identity.user_id,),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def count(self) -> int:
        conn = self._ensure_conn()
        async with conn.execute("SELECT COUNT(*) AS n FROM user_data") as cursor:
            row = await cursor.fetchone()
        return int(row["n"]) if row else 0


def _load_document(raw: str, identity: UserIdentity) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt document JSON for %s", identity.key)
        return {}
    return data if isinstance(data, dict) else {}
