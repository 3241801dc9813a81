"""SQLite schema definition for the remote document store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

# ── Migrations ──────────────────────────────────────────────────────
# Each entry maps (from_version -> to_version) with a list of SQL statements.
MIGRATIONS: dict[tuple[int, int], list[str]] = {}

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY);

-- One row per user.  Exactly one identity column is set.
CREATE TABLE IF NOT EXISTS user_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    primary_user_id TEXT UNIQUE,
    secondary_user_id TEXT UNIQUE,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK ((primary_user_id IS NULL) != (secondary_user_id IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_user_data_updated ON user_data(updated_at);
"""


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> None:
    """Apply pending migrations in order, then stamp the new version."""
    version = current_version
    while version < SCHEMA_VERSION:
        step = (version, version + 1)
        statements = MIGRATIONS.get(step, [])
        for sql in statements:
            await conn.execute(sql)
        version += 1
        logger.info("Migrated remote store schema %d -> %d", step[0], step[1])

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()
