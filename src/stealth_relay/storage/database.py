"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from stealth_relay.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS forwarded_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id      TEXT    NOT NULL,
    message_id      TEXT    NOT NULL,
    kind            TEXT    NOT NULL,
    media_kind      TEXT,
    recovered       INTEGER NOT NULL DEFAULT 0,
    sender_id       TEXT    NOT NULL DEFAULT '',
    group_context   TEXT,
    forwarded_at    TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_forwarded_unique
    ON forwarded_items(account_id, message_id, kind, recovered);

CREATE INDEX IF NOT EXISTS idx_forwarded_time
    ON forwarded_items(forwarded_at);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
